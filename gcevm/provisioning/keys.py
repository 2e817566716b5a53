"""Instance key pair: load from the machine folder, generating it with ssh-keygen if absent."""

import logging
import os

from gcevm.errors import KeyPairError
from gcevm.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

KEY_FILENAME = "id_gcevm_rsa"


def private_key_path(machine_folder):
    return os.path.join(machine_folder, KEY_FILENAME)


def _ssh_keygen_cmd(path):
    return ["ssh-keygen", "-t", "rsa", "-b", "4096", "-N", "", "-C", "gcevm", "-q", "-f", path]


async def ensure_key_pair(machine_folder):
    """Return (private_key_path, public_key) for the machine, creating the pair once.

    Raises:
        KeyPairError: if the folder is unusable or ssh-keygen fails.
    """
    if not machine_folder:
        raise KeyPairError("machine folder is not set; cannot store the instance key pair")

    key_path = private_key_path(machine_folder)
    pub_path = f"{key_path}.pub"

    if not os.path.exists(key_path):
        try:
            os.makedirs(machine_folder, exist_ok=True)
        except OSError as e:
            raise KeyPairError(f"create machine folder '{machine_folder}': {e}") from e

        logger.info(f"Generating SSH key pair at {key_path}")
        rc, _, stderr = await run_shell_cmd(_ssh_keygen_cmd(key_path))
        if rc != 0:
            raise KeyPairError(f"ssh-keygen failed: {stderr.strip()}")

    try:
        with open(pub_path) as f:
            public_key = f.read().strip()
    except OSError as e:
        raise KeyPairError(f"read public key '{pub_path}': {e}") from e

    if not public_key:
        raise KeyPairError(f"public key '{pub_path}' is empty")
    return key_path, public_key
