"""Provider options: environment variables layered over an optional YAML file.

The calling orchestrator passes everything through the environment. A YAML
file named by GCEVM_CONFIG may supply defaults for the same keys (lower-case)
and a ``retry`` section that overrides the three retry policies:

    zone: us-central1-a
    machine_type: n2-standard-4
    retry:
      status: {attempts: 120, interval: 5}
      probe: {initial_delay: 45}
      command: {attempts: 5}
"""

import dataclasses
import logging
import os
import re
from dataclasses import dataclass

import yaml

from gcevm.errors import OptionsError
from gcevm.provisioning.types import (
    COMMAND_POLICY,
    READINESS_PROBE_POLICY,
    STATUS_POLICY,
    ProvisionRequest,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GCEVM_CONFIG"

# The login user ends up in a root-run startup script and a sudoers.d path.
LOGIN_USER_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")

DEFAULTS = {
    "machine_type": "c2-standard-4",
    "disk_size": "40",
    "disk_image": "projects/debian-cloud/global/images/family/debian-12",
    "public_ip": "false",
    "ssh_user": "gcevm",
}

# option name -> environment variable
ENV_VARS = {
    "project": "PROJECT",
    "zone": "ZONE",
    "machine_type": "MACHINE_TYPE",
    "disk_size": "DISK_SIZE",
    "disk_image": "DISK_IMAGE",
    "network": "NETWORK",
    "subnetwork": "SUBNETWORK",
    "public_ip": "PUBLIC_IP",
    "tag": "TAG",
    "service_account": "SERVICE_ACCOUNT",
    "machine_id": "MACHINE_ID",
    "machine_folder": "MACHINE_FOLDER",
    "ssh_user": "SSH_USER",
    "fail_fast_on_stop": "FAIL_FAST_ON_STOP",
}

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off", "")

_POLICY_DEFAULTS = {
    "status": STATUS_POLICY,
    "probe": READINESS_PROBE_POLICY,
    "command": COMMAND_POLICY,
}


def parse_bool(name, value):
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise OptionsError(f"{ENV_VARS.get(name, name)} must be true or false, got '{value}'")


def load_config_file(path):
    """Load the YAML config file; an empty file yields {}."""
    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise OptionsError(f"Config file '{path}' not found") from e
    except yaml.YAMLError as e:
        raise OptionsError(f"Error parsing YAML config '{path}': {e}") from e
    if not isinstance(config, dict):
        raise OptionsError(f"Config file '{path}' must contain a mapping")
    return config


def _merge_policy(name, overrides):
    base = _POLICY_DEFAULTS[name]
    if not overrides:
        return base
    if not isinstance(overrides, dict):
        raise OptionsError(f"retry.{name} must be a mapping")
    unknown = set(overrides) - {f.name for f in dataclasses.fields(RetryPolicy)}
    if unknown:
        raise OptionsError(f"Unknown retry.{name} keys: {', '.join(sorted(unknown))}")
    try:
        return dataclasses.replace(base, **overrides)
    except (TypeError, ValueError) as e:
        raise OptionsError(f"Invalid retry.{name} settings: {e}") from e


@dataclass(frozen=True)
class Options:
    project: str
    zone: str
    machine_type: str = DEFAULTS["machine_type"]
    disk_size: str = DEFAULTS["disk_size"]
    disk_image: str = DEFAULTS["disk_image"]
    network: str = ""
    subnetwork: str = ""
    public_ip: bool = False
    tag: str = ""
    service_account: str = ""
    machine_id: str = ""
    machine_folder: str = ""
    ssh_user: str = DEFAULTS["ssh_user"]
    fail_fast_on_stop: bool = False
    status_policy: RetryPolicy = STATUS_POLICY
    probe_policy: RetryPolicy = READINESS_PROBE_POLICY
    command_policy: RetryPolicy = COMMAND_POLICY

    @classmethod
    def from_env(cls, with_machine=True, environ=None):
        """Read and validate options once.

        Args:
            with_machine: require MACHINE_ID and MACHINE_FOLDER.
            environ: mapping to read instead of os.environ.

        Raises:
            OptionsError: missing or malformed values.
        """
        environ = os.environ if environ is None else environ
        config = {}
        config_path = environ.get(CONFIG_ENV_VAR)
        if config_path:
            config = load_config_file(os.path.expanduser(config_path))
            logger.debug(f"Loaded options from {config_path}")

        values = {}
        for name, var in ENV_VARS.items():
            value = environ.get(var)
            if value is None:
                value = config.get(name, DEFAULTS.get(name, ""))
            values[name] = str(value).strip() if value is not None else ""

        for name in ("project", "zone"):
            if not values[name]:
                raise OptionsError(f"{ENV_VARS[name]} is required")
        if with_machine:
            for name in ("machine_id", "machine_folder"):
                if not values[name]:
                    raise OptionsError(f"{ENV_VARS[name]} is required")
        if "-" not in values["zone"]:
            raise OptionsError(f"ZONE '{values['zone']}' is not a zone (expected e.g. us-central1-a)")

        ssh_user = values["ssh_user"] or DEFAULTS["ssh_user"]
        if not LOGIN_USER_PATTERN.fullmatch(ssh_user):
            raise OptionsError(f"SSH_USER '{ssh_user}' is not a valid login name (expected {LOGIN_USER_PATTERN.pattern})")

        retry = config.get("retry") or {}
        if not isinstance(retry, dict):
            raise OptionsError("retry must be a mapping")
        unknown = set(retry) - set(_POLICY_DEFAULTS)
        if unknown:
            raise OptionsError(f"Unknown retry sections: {', '.join(sorted(unknown))}")

        return cls(
            project=values["project"],
            zone=values["zone"],
            machine_type=values["machine_type"],
            disk_size=values["disk_size"],
            disk_image=values["disk_image"],
            network=values["network"],
            subnetwork=values["subnetwork"],
            public_ip=parse_bool("public_ip", values["public_ip"]),
            tag=values["tag"],
            service_account=values["service_account"],
            machine_id=values["machine_id"],
            machine_folder=os.path.expanduser(values["machine_folder"]),
            ssh_user=ssh_user,
            fail_fast_on_stop=parse_bool("fail_fast_on_stop", values["fail_fast_on_stop"]),
            status_policy=_merge_policy("status", retry.get("status")),
            probe_policy=_merge_policy("probe", retry.get("probe")),
            command_policy=_merge_policy("command", retry.get("command")),
        )

    def to_request(self):
        """The immutable creation request for this machine."""
        return ProvisionRequest(
            name=self.machine_id,
            project=self.project,
            zone=self.zone,
            machine_type=self.machine_type,
            disk_size=self.disk_size,
            disk_image=self.disk_image,
            network=self.network,
            subnetwork=self.subnetwork,
            public_ip=self.public_ip,
            tag=self.tag,
            service_account=self.service_account,
            machine_folder=self.machine_folder,
            login_user=self.ssh_user,
        )
