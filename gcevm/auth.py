"""Credential plumbing: JSON service-account credentials passed through the environment."""

import logging
import os

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "gcloud_auth.json"


def credentials_dir():
    return os.environ.get("GCEVM_STATE_DIR") or os.path.join(os.path.expanduser("~"), ".gcevm")


def setup_env_json():
    """Materialize GCLOUD_JSON_AUTH as a key file and point ADC at it.

    No-op when the variable is unset. Returns the written path or None.
    """
    content = os.environ.get("GCLOUD_JSON_AUTH", "")
    if not content:
        return None

    state_dir = credentials_dir()
    os.makedirs(state_dir, mode=0o700, exist_ok=True)
    destination = os.path.join(state_dir, CREDENTIALS_FILENAME)

    fd = os.open(destination, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)

    os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = destination
    logger.debug(f"Using credentials from GCLOUD_JSON_AUTH ({destination})")
    return destination
