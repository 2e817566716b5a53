"""CLI logging setup: plain %(message)s format on stderr.

stdout is reserved for the remote process in ``gcevm command`` and for the
machine-readable answer of ``gcevm status``, so all logging goes to stderr.
"""

import logging
import sys

from gcevm.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)

    # google-auth and grpc are chatty at DEBUG
    for name in ("google", "urllib3", "grpc"):
        logging.getLogger(name).setLevel(logging.WARNING)
