"""command: run $COMMAND on the instance with stdio passed through."""

import logging
import os
import sys

from gcevm.commands import run_flow
from gcevm.provisioning.cloud import run_command

logger = logging.getLogger(__name__)


def handle_command(args):
    command = os.environ.get("COMMAND", "")
    if not command:
        logger.error("Error: COMMAND environment variable is missing")
        sys.exit(1)

    async def _command(client, options, cancel):
        return await run_command(client, options, command, cancel=cancel)

    rc = run_flow(_command)
    sys.exit(rc)


def register_command_command(subparsers):
    parser = subparsers.add_parser("command", help="Run $COMMAND on the instance")
    parser.set_defaults(func=handle_command)
