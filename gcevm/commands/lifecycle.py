"""init, start and stop: credential check and power management."""

import logging

from gcevm.commands import run_flow
from gcevm.provisioning.cloud import start_instance, stop_instance

logger = logging.getLogger(__name__)


async def _init(client, options, cancel):
    await client.init()
    logger.info(f"Credentials OK for project '{options.project}' in zone '{options.zone}'.")


async def _start(client, options, cancel):
    await start_instance(client, options, cancel=cancel)


def handle_init(args):
    run_flow(_init, with_machine=False)


def handle_start(args):
    run_flow(_start)


def handle_stop(args):
    async def _stop(client, options, cancel):
        await stop_instance(client, options, wait=not args.no_wait)

    run_flow(_stop)


def register_lifecycle_commands(subparsers):
    """Register init, start and stop."""
    parser = subparsers.add_parser("init", help="Validate project, zone and credentials")
    parser.set_defaults(func=handle_init)

    parser = subparsers.add_parser("start", help="Start a stopped instance and wait for RUNNING")
    parser.set_defaults(func=handle_start)

    parser = subparsers.add_parser("stop", help="Stop the instance")
    parser.add_argument("--no-wait", action="store_true", help="Return once the stop request is accepted")
    parser.set_defaults(func=handle_stop)
