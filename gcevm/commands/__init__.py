"""Shared plumbing for CLI handlers: options, client lifetime, error reporting."""

import asyncio
import logging
import signal
import sys

from gcevm.errors import GceVmError
from gcevm.options import Options
from gcevm.provisioning.gcp import ResourceClient

logger = logging.getLogger(__name__)


async def _with_client(flow, options):
    # SIGTERM from the orchestrator stops polling loops before their next sleep
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass

    client = ResourceClient.connect(options.project, options.zone)
    try:
        return await flow(client, options, cancel)
    finally:
        client.close()


def run_flow(flow, with_machine=True):
    """Validate options once, run ``flow(client, options, cancel)`` and report errors.

    Exits with status 1 on any GceVmError.
    """
    try:
        options = Options.from_env(with_machine=with_machine)
        return asyncio.run(_with_client(flow, options))
    except GceVmError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
