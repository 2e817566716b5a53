"""Command execution over the configured channel, with its own retry policy.

Retries only cover failures to establish the channel (ssh exit 255 or ssh
not starting), and only for proxied transports where the IAP tunnel can
hiccup independently of the instance. Any other exit status belongs to the
remote command and is returned unchanged.
"""

import logging

from gcevm.errors import CommandRetryExhaustedError
from gcevm.provisioning.backoff import pause
from gcevm.provisioning.ssh_transport import SSH_CHANNEL_FAILURE
from gcevm.provisioning.types import COMMAND_POLICY

logger = logging.getLogger(__name__)


class CommandRunner:
    def __init__(self, policy=COMMAND_POLICY, sleep=pause):
        self.policy = policy
        self.sleep = sleep

    async def execute(self, transport, command, stdin=None, stdout=None, stderr=None, cancel=None):
        """Run ``command`` remotely with inherited (or given) stdio.

        Returns:
            The remote command's exit status.

        Raises:
            CommandRetryExhaustedError: the proxied channel could not be
                opened within the attempt ceiling.
        """
        if not transport.proxied:
            return await transport.run(command, stdin=stdin, stdout=stdout, stderr=stderr)

        attempts = self.policy.attempts
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                rc = await transport.run(command, stdin=stdin, stdout=stdout, stderr=stderr)
            except OSError as e:
                last_error = f"could not start ssh: {e}"
            else:
                if rc != SSH_CHANNEL_FAILURE:
                    return rc
                last_error = f"ssh exited with status {rc}"

            if attempt < attempts:
                delay = self.policy.delay(attempt)
                logger.warning(f"SSH connection failed ({last_error}); retrying in {delay:.0f}s (attempt {attempt + 1}/{attempts})")
                await self.sleep(delay, cancel)

        raise CommandRetryExhaustedError(attempts, last_error)
