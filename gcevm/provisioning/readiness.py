"""Readiness state machine: wait for RUNNING, then probe the SSH channel.

Two phases with independent bounds:

1. Status phase: poll the instance status up to ``status_policy.attempts``
   times. Only RUNNING ends it; NotFound/Unknown/Provisioning (and, by
   default, Stopping/Stopped) mean "not yet". Exhausting the ceiling raises
   StatusTimeoutError. Worst case: the sum of the delays between polls.

2. Channel-probe phase: one unconditional ``probe_policy.initial_delay`` for
   the startup script, then up to ``probe_policy.attempts`` probes of
   ``echo ready``, each bounded by ``attempt_timeout``. Exhausting the
   ceiling only logs a warning: the first real command retries on its own.
   Worst case: initial delay + attempts x timeout + delays between probes.
"""

import asyncio
import logging

from gcevm.errors import StatusTimeoutError
from gcevm.provisioning.backoff import pause
from gcevm.provisioning.ssh_config import load_descriptor
from gcevm.provisioning.ssh_transport import transport_for
from gcevm.provisioning.types import READINESS_PROBE_POLICY, STATUS_POLICY, ResourceStatus

logger = logging.getLogger(__name__)

PROBE_COMMAND = "echo ready"

_STOPPED_STATES = (ResourceStatus.STOPPING, ResourceStatus.STOPPED)


class ReadinessWaiter:
    """Drives a freshly created instance to a usable command channel.

    Args:
        client: ResourceClient (anything with ``async status(name)``).
        status_policy: RetryPolicy for the status phase.
        probe_policy: RetryPolicy for the channel-probe phase.
        fail_fast_on_stop: raise as soon as Stopping/Stopped is observed
            instead of polling on until the ceiling.
        sleep: ``async sleep(delay, cancel)``; tests substitute a fake clock.
    """

    def __init__(
        self,
        client,
        status_policy=STATUS_POLICY,
        probe_policy=READINESS_PROBE_POLICY,
        fail_fast_on_stop=False,
        sleep=pause,
    ):
        self.client = client
        self.status_policy = status_policy
        self.probe_policy = probe_policy
        self.fail_fast_on_stop = fail_fast_on_stop
        self.sleep = sleep

    async def wait_for_running(self, name, cancel=None):
        """Poll until the instance is RUNNING.

        Raises:
            StatusTimeoutError: ceiling exhausted (or Stopping/Stopped seen
                with fail_fast_on_stop).
            ControlPlaneError: the status call itself failed.
            OperationCancelled: ``cancel`` fired.
        """
        policy = self.status_policy
        logger.info(f"Waiting for instance '{name}' to reach RUNNING (up to {policy.worst_case_seconds():.0f}s)...")

        status = ResourceStatus.UNKNOWN
        for attempt in range(1, policy.attempts + 1):
            status = await self.client.status(name)
            if status is ResourceStatus.RUNNING:
                logger.info(f"Instance '{name}' is RUNNING.")
                return status

            logger.debug(f"Status poll {attempt}/{policy.attempts}: {status.value}")
            if self.fail_fast_on_stop and status in _STOPPED_STATES:
                raise StatusTimeoutError(name, attempt, status)
            if attempt < policy.attempts:
                await self.sleep(policy.delay(attempt), cancel)

        raise StatusTimeoutError(name, policy.attempts, status)

    async def _probe_once(self, transport):
        try:
            rc = await transport.run(
                PROBE_COMMAND,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                timeout=self.probe_policy.attempt_timeout,
            )
        except OSError as e:
            logger.debug(f"Probe could not start ssh: {e}")
            return False
        return rc == 0

    async def probe_channel(self, transport, cancel=None):
        """Probe the command channel until it answers.

        Returns:
            True when a probe succeeded, False when the ceiling was exhausted.
            Never raises on probe failure.
        """
        policy = self.probe_policy
        if policy.initial_delay:
            logger.info(f"Waiting {policy.initial_delay:.0f}s for the startup script to complete...")
            await self.sleep(policy.initial_delay, cancel)

        for attempt in range(1, policy.attempts + 1):
            if await self._probe_once(transport):
                logger.info("Instance is ready for SSH connections.")
                return True
            if attempt < policy.attempts:
                logger.info(f"Waiting for SSH to be ready (attempt {attempt}/{policy.attempts})...")
                await self.sleep(policy.delay(attempt), cancel)

        logger.warning("SSH readiness check timed out, but continuing anyway...")
        return False

    async def await_ready(self, name, descriptor_path, cancel=None, configure=None):
        """Run both phases for one instance.

        Args:
            name: instance name.
            descriptor_path: ssh_config location.
            configure: optional coroutine function awaited once RUNNING is
                observed and before probing; it writes the descriptor, so a
                proxied descriptor never exists for a non-running instance.

        Returns:
            The ConnectivityDescriptor the probe ran against. A failed probe
            is not an error.

        Raises:
            StatusTimeoutError, ControlPlaneError: from the status phase.
            DescriptorError: the descriptor could not be written or read.
        """
        await self.wait_for_running(name, cancel=cancel)
        if configure is not None:
            await configure()
        descriptor = load_descriptor(descriptor_path)
        await self.probe_channel(transport_for(descriptor, descriptor_path), cancel=cancel)
        return descriptor
