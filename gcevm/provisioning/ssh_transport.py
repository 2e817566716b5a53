"""SSH transports: run a command on the instance through the system ssh client.

Two implementations share one narrow interface. DirectTransport dials the
instance's public address; ProxiedTransport goes through the descriptor file
so ssh launches the IAP tunnel from its ProxyCommand.
"""

import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)

# ssh's own exit status for connection-level failures.
SSH_CHANNEL_FAILURE = 255


class ChannelTransport(Protocol):
    proxied: bool

    async def run(self, command, stdin=None, stdout=None, stderr=None, timeout=None) -> int: ...


def ssh_options(descriptor):
    """Channel-health and host-key options shared by both transports."""
    return [
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "BatchMode=yes",
        "-o", f"ConnectTimeout={descriptor.connect_timeout}",
        "-o", f"ServerAliveInterval={descriptor.server_alive_interval}",
        "-o", f"ServerAliveCountMax={descriptor.server_alive_count_max}",
    ]


async def _run_ssh(args, stdin, stdout, stderr, timeout):
    logger.debug(f"$ {' '.join(args)}")
    proc = await asyncio.create_subprocess_exec(*args, stdin=stdin, stdout=stdout, stderr=stderr)
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout)
    except TimeoutError:
        logger.debug(f"ssh timed out after {timeout}s")
        proc.kill()
        await proc.wait()
        return SSH_CHANNEL_FAILURE


class DirectTransport:
    """ssh straight to user@address with the instance key."""

    proxied = False

    def __init__(self, descriptor, address=None):
        self.descriptor = descriptor
        self.address = address or descriptor.hostname

    def args(self, command):
        d = self.descriptor
        args = ["ssh", *ssh_options(d), "-i", d.identity_file]
        if d.port != 22:
            args += ["-p", str(d.port)]
        args += [f"{d.user}@{self.address}", command]
        return args

    async def run(self, command, stdin=None, stdout=None, stderr=None, timeout=None):
        return await _run_ssh(self.args(command), stdin, stdout, stderr, timeout)


class ProxiedTransport:
    """ssh through the descriptor file; its ProxyCommand opens the IAP tunnel."""

    proxied = True

    def __init__(self, descriptor, config_path):
        self.descriptor = descriptor
        self.config_path = config_path

    def args(self, command):
        return ["ssh", "-F", self.config_path, *ssh_options(self.descriptor), self.descriptor.host, command]

    async def run(self, command, stdin=None, stdout=None, stderr=None, timeout=None):
        return await _run_ssh(self.args(command), stdin, stdout, stderr, timeout)


def transport_for(descriptor, config_path, address=None):
    if descriptor.proxied:
        return ProxiedTransport(descriptor, config_path)
    return DirectTransport(descriptor, address=address)
