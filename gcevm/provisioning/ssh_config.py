"""Connectivity descriptor: build, persist and re-read the instance's ssh_config.

The descriptor is an OpenSSH client config with a single Host block. Proxied
instances carry a ProxyCommand that opens an IAP tunnel, so every later
``ssh -F ssh_config <name>`` reaches the instance without re-deriving it.
"""

import logging
import os

from gcevm.errors import DescriptorParseError, DescriptorWriteError
from gcevm.provisioning.keys import private_key_path
from gcevm.provisioning.types import ConnectivityDescriptor, TransportMode

logger = logging.getLogger(__name__)

SSH_CONFIG_FILENAME = "ssh_config"
HEADER = "# gcevm connectivity descriptor"

IAP_PROXY_TEMPLATE = (
    "gcloud compute start-iap-tunnel %h %p --listen-on-stdin --project={project} --zone={zone} --verbosity=warning"
)

# ssh_config keyword -> (descriptor field, parser)
_KEYWORDS = {
    "HostName": ("hostname", str),
    "Port": ("port", int),
    "User": ("user", str),
    "IdentityFile": ("identity_file", str),
    "ProxyCommand": ("proxy_command", str),
    "ConnectTimeout": ("connect_timeout", int),
    "ServerAliveInterval": ("server_alive_interval", int),
    "ServerAliveCountMax": ("server_alive_count_max", int),
    "ConnectionAttempts": ("connection_attempts", int),
}


def _quote(value):
    """Double-quote values with whitespace (e.g. paths under "Application Support")."""
    if any(c.isspace() for c in value):
        return f'"{value}"'
    return value


def _unquote(value):
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def descriptor_path(machine_folder):
    return os.path.join(machine_folder, SSH_CONFIG_FILENAME)


def proxy_command(project, zone):
    return IAP_PROXY_TEMPLATE.format(project=project, zone=zone)


def build_descriptor(request, address=None):
    """Build the descriptor for a provisioned instance.

    Args:
        request: ProvisionRequest the instance was created from.
        address: external IP; required for direct (public IP) mode.
    """
    common = dict(
        host=request.name,
        user=request.login_user,
        identity_file=private_key_path(request.machine_folder),
    )
    if request.public_ip:
        if not address:
            raise ValueError(f"instance '{request.name}' has no external address for direct SSH")
        return ConnectivityDescriptor(mode=TransportMode.DIRECT, hostname=address, **common)

    return ConnectivityDescriptor(
        mode=TransportMode.PROXIED,
        hostname=request.name,
        proxy_command=proxy_command(request.project, request.zone),
        **common,
    )


def render_ssh_config(descriptor):
    lines = [
        f"{HEADER} (mode: {descriptor.mode.value})",
        f"Host {descriptor.host}",
        f"    HostName {descriptor.hostname}",
        f"    Port {descriptor.port}",
        f"    User {descriptor.user}",
        f"    IdentityFile {_quote(descriptor.identity_file)}",
        "    IdentitiesOnly yes",
        "    StrictHostKeyChecking no",
        "    UserKnownHostsFile /dev/null",
    ]
    if descriptor.proxied:
        lines.append(f"    ProxyCommand {descriptor.proxy_command}")
    lines += [
        f"    ConnectTimeout {descriptor.connect_timeout}",
        f"    ServerAliveInterval {descriptor.server_alive_interval}",
        f"    ServerAliveCountMax {descriptor.server_alive_count_max}",
        f"    ConnectionAttempts {descriptor.connection_attempts}",
        "    TCPKeepAlive yes",
    ]
    return "\n".join(lines) + "\n"


def parse_ssh_config(text):
    """Parse a descriptor written by render_ssh_config.

    The mode comes from the presence of ProxyCommand; keywords gcevm does not
    model are ignored.
    """
    host = None
    fields = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        keyword, _, value = line.partition(" ")
        value = _unquote(value.strip())
        if keyword == "Host":
            if host is not None:
                raise DescriptorParseError("descriptor holds more than one Host block")
            host = value
            continue
        if keyword in _KEYWORDS:
            name, parse = _KEYWORDS[keyword]
            try:
                fields[name] = parse(value)
            except ValueError as e:
                raise DescriptorParseError(f"invalid {keyword} value '{value}'") from e

    if host is None:
        raise DescriptorParseError("descriptor has no Host block")
    for required in ("hostname", "user", "identity_file"):
        if required not in fields:
            raise DescriptorParseError(f"descriptor is missing '{required}'")

    mode = TransportMode.PROXIED if fields.get("proxy_command") else TransportMode.DIRECT
    return ConnectivityDescriptor(mode=mode, host=host, **fields)


def write_descriptor(descriptor, path):
    """Write the descriptor with owner-only permissions.

    Raises:
        DescriptorWriteError: on any filesystem failure.
    """
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(render_ssh_config(descriptor))
        os.chmod(path, 0o600)
    except OSError as e:
        raise DescriptorWriteError(f"write ssh config '{path}': {e}") from e
    logger.debug(f"Wrote {descriptor.mode.value} ssh config to {path}")


def load_descriptor(path):
    try:
        with open(path) as f:
            text = f.read()
    except OSError as e:
        raise DescriptorParseError(f"read ssh config '{path}': {e}") from e
    return parse_ssh_config(text)


def configure(request, address=None):
    """Build and persist the descriptor for a request. Returns the descriptor."""
    descriptor = build_descriptor(request, address=address)
    write_descriptor(descriptor, descriptor_path(request.machine_folder))
    return descriptor
