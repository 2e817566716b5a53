"""Instance provisioning: control-plane facade, preflight, readiness, SSH channel."""

from gcevm.provisioning.cloud import (
    delete_instance,
    instance_status,
    provision_instance,
    run_command,
    start_instance,
    stop_instance,
)
from gcevm.provisioning.gcp import ResourceClient
from gcevm.provisioning.instance_spec import build_instance
from gcevm.provisioning.preflight import NetworkPreflight
from gcevm.provisioning.readiness import ReadinessWaiter
from gcevm.provisioning.runner import CommandRunner
from gcevm.provisioning.ssh_config import configure, load_descriptor
from gcevm.provisioning.ssh_transport import DirectTransport, ProxiedTransport, transport_for
from gcevm.provisioning.types import (
    COMMAND_POLICY,
    READINESS_PROBE_POLICY,
    STATUS_POLICY,
    ConnectivityDescriptor,
    PreflightFinding,
    ProvisionRequest,
    ResourceStatus,
    RetryPolicy,
    TransportMode,
)

__all__ = [
    "ResourceClient",
    "NetworkPreflight",
    "ReadinessWaiter",
    "CommandRunner",
    "DirectTransport",
    "ProxiedTransport",
    "transport_for",
    "build_instance",
    "configure",
    "load_descriptor",
    "provision_instance",
    "run_command",
    "delete_instance",
    "instance_status",
    "start_instance",
    "stop_instance",
    "ProvisionRequest",
    "ResourceStatus",
    "ConnectivityDescriptor",
    "PreflightFinding",
    "RetryPolicy",
    "TransportMode",
    "STATUS_POLICY",
    "READINESS_PROBE_POLICY",
    "COMMAND_POLICY",
]
