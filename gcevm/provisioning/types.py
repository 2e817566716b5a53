"""Shared data types for provisioning: request, status, descriptor, findings, retry policies."""

from dataclasses import dataclass
from enum import Enum

from gcevm.provisioning.backoff import delay_for

# ── Request ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProvisionRequest:
    """Everything needed to create one instance. Built once, never mutated."""

    name: str
    project: str
    zone: str
    machine_type: str
    disk_size: str
    disk_image: str
    network: str = ""
    subnetwork: str = ""
    public_ip: bool = False
    tag: str = ""
    service_account: str = ""
    machine_folder: str = ""
    login_user: str = "gcevm"

    @property
    def region(self) -> str:
        """Region derived from the zone (us-central1-a -> us-central1)."""
        return self.zone.rsplit("-", 1)[0]


# ── Status ─────────────────────────────────────────────────────────


class ResourceStatus(Enum):
    PROVISIONING = "Provisioning"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    NOT_FOUND = "NotFound"
    UNKNOWN = "Unknown"

    @classmethod
    def from_raw(cls, raw):
        """Normalize a Compute Engine status string.

        ``None`` means the instance does not exist. Unrecognized strings map
        to UNKNOWN, never to a known state.
        """
        if raw is None:
            return cls.NOT_FOUND
        return _RAW_STATUS.get(raw.strip().upper(), cls.UNKNOWN)


_RAW_STATUS = {
    "PROVISIONING": ResourceStatus.PROVISIONING,
    "STAGING": ResourceStatus.PROVISIONING,
    "REPAIRING": ResourceStatus.PROVISIONING,
    "RUNNING": ResourceStatus.RUNNING,
    "STOPPING": ResourceStatus.STOPPING,
    "SUSPENDING": ResourceStatus.STOPPING,
    "TERMINATED": ResourceStatus.STOPPED,
    "STOPPED": ResourceStatus.STOPPED,
    "SUSPENDED": ResourceStatus.STOPPED,
}


# ── Connectivity ───────────────────────────────────────────────────


class TransportMode(Enum):
    DIRECT = "direct"
    PROXIED = "proxied"


@dataclass(frozen=True)
class ConnectivityDescriptor:
    """How every later command reaches the instance (persisted as ssh_config)."""

    mode: TransportMode
    host: str
    hostname: str
    user: str
    identity_file: str
    port: int = 22
    proxy_command: str = ""
    connect_timeout: int = 60
    server_alive_interval: int = 30
    server_alive_count_max: int = 10
    connection_attempts: int = 3

    @property
    def proxied(self) -> bool:
        return self.mode is TransportMode.PROXIED


# ── Preflight ──────────────────────────────────────────────────────


class FindingState(Enum):
    SATISFIED = "satisfied"
    MISSING = "missing"


@dataclass(frozen=True)
class PreflightFinding:
    """Result of one read-only network check plus what is needed to fix it."""

    check: str
    state: FindingState
    project: str
    region: str
    network: str = ""
    subnet: str = ""
    router_name: str = ""
    nat_name: str = ""
    rule_name: str = ""
    tag: str = ""
    matched: str = ""

    @property
    def satisfied(self) -> bool:
        return self.state is FindingState.SATISFIED


# ── Retry ──────────────────────────────────────────────────────────

BACKOFF_SHAPES = ("fixed", "linear", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry loop parameters.

    Attributes:
        attempts: attempt ceiling (>= 1).
        interval: base delay in seconds between attempts.
        attempt_timeout: per-attempt timeout in seconds, or None for no limit.
        backoff: "fixed", "linear" (interval * n) or "exponential" (interval * 2**(n-1)).
        max_interval: cap on a single delay, or None.
        initial_delay: unconditional delay before the first attempt.
    """

    attempts: int
    interval: float
    attempt_timeout: float | None = None
    backoff: str = "fixed"
    max_interval: float | None = None
    initial_delay: float = 0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.backoff not in BACKOFF_SHAPES:
            raise ValueError(f"backoff must be one of {BACKOFF_SHAPES}, got '{self.backoff}'")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return delay_for(self.backoff, self.interval, attempt, self.max_interval)

    def worst_case_seconds(self) -> float:
        """Upper bound on wall-clock time spent in a loop driven by this policy."""
        total = self.initial_delay
        total += sum(self.delay(n) for n in range(1, self.attempts))
        if self.attempt_timeout:
            total += self.attempts * self.attempt_timeout
        return total


# Status phase: 60 polls, 5s apart (~5 minutes).
STATUS_POLICY = RetryPolicy(attempts=60, interval=5)

# Channel probe: let the startup script run, then 6 probes 10s apart.
READINESS_PROBE_POLICY = RetryPolicy(attempts=6, interval=10, attempt_timeout=10, initial_delay=30)

# Command execution over the IAP tunnel: 3 attempts, 2s/4s backoff.
COMMAND_POLICY = RetryPolicy(attempts=3, interval=2, backoff="linear", max_interval=10)
