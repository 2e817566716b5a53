"""Exception hierarchy for provisioning and command execution.

Every fatal condition raised by gcevm derives from GceVmError so the CLI can
report it once at the top level. Warnings (missing IAP firewall rule, channel
probe timeout) are logged, never raised.
"""


class GceVmError(Exception):
    """Base exception for gcevm errors."""


# ── Options ─────────────────────────────────────────────────────────


class OptionsError(GceVmError):
    """Raised when required options are missing or inconsistent."""


class InvalidOptionError(OptionsError):
    """Raised when an option value cannot be parsed (e.g. disk size)."""


class InvalidReferenceError(OptionsError):
    """Raised when a network or subnetwork reference has an unsupported shape."""

    def __init__(self, kind, reference, accepted):
        self.kind = kind
        self.reference = reference
        self.accepted = accepted
        forms = ", ".join(accepted)
        super().__init__(f"Invalid {kind} reference '{reference}'. Accepted forms: {forms}")


# ── Preflight ───────────────────────────────────────────────────────


class PreflightError(GceVmError):
    """Raised when a network preflight check blocks provisioning.

    The message carries the remediation commands, so it can be shown verbatim.
    """

    def __init__(self, message, finding=None):
        super().__init__(message)
        self.finding = finding


# ── Control plane ───────────────────────────────────────────────────


class ControlPlaneError(GceVmError):
    """Raised when a Compute Engine API call fails (anything but a 404 on get)."""

    def __init__(self, operation, resource, zone=None, cause=None):
        self.operation = operation
        self.resource = resource
        self.zone = zone
        self.cause = cause
        where = f" in '{zone}'" if zone else ""
        super().__init__(f"{operation} '{resource}'{where} failed: {cause}")


class InstanceNotFoundError(GceVmError):
    """Raised when an operation needs an instance that does not exist."""

    def __init__(self, name, zone=None):
        self.name = name
        self.zone = zone
        where = f" in zone '{zone}'" if zone else ""
        super().__init__(f"instance '{name}' doesn't exist{where}")


# ── Readiness ───────────────────────────────────────────────────────


class StatusTimeoutError(GceVmError):
    """Raised when an instance never reaches RUNNING within its polling ceiling."""

    def __init__(self, name, attempts, last_status):
        self.name = name
        self.attempts = attempts
        self.last_status = last_status
        super().__init__(
            f"timeout waiting for instance '{name}' to be running "
            f"(polled {attempts} times, last status: {last_status.value})"
        )


class OperationCancelled(GceVmError):
    """Raised when the caller's cancellation signal fires during a wait."""


# ── Descriptor ──────────────────────────────────────────────────────


class DescriptorError(GceVmError):
    """Base for connectivity descriptor failures."""


class DescriptorWriteError(DescriptorError):
    """Raised when the ssh_config descriptor cannot be written."""


class DescriptorParseError(DescriptorError):
    """Raised when an ssh_config descriptor cannot be read back."""


# ── Execution ───────────────────────────────────────────────────────


class CommandRetryExhaustedError(GceVmError):
    """Raised when every attempt to open the command channel failed."""

    def __init__(self, attempts, last_error):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"command channel failed after {attempts} attempt(s): {last_error}")


class KeyPairError(GceVmError):
    """Raised when the instance key pair cannot be loaded or generated."""


class MissingExternalAddressError(GceVmError):
    """Raised when a public-IP instance has no external NAT address."""

    def __init__(self, name):
        self.name = name
        super().__init__(f"instance '{name}' doesn't have an external nat ip")
