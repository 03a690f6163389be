"""Domain-specific errors for bindctl."""

from __future__ import annotations


class BindctlError(Exception):
    """Base error for bindctl."""


class ProfileValidationError(BindctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(BindctlError):
    """Raised when reading a profile source fails."""


class PrivilegeError(BindctlError):
    """Raised when a mutating command is run without root privileges."""


class PrerequisiteUnavailable(BindctlError):
    """Raised when the passthrough isolation mode is not available."""


class InvalidAddressError(BindctlError):
    """Raised when a PCI address cannot be parsed."""


class DeviceNotFound(BindctlError):
    """Raised when a requested address is not a managed device."""


class DeviceDiscoveryError(BindctlError):
    """Raised when PCI enumeration command(s) fail."""


class ModuleCommandError(BindctlError):
    """Raised when loading or unloading a kernel module fails."""


class OperationCancelled(BindctlError):
    """Raised when an in-progress wait is aborted by the operator."""


class TerminationTimeout(BindctlError):
    """Raised when a controlling daemon cannot be confirmed dead."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Daemon for {address} still running after kill")
        self.address = address


class ArtifactCleanupFailed(BindctlError):
    """Raised when a stale shared-memory artifact cannot be removed."""


class BindingError(BindctlError):
    """Base error for driver binding transitions."""


class UnbindTimeout(BindingError):
    def __init__(self, address: str, driver: str | None) -> None:
        super().__init__(f"Timed out unbinding {address} from driver '{driver or 'unknown'}'")
        self.address = address
        self.driver = driver


class BindTimeout(BindingError):
    def __init__(self, address: str, driver: str) -> None:
        super().__init__(f"Timed out binding {address} to driver '{driver}'")
        self.address = address
        self.driver = driver


class DaemonError(BindctlError):
    """Base error for daemon launch and readiness."""


class DaemonExecutableNotFound(DaemonError):
    """Raised when no executable daemon binary is found."""


class DaemonStartupTimeout(DaemonError):
    def __init__(self, address: str, timeout_s: float) -> None:
        super().__init__(f"Daemon for {address} produced no output within {timeout_s:g}s")
        self.address = address
        self.timeout_s = timeout_s


class DaemonStartupFailed(DaemonError):
    def __init__(self, address: str, output: str) -> None:
        detail = output.strip() or "<no output>"
        super().__init__(f"Daemon for {address} failed to load: {detail}")
        self.address = address
        self.output = output
