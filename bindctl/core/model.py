"""Core data models used across loader, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

STATE_UNBOUND = "unbound"
STATE_KERNEL = "kernel"
STATE_PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class PollSpec:
    interval_s: float
    max_attempts: int | None

    @property
    def budget_s(self) -> float | None:
        if self.max_attempts is None:
            return None
        return self.interval_s * self.max_attempts


@dataclass(frozen=True)
class DaemonSpec:
    name: str
    executable: Path | None = None
    readiness_timeout_s: float = 30.0
    readiness_interval_s: float = 0.1

    @property
    def readiness(self) -> PollSpec:
        attempts = max(1, round(self.readiness_timeout_s / self.readiness_interval_s))
        return PollSpec(interval_s=self.readiness_interval_s, max_attempts=attempts)


@dataclass(frozen=True)
class PathSpec:
    sysfs_root: Path = Path("/sys")
    run_dir: Path = Path("/run/bindctl")
    artifact_dir: Path = Path("/dev/shm")
    artifact_prefix: str = "bindctl_shm_"


@dataclass(frozen=True)
class TimingSpec:
    terminate: PollSpec = PollSpec(interval_s=0.1, max_attempts=5)
    unbind: PollSpec = PollSpec(interval_s=0.1, max_attempts=20)
    bind: PollSpec = PollSpec(interval_s=0.1, max_attempts=20)
    settle_s: float = 3.0


@dataclass(frozen=True)
class Profile:
    class_code: str
    kernel_driver: str
    kernel_module: str
    passthrough_driver: str
    passthrough_module: str
    daemon: DaemonSpec
    paths: PathSpec = PathSpec()
    timing: TimingSpec = TimingSpec()


@dataclass(frozen=True)
class PciDevice:
    address: str
    class_code: str
    vendor_id: str
    device_id: str

    @property
    def vendor_device(self) -> str:
        return f"{self.vendor_id} {self.device_id}"


@dataclass(frozen=True)
class DriverState:
    kind: str
    driver: str | None = None

    @property
    def label(self) -> str:
        return self.driver or "none"


@dataclass(frozen=True)
class DeviceStatus:
    device: PciDevice
    state: DriverState
    daemon_pids: tuple[int, ...]
