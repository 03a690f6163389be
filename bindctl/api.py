"""Stable public API for building tooling on top of bindctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import threading
from pathlib import Path

from bindctl.core.errors import (
    ArtifactCleanupFailed,
    BindctlError,
    BindTimeout,
    DaemonExecutableNotFound,
    DaemonStartupFailed,
    DaemonStartupTimeout,
    DeviceDiscoveryError,
    DeviceNotFound,
    InvalidAddressError,
    ModuleCommandError,
    OperationCancelled,
    PrerequisiteUnavailable,
    PrivilegeError,
    ProfileLoadError,
    ProfileValidationError,
    TerminationTimeout,
    UnbindTimeout,
)
from bindctl.core.model import DeviceStatus, DriverState, PciDevice, PollSpec, Profile
from bindctl.core.service import BindService

__all__ = [
    "ArtifactCleanupFailed",
    "BindctlError",
    "BindTimeout",
    "DaemonExecutableNotFound",
    "DaemonStartupFailed",
    "DaemonStartupTimeout",
    "DeviceDiscoveryError",
    "DeviceNotFound",
    "InvalidAddressError",
    "ModuleCommandError",
    "OperationCancelled",
    "PrerequisiteUnavailable",
    "PrivilegeError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TerminationTimeout",
    "UnbindTimeout",
    "DeviceStatus",
    "DriverState",
    "PciDevice",
    "PollSpec",
    "Profile",
    "Client",
]


class Client:
    """Public client for driver rebinding and daemon supervision.

    A `Client` wraps profile loading, device discovery, driver transitions
    and daemon startup behind a stable API. Call `cancel()` from another
    thread or a signal handler to abort an in-progress wait.
    """

    def __init__(
        self,
        *,
        profile: Profile | None = None,
        profile_path: Path | None = None,
    ) -> None:
        self._cancel = threading.Event()
        self._service = BindService(profile=profile, profile_path=profile_path, cancel=self._cancel)

    @property
    def profile(self) -> Profile:
        return self._service.profile

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def cancel(self) -> None:
        self._cancel.set()

    def list_devices(self) -> list[PciDevice]:
        return self._service.list_devices()

    def status(self) -> list[DeviceStatus]:
        return self._service.list_status()

    def check_prerequisites(self) -> None:
        self._service.check_prerequisites()

    def bind(self, *addresses: str) -> dict[str, int]:
        return self._service.bind(addresses)

    def unbind(self, *addresses: str) -> list[PciDevice]:
        return self._service.unbind(addresses)

    def reset(self, *addresses: str) -> list[PciDevice]:
        return self._service.reset(addresses)
