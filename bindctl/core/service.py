"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from bindctl.core.binding import DriverBinder
from bindctl.core.discovery import check_prerequisites, discover_devices, select_targets
from bindctl.core.model import DeviceStatus, PciDevice, Profile
from bindctl.core.modules import KernelModules
from bindctl.core.processes import ProcessTable
from bindctl.core.profile_loader import load_profile
from bindctl.core.supervisor import DaemonSupervisor
from bindctl.core.sysfs import Sysfs
from bindctl.core.terminator import Terminator

LOGGER = logging.getLogger(__name__)


class BindService:
    """Runs bind/unbind/reset over managed devices, one device at a time.

    The first failure propagates and stops the batch; devices already
    processed are left in their new state.
    """

    def __init__(
        self,
        *,
        profile: Profile | None = None,
        profile_path: Path | None = None,
        sysfs: Sysfs | None = None,
        processes: ProcessTable | None = None,
        modules: KernelModules | None = None,
        base_dir: Path | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        if profile is None:
            loaded = load_profile(profile_path)
            profile = loaded.profile
            self.load_warnings = loaded.warnings
        else:
            self.load_warnings = ()
        self.profile = profile
        self.cancel = cancel or threading.Event()
        self.sysfs = sysfs or Sysfs(profile.paths.sysfs_root)
        self.processes = processes or ProcessTable(profile.paths.run_dir)
        self.modules = modules or KernelModules()

        self.terminator = Terminator(
            self.processes,
            daemon_name=profile.daemon.name,
            artifact_dir=profile.paths.artifact_dir,
            artifact_prefix=profile.paths.artifact_prefix,
            spec=profile.timing.terminate,
            cancel=self.cancel,
        )
        self.binder = DriverBinder(
            self.sysfs,
            self.terminator,
            passthrough_driver=profile.passthrough_driver,
            kernel_module=profile.kernel_module,
            modules=self.modules,
            unbind_spec=profile.timing.unbind,
            bind_spec=profile.timing.bind,
            settle_s=profile.timing.settle_s,
            cancel=self.cancel,
        )
        self.supervisor = DaemonSupervisor(
            self.binder,
            self.processes,
            profile.daemon,
            base_dir=base_dir or Path(sys.argv[0]).resolve().parent,
            cancel=self.cancel,
        )

    def list_devices(self) -> list[PciDevice]:
        return discover_devices(self.profile, self.sysfs)

    def resolve_targets(self, addresses: Sequence[str]) -> list[PciDevice]:
        return select_targets(addresses, self.list_devices())

    def check_prerequisites(self) -> None:
        check_prerequisites(self.profile, self.sysfs, self.modules)

    def list_status(self) -> list[DeviceStatus]:
        return [
            DeviceStatus(
                device=device,
                state=self.binder.state(device.address),
                daemon_pids=tuple(self.supervisor.running(device.address)),
            )
            for device in self.list_devices()
        ]

    def bind(self, addresses: Sequence[str]) -> dict[str, int]:
        """Bind each target to the passthrough driver and start its daemon."""
        targets = self.resolve_targets(addresses)
        started: dict[str, int] = {}
        for device in targets:
            started[device.address] = self.supervisor.load(device.address)
        return started

    def unbind(self, addresses: Sequence[str]) -> list[PciDevice]:
        targets = self.resolve_targets(addresses)
        for device in targets:
            self.binder.unbind(device.address)
        return targets

    def reset(self, addresses: Sequence[str]) -> list[PciDevice]:
        targets = self.resolve_targets(addresses)
        self.binder.reset([device.address for device in targets])
        return targets
