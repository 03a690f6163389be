"""Managed-device enumeration, prerequisite checks and target selection."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence

from bindctl.core.address import canonical_address
from bindctl.core.errors import DeviceDiscoveryError, DeviceNotFound, ModuleCommandError, PrerequisiteUnavailable
from bindctl.core.model import PciDevice, Profile
from bindctl.core.modules import KernelModules
from bindctl.core.sysfs import Sysfs

LOGGER = logging.getLogger(__name__)


def discover_devices(profile: Profile, sysfs: Sysfs | None = None) -> list[PciDevice]:
    """List PCI functions whose class code starts with ``profile.class_code``.

    ``lspci -Dnmm`` is tried first; the sysfs device tree is the fallback.
    """
    sysfs = sysfs or Sysfs(profile.paths.sysfs_root)
    class_code = profile.class_code.lower()
    command_errors: list[str] = []

    result = _run_lspci()
    if result is not None:
        if result.returncode == 0:
            devices = _parse_lspci(result.stdout, class_code)
            if devices:
                return devices
        else:
            stderr = (result.stderr or "").strip()
            command_errors.append(f"lspci -Dnmm -> {stderr or result.returncode}")

    try:
        return _scan_sysfs(sysfs, class_code)
    except OSError as exc:
        command_errors.append(f"{sysfs.devices_dir} -> {exc}")

    joined = " | ".join(command_errors)
    raise DeviceDiscoveryError(f"PCI enumeration failed. Details: {joined}")


def _run_lspci() -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            ["lspci", "-Dnmm"],
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None


def _parse_lspci(stdout: str, class_code: str) -> list[PciDevice]:
    # 0000:01:00.0 "0108" "8086" "0953" -r01 -p02 "8086" "3702"
    devices: list[PciDevice] = []
    for line in stdout.splitlines():
        try:
            fields = shlex.split(line)
        except ValueError:
            continue
        if len(fields) < 4:
            continue
        address, device_class, vendor, device = fields[:4]
        device_class = device_class.lower()
        if not device_class.startswith(class_code):
            continue
        devices.append(
            PciDevice(
                address=canonical_address(address),
                class_code=device_class,
                vendor_id=vendor.lower(),
                device_id=device.lower(),
            )
        )
    return devices


def _scan_sysfs(sysfs: Sysfs, class_code: str) -> list[PciDevice]:
    devices: list[PciDevice] = []
    for entry in sorted(sysfs.devices_dir.iterdir(), key=lambda p: p.name):
        # class file holds 0xCCSSPP
        device_class = (entry / "class").read_text(encoding="ascii").strip().lower().removeprefix("0x")
        if not device_class.startswith(class_code):
            continue
        vendor, device = sysfs.vendor_device(entry.name)
        devices.append(
            PciDevice(
                address=canonical_address(entry.name),
                class_code=device_class[:4],
                vendor_id=vendor,
                device_id=device,
            )
        )
    return devices


def check_prerequisites(
    profile: Profile,
    sysfs: Sysfs | None = None,
    modules: KernelModules | None = None,
) -> None:
    """Load the passthrough module and require a usable isolation mode."""
    sysfs = sysfs or Sysfs(profile.paths.sysfs_root)
    modules = modules or KernelModules()
    try:
        modules.load(profile.passthrough_module)
    except ModuleCommandError as exc:
        raise PrerequisiteUnavailable(f"Could not load {profile.passthrough_module}: {exc}") from exc

    groups = sysfs.root / "kernel/iommu_groups"
    if groups.is_dir() and any(groups.iterdir()):
        return

    noiommu = sysfs.root / "module/vfio/parameters/enable_unsafe_noiommu_mode"
    try:
        noiommu_enabled = noiommu.read_text(encoding="ascii").strip().upper() in {"Y", "1"}
    except OSError:
        noiommu_enabled = False
    if noiommu_enabled:
        LOGGER.warning("IOMMU unavailable; using vfio no-IOMMU mode")
        return

    raise PrerequisiteUnavailable(
        "No IOMMU groups found and vfio no-IOMMU mode is disabled. Enable the IOMMU in firmware/kernel cmdline."
    )


def select_targets(requested: Sequence[str], managed: Sequence[PciDevice]) -> list[PciDevice]:
    """Resolve user-supplied addresses against the managed device list.

    No addresses selects every managed device. Order follows ``requested``
    with duplicates dropped.
    """
    if not requested:
        return list(managed)

    by_address = {device.address: device for device in managed}
    selected: list[PciDevice] = []
    for raw in requested:
        address = canonical_address(raw)
        device = by_address.get(address)
        if device is None:
            raise DeviceNotFound(f"{raw} is not a managed device")
        if device not in selected:
            selected.append(device)
    return selected
