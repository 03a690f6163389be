"""PCI driver-binding control surface under sysfs."""

from __future__ import annotations

import logging
from pathlib import Path

from bindctl.core.address import canonical_address
from bindctl.core.errors import BindctlError, DeviceNotFound
from bindctl.core.model import STATE_KERNEL, STATE_PASSTHROUGH, STATE_UNBOUND, DriverState

LOGGER = logging.getLogger(__name__)


class Sysfs:
    """Paths and writes for ``<root>/bus/pci``.

    Every query goes to the filesystem; nothing is cached between calls.
    """

    def __init__(self, root: Path = Path("/sys")) -> None:
        self.root = root

    @property
    def pci_root(self) -> Path:
        return self.root / "bus/pci"

    @property
    def devices_dir(self) -> Path:
        return self.pci_root / "devices"

    def device_path(self, address: str) -> Path:
        return self.devices_dir / canonical_address(address)

    def driver_link(self, address: str) -> Path:
        return self.device_path(address) / "driver"

    def driver_dir(self, driver: str) -> Path:
        return self.pci_root / "drivers" / driver

    def unbind_path(self, address: str) -> Path | None:
        path = self.driver_link(address) / "unbind"
        return path if path.exists() else None

    def new_id_path(self, driver: str) -> Path:
        return self.driver_dir(driver) / "new_id"

    def bind_path(self, driver: str) -> Path:
        return self.driver_dir(driver) / "bind"

    def current_driver(self, address: str) -> str | None:
        link = self.driver_link(address)
        if not link.exists():
            return None
        return link.resolve().name

    def driver_state(self, address: str, passthrough_driver: str) -> DriverState:
        driver = self.current_driver(address)
        if driver is None:
            return DriverState(kind=STATE_UNBOUND)
        if driver == passthrough_driver:
            return DriverState(kind=STATE_PASSTHROUGH, driver=driver)
        return DriverState(kind=STATE_KERNEL, driver=driver)

    def read_attribute(self, address: str, name: str) -> str:
        path = self.device_path(address) / name
        try:
            return path.read_text(encoding="ascii").strip()
        except FileNotFoundError as exc:
            raise DeviceNotFound(f"PCI device {canonical_address(address)} not present in {self.devices_dir}") from exc
        except OSError as exc:
            raise BindctlError(f"Could not read {path}: {exc}") from exc

    def vendor_device(self, address: str) -> tuple[str, str]:
        vendor = self.read_attribute(address, "vendor").lower().removeprefix("0x")
        device = self.read_attribute(address, "device").lower().removeprefix("0x")
        return vendor, device

    def write(self, path: Path, value: str) -> None:
        LOGGER.debug("Writing '%s' to %s", value, path)
        try:
            with path.open("w", encoding="ascii") as handle:
                handle.write(value)
        except OSError as exc:
            if isinstance(exc, FileExistsError):
                raise
            raise BindctlError(f"Could not write '{value}' to {path}: {exc}") from exc
