"""Driver binding state machine.

A device is in one of three states: bound to its kernel driver, unbound, or
bound to the passthrough driver. Binding always passes through the unbound
state, and every mutation is preceded by a terminator run so no daemon is
touching the device while its driver changes.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence

from bindctl.core.address import canonical_address
from bindctl.core.errors import BindTimeout, OperationCancelled, UnbindTimeout
from bindctl.core.model import STATE_PASSTHROUGH, DriverState, PollSpec
from bindctl.core.modules import KernelModules
from bindctl.core.poll import poll_until
from bindctl.core.sysfs import Sysfs
from bindctl.core.terminator import Terminator

LOGGER = logging.getLogger(__name__)


class DriverBinder:
    def __init__(
        self,
        sysfs: Sysfs,
        terminator: Terminator,
        *,
        passthrough_driver: str,
        kernel_module: str,
        modules: KernelModules | None = None,
        unbind_spec: PollSpec = PollSpec(interval_s=0.1, max_attempts=20),
        bind_spec: PollSpec = PollSpec(interval_s=0.1, max_attempts=20),
        settle_s: float = 3.0,
        cancel: threading.Event | None = None,
    ) -> None:
        self.sysfs = sysfs
        self.terminator = terminator
        self.passthrough_driver = passthrough_driver
        self.kernel_module = kernel_module
        self.modules = modules or KernelModules()
        self.unbind_spec = unbind_spec
        self.bind_spec = bind_spec
        self.settle_s = settle_s
        self.cancel = cancel

    def state(self, address: str) -> DriverState:
        return self.sysfs.driver_state(address, self.passthrough_driver)

    def unbind(self, address: str) -> None:
        address = canonical_address(address)
        self.terminator.terminate(address)

        unbind_path = self.sysfs.unbind_path(address)
        if unbind_path is not None:
            LOGGER.info("Unbinding %s from %s", address, self.sysfs.current_driver(address))
            self.sysfs.write(unbind_path, address)

        if not poll_until(
            lambda: self.sysfs.current_driver(address) is None,
            self.unbind_spec,
            cancel=self.cancel,
        ):
            raise UnbindTimeout(address, self.sysfs.current_driver(address))

    def bind(self, address: str) -> None:
        address = canonical_address(address)
        self.terminator.terminate(address)
        if self.state(address).kind == STATE_PASSTHROUGH:
            LOGGER.debug("%s already bound to %s", address, self.passthrough_driver)
            return

        self.unbind(address)

        new_id = self.sysfs.new_id_path(self.passthrough_driver)
        if new_id.exists():
            vendor, device = self.sysfs.vendor_device(address)
            LOGGER.info("Registering %s:%s with %s for %s", vendor, device, self.passthrough_driver, address)
            try:
                self.sysfs.write(new_id, f"{vendor} {device}")
            except FileExistsError:
                # id already in the driver's table; bind this device explicitly
                self.sysfs.write(self.sysfs.bind_path(self.passthrough_driver), address)

        if not poll_until(
            lambda: self.state(address).kind == STATE_PASSTHROUGH,
            self.bind_spec,
            cancel=self.cancel,
        ):
            raise BindTimeout(address, self.passthrough_driver)
        LOGGER.info("%s bound to %s", address, self.passthrough_driver)

    def reset(self, addresses: Sequence[str]) -> None:
        """Unbind every device, then reload the kernel driver module."""
        for address in addresses:
            self.unbind(address)
        LOGGER.info("Reloading module %s", self.kernel_module)
        self.modules.reload(self.kernel_module)
        if self.cancel is None:
            time.sleep(self.settle_s)
        elif self.cancel.wait(self.settle_s):
            raise OperationCancelled("Operation cancelled while devices settle")
