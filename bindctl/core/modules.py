"""Kernel module load/unload via modprobe."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

from bindctl.core.errors import ModuleCommandError

LOGGER = logging.getLogger(__name__)


class KernelModules:
    def load(self, module: str) -> None:
        self._modprobe([module])
        LOGGER.info("Loaded module %s", module)

    def unload(self, module: str) -> None:
        self._modprobe(["-r", module])
        LOGGER.info("Unloaded module %s", module)

    def reload(self, module: str) -> None:
        self.unload(module)
        self.load(module)

    def _modprobe(self, args: Sequence[str]) -> None:
        cmd = ["modprobe", *args]
        try:
            result = subprocess.run(cmd, check=False, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise ModuleCommandError("modprobe not found; install kmod") from exc
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ModuleCommandError(f"{' '.join(cmd)} failed ({result.returncode}): {stderr}")
