"""Kill any daemon controlling a device and clear its leftovers."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from bindctl.core.address import address_digits, short_address
from bindctl.core.errors import ArtifactCleanupFailed, TerminationTimeout
from bindctl.core.model import PollSpec
from bindctl.core.poll import poll_until
from bindctl.core.processes import ProcessTable, daemon_pattern

LOGGER = logging.getLogger(__name__)


class Terminator:
    def __init__(
        self,
        processes: ProcessTable,
        *,
        daemon_name: str,
        artifact_dir: Path,
        artifact_prefix: str,
        spec: PollSpec = PollSpec(interval_s=0.1, max_attempts=5),
        cancel: threading.Event | None = None,
    ) -> None:
        self.processes = processes
        self.daemon_name = daemon_name
        self.artifact_dir = artifact_dir
        self.artifact_prefix = artifact_prefix
        self.spec = spec
        self.cancel = cancel

    def artifact_path(self, address: str) -> Path:
        return self.artifact_dir / f"{self.artifact_prefix}{address_digits(address)}"

    def terminate(self, address: str) -> None:
        pattern = daemon_pattern(self.daemon_name, address)
        pids = self.processes.matching_pids(pattern, address)
        for pid in pids:
            self.processes.kill(pid)

        if pids and not poll_until(
            lambda: not self.processes.matching_pids(pattern, address),
            self.spec,
            cancel=self.cancel,
        ):
            raise TerminationTimeout(short_address(address))

        self.processes.unregister(address)
        self._remove_artifact(address)

    def _remove_artifact(self, address: str) -> None:
        path = self.artifact_path(address)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise ArtifactCleanupFailed(f"Could not remove stale artifact {path}: {exc}") from exc
        LOGGER.info("Removed stale artifact %s", path)
