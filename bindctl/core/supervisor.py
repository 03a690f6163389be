"""Daemon launch and readiness supervision."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
import threading
from pathlib import Path

from bindctl.core.address import canonical_address, short_address
from bindctl.core.binding import DriverBinder
from bindctl.core.errors import DaemonError, DaemonExecutableNotFound, DaemonStartupFailed, DaemonStartupTimeout
from bindctl.core.model import DaemonSpec
from bindctl.core.poll import poll_until
from bindctl.core.processes import ProcessTable, daemon_pattern

LOGGER = logging.getLogger(__name__)


def readiness_marker(address: str) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(short_address(address))}.*loaded")


class DaemonSupervisor:
    def __init__(
        self,
        binder: DriverBinder,
        processes: ProcessTable,
        daemon: DaemonSpec,
        *,
        base_dir: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        self.binder = binder
        self.processes = processes
        self.daemon = daemon
        self.base_dir = base_dir
        self.cancel = cancel
        self.children: dict[str, subprocess.Popen[bytes]] = {}

    def running(self, address: str) -> list[int]:
        return self.processes.matching_pids(daemon_pattern(self.daemon.name, address), address)

    def executable(self) -> Path:
        candidates: list[Path] = []
        if self.daemon.executable is not None:
            candidates.append(self.daemon.executable)
        candidates.append(self.base_dir.parent / "build" / self.daemon.name)
        candidates.append(self.base_dir / self.daemon.name)
        for candidate in candidates:
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return candidate
        searched = ", ".join(str(c) for c in candidates)
        raise DaemonExecutableNotFound(f"No executable '{self.daemon.name}' found (searched: {searched})")

    def load(self, address: str) -> int:
        """Ensure a ready daemon owns ``address`` and return its PID.

        The wait ends once the daemon has written output, or early when the
        spawned process exits non-zero. A parent that exits 0 may have
        forked the real daemon, so its capture keeps being polled.
        """
        address = canonical_address(address)
        existing = self.running(address)
        if existing:
            LOGGER.info("Daemon for %s already running (pid %d)", address, existing[0])
            return existing[0]

        self.binder.bind(address)
        executable = self.executable()

        fd, capture_name = tempfile.mkstemp(prefix=f"bindctl-{short_address(address)}-", suffix=".log")
        capture = Path(capture_name)
        try:
            with os.fdopen(fd, "wb") as sink:
                try:
                    process = subprocess.Popen(
                        [str(executable), address],
                        stdin=subprocess.DEVNULL,
                        stdout=sink,
                        stderr=subprocess.STDOUT,
                        start_new_session=True,
                    )
                except OSError as exc:
                    raise DaemonStartupFailed(address, f"could not execute {executable}: {exc}") from exc
            self.processes.register(address, process.pid)
            LOGGER.info("Started %s for %s (pid %d)", executable, address, process.pid)

            try:
                self._await_readiness(address, process, capture)
            except DaemonError:
                self._abandon(address, process)
                raise
        finally:
            capture.unlink(missing_ok=True)

        LOGGER.info("Daemon for %s loaded", address)
        if process.poll() is None:
            self.children[address] = process
            return process.pid
        return self._adopt_forked(address, process.pid)

    def _await_readiness(self, address: str, process: subprocess.Popen[bytes], capture: Path) -> None:
        def _settled() -> bool:
            if capture.stat().st_size > 0:
                return True
            return process.poll() not in (None, 0)

        if not poll_until(_settled, self.daemon.readiness, cancel=self.cancel):
            raise DaemonStartupTimeout(address, self.daemon.readiness_timeout_s)

        output = capture.read_text(encoding="utf-8", errors="replace")
        if not readiness_marker(address).search(output):
            raise DaemonStartupFailed(address, output)

    def _abandon(self, address: str, process: subprocess.Popen[bytes]) -> None:
        if process.poll() is None:
            LOGGER.warning("Stopping unready daemon for %s (pid %d)", address, process.pid)
            process.kill()
            process.wait()
        self.processes.unregister(address)

    def _adopt_forked(self, address: str, parent_pid: int) -> int:
        # the launched process exited 0 after forking; track the survivor
        pids = self.running(address)
        if not pids:
            LOGGER.warning("Daemon for %s detached and could not be located", address)
            self.processes.unregister(address)
            return parent_pid
        self.processes.register(address, pids[0])
        LOGGER.debug("Daemon for %s forked into pid %d", address, pids[0])
        return pids[0]
