"""Process table queries and the daemon PID registry."""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
from collections.abc import Sequence
from pathlib import Path

from bindctl.core.address import address_digits, short_address

LOGGER = logging.getLogger(__name__)


def daemon_pattern(daemon_name: str, address: str) -> str:
    """Command-line pattern identifying the daemon that owns ``address``."""
    return f"{re.escape(daemon_name)}.*{re.escape(short_address(address))}"


class ProcessTable:
    """Live process lookups plus a PID file per device under ``run_dir``.

    Registered PIDs are only trusted while the process is alive and its
    command line still matches; the ``pgrep -f`` scan is always consulted too.
    """

    def __init__(self, run_dir: Path = Path("/run/bindctl"), proc_root: Path = Path("/proc")) -> None:
        self.run_dir = run_dir
        self.proc_root = proc_root

    def find(self, pattern: str) -> list[int]:
        result = _run_command(["pgrep", "-f", pattern])
        if result is None:
            pids = self._scan_proc(pattern)
        elif result.returncode not in (0, 1):
            LOGGER.warning("pgrep failed (%s), scanning %s", result.returncode, self.proc_root)
            pids = self._scan_proc(pattern)
        else:
            pids = [int(line) for line in result.stdout.split() if line.isdigit()]
        own = {os.getpid(), os.getppid()}
        return sorted(pid for pid in pids if pid not in own)

    def cmdline(self, pid: int) -> str | None:
        try:
            raw = (self.proc_root / str(pid) / "cmdline").read_bytes()
        except OSError:
            return None
        return raw.replace(b"\0", b" ").decode("utf-8", errors="replace").strip()

    def kill(self, pid: int) -> None:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        LOGGER.info("Sent SIGKILL to pid %d", pid)

    def registry_path(self, address: str) -> Path:
        return self.run_dir / f"{address_digits(address)}.pid"

    def register(self, address: str, pid: int) -> None:
        path = self.registry_path(address)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{pid}\n", encoding="ascii")

    def registered_pid(self, address: str) -> int | None:
        try:
            content = self.registry_path(address).read_text(encoding="ascii").strip()
        except OSError:
            return None
        return int(content) if content.isdigit() else None

    def unregister(self, address: str) -> None:
        self.registry_path(address).unlink(missing_ok=True)

    def matching_pids(self, pattern: str, address: str) -> list[int]:
        pids = set(self.find(pattern))
        registered = self.registered_pid(address)
        if registered is not None and registered not in pids:
            cmdline = self.cmdline(registered)
            if cmdline is not None and re.search(pattern, cmdline):
                pids.add(registered)
        return sorted(pids)

    def _scan_proc(self, pattern: str) -> list[int]:
        regex = re.compile(pattern)
        pids: list[int] = []
        for entry in self.proc_root.iterdir():
            if not entry.name.isdigit():
                continue
            cmdline = self.cmdline(int(entry.name))
            if cmdline and regex.search(cmdline):
                pids.append(int(entry.name))
        return pids


def _run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None
