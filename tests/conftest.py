from __future__ import annotations

import os
import re
from pathlib import Path

import pytest

from bindctl.core.model import DaemonSpec, PathSpec, PollSpec, Profile, TimingSpec
from bindctl.core.processes import ProcessTable
from bindctl.core.sysfs import Sysfs


class FakeSysfs(Sysfs):
    """Sysfs tree under tmp_path that reacts to control-file writes like the kernel."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.writes: list[tuple[str, str]] = []
        self.ignore_unbind = False
        self.ignore_bind = False
        self.registered_ids: dict[str, set[str]] = {}

    def add_driver(self, name: str, *, dynamic_ids: bool = False) -> None:
        driver = self.driver_dir(name)
        driver.mkdir(parents=True, exist_ok=True)
        (driver / "unbind").touch()
        (driver / "bind").touch()
        if dynamic_ids:
            (driver / "new_id").touch()

    def add_device(self, address: str, *, vendor: str = "8086", device: str = "0953", driver: str | None = "nvme",
                   class_code: str = "010802") -> None:
        path = self.device_path(address)
        path.mkdir(parents=True, exist_ok=True)
        (path / "vendor").write_text(f"0x{vendor}\n")
        (path / "device").write_text(f"0x{device}\n")
        (path / "class").write_text(f"0x{class_code}\n")
        if driver is not None:
            self.link(address, driver)

    def link(self, address: str, driver: str) -> None:
        self.add_driver(driver)
        self.driver_link(address).symlink_to(self.driver_dir(driver))

    def write(self, path: Path, value: str) -> None:
        relative = path.relative_to(self.root) if path.is_relative_to(self.root) else path
        self.writes.append((str(relative), value))
        driver = path.resolve().parent.name
        if path.name == "unbind" and not self.ignore_unbind:
            self.driver_link(value).unlink()
        elif path.name == "bind" and not self.ignore_bind:
            self.link(value, driver)
        elif path.name == "new_id":
            ids = self.registered_ids.setdefault(driver, set())
            if value in ids:
                raise FileExistsError(17, "File exists", str(path))
            ids.add(value)
            if self.ignore_bind:
                return
            for device in sorted(self.devices_dir.iterdir()):
                if self.current_driver(device.name) is None and " ".join(self.vendor_device(device.name)) == value:
                    self.link(device.name, driver)


class FakeProcessTable(ProcessTable):
    def __init__(self, run_dir: Path) -> None:
        super().__init__(run_dir)
        self.procs: dict[int, str] = {}
        self.unkillable: set[int] = set()
        self.killed: list[int] = []

    def find(self, pattern: str) -> list[int]:
        return sorted(pid for pid, cmdline in self.procs.items() if re.search(pattern, cmdline))

    def cmdline(self, pid: int) -> str | None:
        return self.procs.get(pid)

    def kill(self, pid: int) -> None:
        self.killed.append(pid)
        if pid not in self.unkillable:
            self.procs.pop(pid, None)


@pytest.fixture
def sysfs(tmp_path: Path) -> FakeSysfs:
    fake = FakeSysfs(tmp_path / "sys")
    fake.add_driver("nvme")
    fake.add_driver("vfio-pci", dynamic_ids=True)
    fake.add_device("0000:01:00.0")
    fake.add_device("0000:02:00.0", device="0a54")
    return fake


@pytest.fixture
def processes(tmp_path: Path) -> FakeProcessTable:
    return FakeProcessTable(tmp_path / "run")


@pytest.fixture
def profile(tmp_path: Path) -> Profile:
    return Profile(
        class_code="0108",
        kernel_driver="nvme",
        kernel_module="nvme",
        passthrough_driver="vfio-pci",
        passthrough_module="vfio-pci",
        daemon=DaemonSpec(name="bindctld", readiness_timeout_s=5.0, readiness_interval_s=0.01),
        paths=PathSpec(
            sysfs_root=tmp_path / "sys",
            run_dir=tmp_path / "run",
            artifact_dir=tmp_path / "shm",
            artifact_prefix="bindctl_shm_",
        ),
        timing=TimingSpec(
            terminate=PollSpec(interval_s=0.001, max_attempts=5),
            unbind=PollSpec(interval_s=0.001, max_attempts=20),
            bind=PollSpec(interval_s=0.001, max_attempts=20),
            settle_s=0.0,
        ),
    )


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr("bindctl.core.poll.time.sleep", recorded.append)
    return recorded


@pytest.fixture
def write_daemon():
    def _write(path: Path, body: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        os.chmod(path, 0o755)
        return path

    return _write
