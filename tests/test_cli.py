from __future__ import annotations

from typer.testing import CliRunner

from bindctl import cli
from bindctl.core.errors import DaemonStartupFailed, DeviceNotFound
from bindctl.core.model import STATE_KERNEL, STATE_PASSTHROUGH, DaemonSpec, DeviceStatus, DriverState, PciDevice, Profile

DEVICES = [
    PciDevice(address="0000:01:00.0", class_code="0108", vendor_id="8086", device_id="0953"),
    PciDevice(address="0000:02:00.0", class_code="0108", vendor_id="144d", device_id="a808"),
]


class FakeService:
    instances: list["FakeService"] = []

    def __init__(self, *, profile_path=None, cancel=None) -> None:
        self.profile_path = profile_path
        self.cancel = cancel
        self.load_warnings = ()
        self.calls: list[tuple[str, list[str]]] = []
        self.profile = Profile(
            class_code="0108",
            kernel_driver="nvme",
            kernel_module="nvme",
            passthrough_driver="vfio-pci",
            passthrough_module="vfio-pci",
            daemon=DaemonSpec(name="bindctld"),
        )
        FakeService.instances.append(self)

    def _targets(self, addresses):
        if not addresses:
            return list(DEVICES)
        known = {d.address: d for d in DEVICES}
        return [known["0000:" + a if len(a) == 7 else a] for a in addresses]

    def list_status(self):
        return [
            DeviceStatus(device=DEVICES[0], state=DriverState(kind=STATE_PASSTHROUGH, driver="vfio-pci"), daemon_pids=(4321,)),
            DeviceStatus(device=DEVICES[1], state=DriverState(kind=STATE_KERNEL, driver="nvme"), daemon_pids=()),
        ]

    def check_prerequisites(self):
        self.calls.append(("prereq", []))

    def bind(self, addresses):
        self.calls.append(("bind", list(addresses)))
        return {d.address: 1000 + i for i, d in enumerate(self._targets(addresses))}

    def unbind(self, addresses):
        self.calls.append(("unbind", list(addresses)))
        return self._targets(addresses)

    def reset(self, addresses):
        self.calls.append(("reset", list(addresses)))
        return self._targets(addresses)


runner = CliRunner()


def _as_root(monkeypatch) -> None:
    monkeypatch.setattr(cli.os, "geteuid", lambda: 0)
    monkeypatch.setattr(cli, "BindService", FakeService)
    FakeService.instances.clear()


def test_list_command(monkeypatch):
    monkeypatch.setattr(cli, "BindService", FakeService)
    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 0
    assert "0000:01:00.0 8086:0953 driver=vfio-pci daemon=4321" in result.stdout
    assert "0000:02:00.0 144d:a808 driver=nvme daemon=-" in result.stdout


def test_bind_all_devices(monkeypatch):
    _as_root(monkeypatch)
    result = runner.invoke(cli.app, ["bind"])
    assert result.exit_code == 0
    assert "0000:01:00.0 loaded (pid 1000)" in result.stdout
    service = FakeService.instances[-1]
    assert service.calls == [("prereq", []), ("bind", [])]
    assert service.cancel is not None


def test_bind_selected_devices(monkeypatch):
    _as_root(monkeypatch)
    result = runner.invoke(cli.app, ["bind", "02:00.0", "01:00.0"])
    assert result.exit_code == 0
    assert FakeService.instances[-1].calls[-1] == ("bind", ["02:00.0", "01:00.0"])


def test_unbind_command(monkeypatch):
    _as_root(monkeypatch)
    result = runner.invoke(cli.app, ["unbind", "01:00.0"])
    assert result.exit_code == 0
    assert "0000:01:00.0 unbound" in result.stdout


def test_reset_command(monkeypatch):
    _as_root(monkeypatch)
    result = runner.invoke(cli.app, ["reset"])
    assert result.exit_code == 0
    assert "Reset 2 device(s) to nvme" in result.stdout


def test_profile_option_is_forwarded(monkeypatch, tmp_path):
    _as_root(monkeypatch)
    path = tmp_path / "profile.yaml"
    result = runner.invoke(cli.app, ["--profile", str(path), "reset"])
    assert result.exit_code == 0
    assert FakeService.instances[-1].profile_path == path


def test_non_root_rejected(monkeypatch):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    monkeypatch.setattr(cli, "BindService", FakeService)
    FakeService.instances.clear()
    result = runner.invoke(cli.app, ["bind"])
    assert result.exit_code == 1
    assert "must be run as root" in result.stderr
    assert FakeService.instances == []


def test_unknown_command_prints_usage():
    result = runner.invoke(cli.app, ["frobnicate"])
    assert result.exit_code != 0
    assert "Usage" in result.output


def test_device_not_found_error_is_clean(monkeypatch):
    class MissingService(FakeService):
        def bind(self, addresses):
            raise DeviceNotFound("05:00.0 is not a managed device")

    _as_root(monkeypatch)
    monkeypatch.setattr(cli, "BindService", MissingService)
    result = runner.invoke(cli.app, ["bind", "05:00.0"])
    assert result.exit_code == 1
    assert "Error: 05:00.0 is not a managed device" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_daemon_output_is_surfaced(monkeypatch):
    class FailingService(FakeService):
        def bind(self, addresses):
            raise DaemonStartupFailed("0000:01:00.0", "01:00.0 failed: no memory\n")

    _as_root(monkeypatch)
    monkeypatch.setattr(cli, "BindService", FailingService)
    result = runner.invoke(cli.app, ["bind", "01:00.0"])
    assert result.exit_code == 1
    assert "01:00.0 failed: no memory" in result.stderr


def test_load_warning_is_printed(monkeypatch):
    class WarnService(FakeService):
        def __init__(self, **kwargs) -> None:
            super().__init__(**kwargs)
            self.load_warnings = ("Profile /etc/x.yaml overrides packaged settings: daemon",)

    monkeypatch.setattr(cli, "BindService", WarnService)
    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 0
    assert "Warning: Profile /etc/x.yaml overrides packaged settings: daemon" in result.stderr
