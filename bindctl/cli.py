"""Typer CLI entrypoint."""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import threading
from collections.abc import Iterator
from pathlib import Path

import typer

from bindctl.core.errors import BindctlError, PrivilegeError
from bindctl.core.service import BindService

app = typer.Typer(help="Move PCI devices between kernel and passthrough drivers and supervise their daemon")

DEVICES_HELP = "PCI addresses ([ssss:]bb:dd.f); default is all managed devices"


@app.callback()
def main(
    ctx: typer.Context,
    profile: Path | None = typer.Option(None, "--profile", help="Profile YAML overriding the packaged defaults"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log each transition step"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"profile": profile}


def _build_service(ctx: typer.Context, cancel: threading.Event | None = None) -> BindService:
    service = BindService(profile_path=ctx.obj["profile"], cancel=cancel)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _require_root() -> None:
    if os.geteuid() != 0:
        raise PrivilegeError("This command must be run as root")


@contextlib.contextmanager
def _cancel_on_signals() -> Iterator[threading.Event]:
    """Turn SIGINT/SIGTERM into a cancellation of the current wait."""
    cancel = threading.Event()

    def _handler(signum: int, _frame: object) -> None:
        cancel.set()

    previous = {signum: signal.signal(signum, _handler) for signum in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield cancel
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


@app.command("list")
def list_devices(ctx: typer.Context) -> None:
    """List managed devices, their driver, and daemon PIDs."""
    try:
        service = _build_service(ctx)
        statuses = service.list_status()
        if not statuses:
            typer.echo("No managed devices found")
            return

        for status in statuses:
            device = status.device
            pids = ",".join(str(pid) for pid in status.daemon_pids) or "-"
            typer.echo(
                f"{device.address} {device.vendor_id}:{device.device_id} "
                f"driver={status.state.label} daemon={pids}"
            )
    except BindctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("bind")
def bind(ctx: typer.Context, devices: list[str] | None = typer.Argument(None, help=DEVICES_HELP)) -> None:
    """Bind devices to the passthrough driver and start their daemon."""
    try:
        _require_root()
        with _cancel_on_signals() as cancel:
            service = _build_service(ctx, cancel)
            service.check_prerequisites()
            started = service.bind(devices or [])
        for address, pid in started.items():
            typer.echo(f"{address} loaded (pid {pid})")
    except BindctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("unbind")
def unbind(ctx: typer.Context, devices: list[str] | None = typer.Argument(None, help=DEVICES_HELP)) -> None:
    """Stop the daemon and detach devices from any driver."""
    try:
        _require_root()
        with _cancel_on_signals() as cancel:
            service = _build_service(ctx, cancel)
            targets = service.unbind(devices or [])
        for device in targets:
            typer.echo(f"{device.address} unbound")
    except BindctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("reset")
def reset(ctx: typer.Context, devices: list[str] | None = typer.Argument(None, help=DEVICES_HELP)) -> None:
    """Unbind devices and reload the kernel driver so it reclaims them."""
    try:
        _require_root()
        with _cancel_on_signals() as cancel:
            service = _build_service(ctx, cancel)
            targets = service.reset(devices or [])
        typer.echo(f"Reset {len(targets)} device(s) to {service.profile.kernel_driver}")
    except BindctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


if __name__ == "__main__":
    app()
