"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import time

import typer

from lockctl.api import Client
from lockctl.core.errors import LockctlError
from lockctl.core.model import SinkEvent, StatusEvent
from lockctl.core.profile_loader import load_profiles
from lockctl.core.sink import QueueSink

app = typer.Typer(help="Bluetooth LE door lock control")

_PROFILE_OPTION = typer.Option(None, "--profile", help="Profile ID")
_ADDRESS_OPTION = typer.Option(None, "--address", help="Override the profile's device address")
_TIMEOUT_OPTION = typer.Option(15.0, "--timeout", help="Seconds to wait for the connection")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client(profile: str | None, address: str | None, sink: QueueSink | None = None) -> Client:
    client = Client(profile_id=profile, address=address, sink=sink)
    for warning in client.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return client


def _echo_event(event: SinkEvent) -> None:
    if isinstance(event, StatusEvent):
        typer.echo(f"[{event.state.value}] {event.text}")
    else:
        typer.echo(event.text)


def _flush(sink: QueueSink) -> None:
    for event in sink.drain():
        _echo_event(event)


def _stream(sink: QueueSink, duration_s: float | None, *, stop_on_drop: bool) -> bool:
    """Print events until the duration elapses; False if the link went away."""
    deadline = None if duration_s is None else time.monotonic() + duration_s
    while deadline is None or time.monotonic() < deadline:
        remaining = 0.5 if deadline is None else min(0.5, max(0.0, deadline - time.monotonic()))
        event = sink.get(timeout=remaining)
        if event is None:
            continue
        _echo_event(event)
        if stop_on_drop and isinstance(event, StatusEvent) and event.state.is_terminal:
            return False
    return True


def _send(intent: str, profile: str | None, address: str | None, timeout: float, wait: float) -> None:
    sink = QueueSink()
    try:
        client = _build_client(profile, address, sink)
        with client:
            client.connect()
            try:
                client.wait_until_ready(timeout)
            finally:
                _flush(sink)
            command = client.send_intent(intent)
            typer.echo(f"Sent {intent}={command.code} to {client.config.address}")
            _stream(sink, wait, stop_on_drop=True)
        _flush(sink)
    except LockctlError as exc:
        _flush(sink)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("profiles")
def list_profiles() -> None:
    """List available peripheral profiles."""
    try:
        loaded = load_profiles()
        for warning in loaded.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        if not loaded.profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)
        for profile_id, profile in sorted(loaded.profiles.items()):
            commands = ", ".join(f"{name}={code}" for name, code in sorted(profile.commands.items()))
            typer.echo(f"{profile_id}: {profile.name} ({profile.address})")
            typer.echo(f"  commands: {commands}")
    except LockctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("show")
def show_profile(
    profile: str | None = _PROFILE_OPTION,
    address: str | None = _ADDRESS_OPTION,
) -> None:
    """Print the resolved peripheral configuration."""
    try:
        config = _build_client(profile, address).config
    except LockctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    write_type = "with response" if config.write_with_response else "without response"
    typer.echo(f"Profile: {config.id} ({config.name})")
    typer.echo(f"  address: {config.address}")
    typer.echo(f"  service: {config.service_uuid}")
    typer.echo(f"  characteristic: {config.characteristic_uuid}")
    typer.echo(f"  write: {write_type}")
    typer.echo(f"  connect timeout: {config.connect_timeout_s:g}s")
    if config.reconnect.enabled:
        typer.echo(f"  reconnect: up to {config.reconnect.max_retries} attempts")
    else:
        typer.echo("  reconnect: disabled")


@app.command("send")
def send_command(
    intent: str,
    profile: str | None = _PROFILE_OPTION,
    address: str | None = _ADDRESS_OPTION,
    timeout: float = _TIMEOUT_OPTION,
    wait: float = typer.Option(2.0, "--wait", help="Seconds to print notifications after sending"),
) -> None:
    """Connect, send a named command (e.g. open, close), and print the replies."""
    _send(intent, profile, address, timeout, wait)


@app.command("open")
def open_door(
    profile: str | None = _PROFILE_OPTION,
    address: str | None = _ADDRESS_OPTION,
    timeout: float = _TIMEOUT_OPTION,
    wait: float = typer.Option(2.0, "--wait", help="Seconds to print notifications after sending"),
) -> None:
    """Send the open command."""
    _send("open", profile, address, timeout, wait)


@app.command("close")
def close_door(
    profile: str | None = _PROFILE_OPTION,
    address: str | None = _ADDRESS_OPTION,
    timeout: float = _TIMEOUT_OPTION,
    wait: float = typer.Option(2.0, "--wait", help="Seconds to print notifications after sending"),
) -> None:
    """Send the close command."""
    _send("close", profile, address, timeout, wait)


@app.command("monitor")
def monitor(
    profile: str | None = _PROFILE_OPTION,
    address: str | None = _ADDRESS_OPTION,
    timeout: float = _TIMEOUT_OPTION,
    duration: float | None = typer.Option(None, "--duration", help="Stop after N seconds"),
) -> None:
    """Connect and print notifications until interrupted."""
    sink = QueueSink()
    try:
        client = _build_client(profile, address, sink)
        with client:
            client.connect()
            try:
                client.wait_until_ready(timeout)
            finally:
                _flush(sink)
            stop_on_drop = not client.config.reconnect.enabled
            if not _stream(sink, duration, stop_on_drop=stop_on_drop):
                raise typer.Exit(code=1)
    except KeyboardInterrupt:
        pass
    except LockctlError as exc:
        _flush(sink)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _flush(sink)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
