"""
CLI entrypoint for the AMI client.
"""
import sys
import typer
import asyncio
from typing import List, Optional
from loguru import logger
from rich.console import Console
from rich.table import Table

from ami_client.client.manager import Manager
from ami_client.client.visualizer import Visualizer
from ami_client.shared.config import settings
from ami_client.shared.errors import ManagerError

app = typer.Typer(help="Asterisk Manager Interface client")
console = Console()


def _configure_logging(level: str):
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _parse_fields(pairs: List[str]) -> dict:
    fields = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected KEY=VALUE, got '{pair}'")
        fields[name] = value
    return fields


def _print_item(item: dict, title: str):
    table = Table(title=title, expand=True)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for name, value in item.items():
        table.add_row(name, value)
    console.print(table)


async def _run_action(host: str, port: int, payload: dict) -> dict:
    manager = Manager(port, host, settings.USERNAME, settings.SECRET, events=False)
    async with manager:
        return await manager.send_action(payload)


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Log level for the loguru sink")):
    _configure_logging(log_level)


@app.command()
def events(
    host: str = typer.Option(settings.HOST, help="AMI host"),
    port: int = typer.Option(settings.PORT, help="AMI port"),
    duration: float = typer.Option(3600.0, help="How long to watch, in seconds"),
    reconnect_ms: int = typer.Option(settings.RECONNECT_TIMEOUT_MS, help="Delay before reconnecting after a close"),
):
    """Stay connected and render live manager events."""
    async def watch():
        manager = Manager(port, host)
        visualizer = Visualizer(manager, f"AMI {host}:{port}")
        manager.keep_connected(port, host, settings.USERNAME, settings.SECRET, True, reconnect_ms)
        try:
            await visualizer.run(duration)
        finally:
            await manager.disconnect()

    try:
        asyncio.run(watch())
    except KeyboardInterrupt:
        pass


@app.command()
def action(
    name: str = typer.Argument(..., help="Action name, e.g. Ping or CoreShowChannels"),
    fields: Optional[List[str]] = typer.Argument(None, help="Extra fields as KEY=VALUE"),
    host: str = typer.Option(settings.HOST, help="AMI host"),
    port: int = typer.Option(settings.PORT, help="AMI port"),
):
    """Send one action and print its response."""
    payload = {"action": name, **_parse_fields(fields or [])}
    try:
        response = asyncio.run(_run_action(host, port, payload))
    except ManagerError as e:
        typer.echo(f"Action failed: {e}", err=True)
        raise typer.Exit(1)
    _print_item(response, f"Response to {name}")


@app.command()
def command(
    text: str = typer.Argument(..., help="CLI command, e.g. 'core show version'"),
    host: str = typer.Option(settings.HOST, help="AMI host"),
    port: int = typer.Option(settings.PORT, help="AMI port"),
):
    """Run a CLI command through the Command action and print its output."""
    try:
        response = asyncio.run(_run_action(host, port, {"action": "Command", "command": text}))
    except ManagerError as e:
        typer.echo(f"Command failed: {e}", err=True)
        raise typer.Exit(1)

    if "content" in response:
        typer.echo(response["content"])
    else:
        _print_item(response, text)


if __name__ == "__main__":
    app()
