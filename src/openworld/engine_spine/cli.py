"""CLI commands for the AI engine.

Commands:
- openworld engine ensure
- openworld engine status
- openworld engine serve [--port PORT]
- openworld models list / pull NAME / delete NAME
- openworld chat MESSAGE [--model MODEL]
"""

from __future__ import annotations

import asyncio
import sys
import time
import uuid

import click
from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn
from rich.table import Table

from openworld.client.chat import ChatService
from openworld.client.ollama import EngineClient
from openworld.config import Settings
from openworld.engine_spine.broadcaster import STATUS_TOPIC, EventBroadcaster
from openworld.engine_spine.errors import EngineError
from openworld.engine_spine.lifecycle import LifecycleController
from openworld.engine_spine.locator import BinaryLocator
from openworld.engine_spine.models import ChatMessage, ChatToken, PullProgress
from openworld.engine_spine.platforms import current_platform

console = Console()

STAGE_STYLES = {
    "checking": "cyan",
    "downloading": "blue",
    "starting": "yellow",
    "ready": "green",
    "error": "red",
}


@click.group()
def engine():
    """AI engine management commands."""
    pass


@engine.command()
@click.option(
    "--detach",
    is_flag=True,
    help="Exit once ready and leave a spawned engine running",
)
def ensure(detach: bool):
    """Make sure the AI engine is installed, running and ready.

    Downloads the engine on first use. If this command had to start the
    engine, it keeps it running until Ctrl+C.
    """
    settings = Settings.load()
    broadcaster = EventBroadcaster()

    def show(event: dict) -> None:
        if event["event_type"] != STATUS_TOPIC:
            return
        payload = event["payload"]
        style = STAGE_STYLES.get(payload["stage"], "white")
        console.print(f"[{style}]{payload['stage']:>11}[/{style}] {payload['message']}")

    broadcaster.subscribe(show)
    controller = LifecycleController.from_settings(settings, broadcaster)

    result = asyncio.run(controller.ensure_ready())
    if not result.success:
        controller.shutdown()
        sys.exit(1)

    process = controller.supervisor.process
    if process is None or detach:
        return

    console.print(
        f"[dim]Engine running (pid {process.pid}). Press Ctrl+C to stop.[/dim]"
    )
    try:
        while controller.supervisor.is_running:
            time.sleep(1)
        console.print("[red]Engine exited unexpectedly[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        controller.shutdown()
        console.print("\n[yellow]Engine stopped by user[/yellow]")


@engine.command()
def status():
    """Check AI engine status."""
    settings = Settings.load()
    client = EngineClient.from_config(settings)
    info = current_platform()
    binary = BinaryLocator(settings.bin_dir, info.os_name).locate()

    running = asyncio.run(client.is_running())

    table = Table(title="AI Engine Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Host", settings.engine_host)
    table.add_row("Running", "yes" if running else "[red]no[/red]")
    table.add_row("Platform", str(info))
    table.add_row("Binary", str(binary) if binary else "[yellow]not installed[/yellow]")
    table.add_row("Data dir", str(settings.data_dir))

    console.print(table)
    if not running:
        sys.exit(1)


@engine.command()
@click.option("--host", default="127.0.0.1", help="Bind host (127.0.0.1 only)")
@click.option("--port", default=47300, help="Bind port")
@click.option("--log-level", default="info", help="Log level")
def serve(host: str, port: int, log_level: str):
    """Start the bridge server for the desktop front-end."""
    from openworld.engine_spine.app import run_bridge

    if host != "127.0.0.1":
        console.print("[red]Error: Bridge must bind to 127.0.0.1 only[/red]")
        sys.exit(1)

    console.print("[bold blue]Starting OpenWorld engine bridge[/bold blue]")
    console.print(f"[dim]Binding to http://{host}:{port}[/dim]")

    try:
        run_bridge(host=host, port=port, log_level=log_level)
    except KeyboardInterrupt:
        console.print("\n[yellow]Bridge stopped by user[/yellow]")


@click.group()
def models():
    """Manage engine models."""
    pass


@models.command("list")
def list_models():
    """List installed models."""
    settings = Settings.load()
    client = EngineClient.from_config(settings)

    try:
        installed = asyncio.run(client.list_models())
    except EngineError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not installed:
        console.print("[yellow]No models installed[/yellow]")
        console.print(
            f"[dim]Pull one with: openworld models pull {settings.default_model}[/dim]"
        )
        return

    table = Table(title="Installed Models")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified", style="dim")

    for model in installed:
        table.add_row(
            model.name,
            f"{model.size / (1024 ** 3):.1f} GB",
            model.modified_at,
        )

    console.print(table)


@models.command()
@click.argument("name", required=False)
def pull(name: str | None):
    """Pull a model (default: the configured default model)."""
    settings = Settings.load()
    client = EngineClient.from_config(settings)
    name = name or settings.default_model

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(name, total=None)

        def on_progress(event: PullProgress) -> None:
            progress.update(
                task,
                description=f"{name}: {event.status}",
                total=event.total,
                completed=event.completed or 0,
            )

        try:
            asyncio.run(client.pull_model(name, on_progress))
        except EngineError as e:
            progress.stop()
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)

    console.print(f"[green]✓ Pulled {name}[/green]")


@models.command()
@click.argument("name")
@click.option("--yes", is_flag=True, help="Skip confirmation")
def delete(name: str, yes: bool):
    """Delete an installed model."""
    if not yes and not click.confirm(f"Delete model {name}?"):
        console.print("[yellow]Aborted[/yellow]")
        return

    settings = Settings.load()
    client = EngineClient.from_config(settings)
    try:
        asyncio.run(client.delete_model(name))
    except EngineError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Deleted {name}[/green]")


@click.command()
@click.argument("message")
@click.option("--model", "-m", default=None, help="Model to chat with")
def chat(message: str, model: str | None):
    """Send one message and stream the reply."""
    settings = Settings.load()
    broadcaster = EventBroadcaster()

    def show(event: dict) -> None:
        token = ChatToken.model_validate(event["payload"])
        console.print(token.content, end="", markup=False, highlight=False)

    broadcaster.subscribe(show)
    service = ChatService(
        EngineClient.from_config(settings),
        broadcaster,
        system_prompt=settings.system_prompt,
    )

    try:
        asyncio.run(
            service.send_message(
                f"cli-{uuid.uuid4().hex[:8]}",
                [ChatMessage(role="user", content=message)],
                model or settings.default_model,
            )
        )
    except EngineError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        sys.exit(1)

    console.print()


def register_cli_commands(cli_group):
    """Register all engine CLI commands with the main CLI."""
    cli_group.add_command(engine)
    cli_group.add_command(models)
    cli_group.add_command(chat)
