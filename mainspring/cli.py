"""
Mainspring CLI - inspect and edit infrastructure state.
"""

import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .errors import StateError
from .manager import StateManager
from .models import StateSnapshot
from .settings import get_settings

# Setup
app = typer.Typer(
    name="mainspring",
    help="Inspect and edit Clockwork infrastructure state",
    add_completion=False,
)
console = Console()


def configure_logging():
    """Configure logging based on settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Configure logging on module import
configure_logging()


STATE_OPTION = typer.Option(None, "--state", help="Path to the state file (overrides MS_STATE_PATH)")
LOCK_TIMEOUT_OPTION = typer.Option(
    None, "--lock-timeout", help="Seconds to wait for a held state lock (overrides MS_LOCK_TIMEOUT)"
)
NO_LOCK_OPTION = typer.Option(False, "--no-lock", help="Do not lock the state (dangerous)")


class AlreadyInitializedError(StateError):
    """State exists already."""
    pass


def _initialize_manager(
    state: Optional[Path] = None,
    lock_timeout: Optional[float] = None,
    no_lock: bool = False,
) -> StateManager:
    """Build a StateManager from settings with command-line overrides.

    Args:
        state: Optional state path override
        lock_timeout: Optional lock wait override
        no_lock: Disable locking

    Returns:
        Configured StateManager instance
    """
    updates = {}
    if state is not None:
        updates["state_path"] = state
    if lock_timeout is not None:
        updates["lock_timeout"] = lock_timeout
    if no_lock:
        updates["lock_enabled"] = False
    settings = get_settings().model_copy(update=updates)
    return StateManager.from_settings(settings)


def _handle_command_error(e: Exception, command_type: str) -> None:
    """Print a command failure and exit.

    Raises:
        SystemExit: Always exits with code 1
    """
    if isinstance(e, KeyError):
        message = f"no resource at address {e.args[0]}"
    else:
        message = str(e)
    console.print(f"[bold red]✗ {command_type.capitalize()} failed:[/bold red] {message}")
    raise typer.Exit(code=1)


def _load(manager: StateManager, command_name: str) -> StateSnapshot:
    try:
        snapshot = manager.refresh_state()
    except StateError as e:
        _handle_command_error(e, command_name)
    if snapshot is None:
        console.print(f"[yellow]No state found at {manager.store.state_path}[/yellow]")
        console.print("[dim]Hint: run 'mainspring init' to create it[/dim]")
        raise typer.Exit(code=1)
    return snapshot


def _mutate(
    command_name: str,
    mutation: Callable[[StateSnapshot], None],
    state: Optional[Path],
    lock_timeout: Optional[float],
    no_lock: bool,
) -> StateSnapshot:
    """Run a mutation under the state lock with common error handling."""
    manager = _initialize_manager(state, lock_timeout, no_lock)
    try:
        return manager.with_lock(mutation, operation=f"mainspring {command_name}")
    except (StateError, KeyError, ValueError) as e:
        _handle_command_error(e, command_name)


@app.command()
def init(
    state: Optional[Path] = STATE_OPTION,
    lock_timeout: Optional[float] = LOCK_TIMEOUT_OPTION,
    no_lock: bool = NO_LOCK_OPTION,
):
    """Create an empty state with a new lineage."""

    def _create(snapshot: StateSnapshot) -> None:
        if snapshot.serial != 0:
            raise AlreadyInitializedError(
                f"state already exists (lineage {snapshot.lineage}, serial {snapshot.serial})"
            )

    committed = _mutate("init", _create, state, lock_timeout, no_lock)
    console.print("[bold green]✓ State initialized[/bold green]")
    console.print(f"[dim]Lineage: {committed.lineage}[/dim]")


@app.command(name="list")
def list_cmd(state: Optional[Path] = STATE_OPTION):
    """List resource addresses recorded in the state."""
    snapshot = _load(_initialize_manager(state), "list")

    table = Table(title=f"Serial {snapshot.serial} · lineage {snapshot.lineage}")
    table.add_column("Address", style="bold")
    table.add_column("Provider")
    table.add_column("Depends on", style="dim")
    for address, instance in sorted(snapshot.resources.items()):
        table.add_row(address, instance.provider, ", ".join(instance.dependencies))
    console.print(table)


@app.command()
def show(address: str, state: Optional[Path] = STATE_OPTION):
    """Show the recorded attributes of one resource."""
    snapshot = _load(_initialize_manager(state), "show")
    instance = snapshot.resources.get(address)
    if instance is None:
        _handle_command_error(KeyError(address), "show")

    console.print(f"[bold]{address}[/bold]")
    console.print(f"  Provider: {instance.provider}")
    if instance.dependencies:
        console.print(f"  Depends on: {', '.join(instance.dependencies)}")
    console.print_json(json.dumps(instance.attributes, default=str))


@app.command()
def output(state: Optional[Path] = STATE_OPTION):
    """Show root output values; sensitive values are masked."""
    snapshot = _load(_initialize_manager(state), "output")
    for name, value in sorted(snapshot.outputs.items()):
        shown = "(sensitive)" if value.sensitive else json.dumps(value.value, default=str)
        console.print(f"  {name} = {shown}")


@app.command()
def rm(
    addresses: List[str],
    state: Optional[Path] = STATE_OPTION,
    lock_timeout: Optional[float] = LOCK_TIMEOUT_OPTION,
    no_lock: bool = NO_LOCK_OPTION,
):
    """Stop tracking resources without destroying them."""

    def _remove(snapshot: StateSnapshot) -> None:
        for address in addresses:
            snapshot.remove_resource(address)

    committed = _mutate("rm", _remove, state, lock_timeout, no_lock)
    console.print(f"[bold green]✓ Removed {len(addresses)} resource(s)[/bold green]")
    console.print(f"[dim]Serial: {committed.serial}[/dim]")


@app.command()
def mv(
    source: str,
    destination: str,
    state: Optional[Path] = STATE_OPTION,
    lock_timeout: Optional[float] = LOCK_TIMEOUT_OPTION,
    no_lock: bool = NO_LOCK_OPTION,
):
    """Move a resource to a new address."""
    committed = _mutate(
        "mv", lambda snapshot: snapshot.move_resource(source, destination), state, lock_timeout, no_lock
    )
    console.print(f"[bold green]✓ Moved {source} to {destination}[/bold green]")
    console.print(f"[dim]Serial: {committed.serial}[/dim]")


@app.command(name="lock-info")
def lock_info(state: Optional[Path] = STATE_OPTION):
    """Show who holds the state lock, if anyone."""
    manager = _initialize_manager(state)
    info = manager.locker.lock_info()
    if info is None:
        console.print("[green]State is not locked[/green]")
        return
    console.print("[bold yellow]State is locked[/bold yellow]")
    console.print(f"  ID: {info.id}")
    console.print(f"  Operation: {info.operation or '-'}")
    console.print(f"  Who: {info.who} (pid {info.pid})")
    console.print(f"  Version: {info.version or '-'}")
    console.print(f"  Created: {info.created.isoformat()}")


@app.command()
def version():
    """Show Mainspring version."""
    from . import __version__

    console.print(f"Mainspring version: [bold]{__version__}[/bold]")


if __name__ == "__main__":
    app()
