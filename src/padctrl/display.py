"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including formatted tables, status display,
and toggle-able live display updates.
"""

import logging
from typing import Iterable, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .models import DeviceParameters, DisplayFlag, SessionState, WorkoutRecord
from .protocol import format_distance, format_speed, format_time, mode_name, state_name
from .state import Snapshot

logger = logging.getLogger(__name__)

SESSION_STYLES = {
    SessionState.CONNECTED: "green",
    SessionState.CONNECTING: "yellow",
    SessionState.RECONNECTING: "yellow",
    SessionState.DISCONNECTED: "red",
}


def _on_off(value: bool) -> str:
    return "on" if value else "off"


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_snapshot: Optional[Snapshot] = None

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]PadCtrl - WalkingPad Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, snapshot: Snapshot) -> None:
        """Display one-time status table."""
        self.console.print(self.format_status_table(snapshot))

    def print_params(self, params: DeviceParameters) -> None:
        table = Table(title="Device Settings", show_header=True, header_style="bold cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="yellow")

        shown = [flag.name.lower() for flag in DisplayFlag if params.display & flag]
        table.add_row("Max speed", f"{format_speed(params.max_speed)} km/h")
        table.add_row("Start speed", f"{format_speed(params.start_speed)} km/h")
        table.add_row("Auto start", _on_off(params.auto_start))
        table.add_row("Sensitivity", {1: "high", 2: "medium", 3: "low"}.get(params.sensitivity, "unknown"))
        table.add_row("Unit", "imperial" if params.unit else "metric")
        table.add_row("Display", ", ".join(shown) or "-")
        table.add_row("Locked", _on_off(params.locked))
        table.add_row("Goal", f"type {params.goal_type}, value {params.goal}")
        self.console.print(table)

    def print_records(self, records: Iterable[WorkoutRecord]) -> None:
        records = list(records)
        if not records:
            self.print_info("No workout records received")
            return

        table = Table(title="Workout Records", show_header=True, header_style="bold cyan")
        table.add_column("#", style="dim")
        table.add_column("Duration", style="yellow")
        table.add_column("Distance", style="yellow")
        table.add_column("Steps", style="yellow")
        table.add_column("Remaining", style="dim")
        for index, record in enumerate(records, start=1):
            table.add_row(
                str(index),
                format_time(record.duration),
                f"{format_distance(record.distance)} km",
                f"{record.steps:,}",
                str(record.remaining),
            )
        self.console.print(table)

    def print_result(self, cmd: str, queued: bool) -> None:
        """Display whether a command was queued.

        Args:
            cmd: Command name
            queued: Value returned by the controller setter
        """
        if queued:
            self.console.print(f"[green]✓[/green] {cmd} sent", highlight=False)
        else:
            self.console.print(f"[red]✗[/red] {cmd} not sent", highlight=False)

    def print_error(self, message: str) -> None:
        """Print red error message.

        Args:
            message: Error message text
        """
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message.

        Args:
            message: Info message text
        """
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def start_live(self, snapshot: Snapshot) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_snapshot = snapshot
        self._live = Live(
            self.format_status_table(snapshot), console=self.console, refresh_per_second=2
        )
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, snapshot: Snapshot) -> None:
        """Update live display with a new snapshot."""
        if not self.live_enabled or self._live is None:
            return

        self._live_snapshot = snapshot
        try:
            self._live.update(self.format_status_table(snapshot))
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self, snapshot: Snapshot) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live(snapshot)
        return self.live_enabled

    def format_status_table(self, snapshot: Snapshot) -> Table:
        """Create Rich Table for status display."""
        status = snapshot.status
        style = SESSION_STYLES.get(snapshot.session_state, "white")

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Connection", f"[{style}]{snapshot.session_state.value}[/{style}]")
        if snapshot.device_name:
            table.add_row("Device", snapshot.device_name)
        table.add_row("Belt", state_name(status.state))
        table.add_row("Mode", mode_name(status.mode))
        table.add_row("Speed", f"{format_speed(status.speed)} km/h")
        table.add_row("Distance", f"{format_distance(status.distance)} km")
        table.add_row("Time", format_time(status.time))
        table.add_row("Steps", f"{status.steps:,}")
        if snapshot.last_error is not None:
            table.add_row("Last error", f"[red]{snapshot.last_error}[/red]")

        return table
