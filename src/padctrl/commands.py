"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Argument suggestions for commands taking a fixed set of values
ARGUMENT_CHOICES = {
    "mode": ["auto", "manual", "sleep"],
    "sensitivity": ["high", "medium", "low"],
    "unit": ["metric", "imperial"],
    "autostart": ["on", "off"],
    "lock": ["on", "off"],
    "autoreconnect": ["on", "off"],
}

COMMANDS = [
    Command(
        name="connect",
        aliases=["c"],
        description="Scan for a WalkingPad and connect",
        usage="connect [address]",
        handler="cmd_connect",
    ),
    Command(
        name="connect-any",
        aliases=["ca"],
        description="Connect to any nearby device",
        usage="connect-any [address]",
        handler="cmd_connect_any",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from device",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="cancel",
        aliases=["cr"],
        description="Cancel automatic reconnection",
        usage="cancel",
        handler="cmd_cancel",
    ),
    Command(
        name="start",
        aliases=["s"],
        description="Start the belt",
        usage="start",
        handler="cmd_start",
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop the belt (sleep mode)",
        usage="stop",
        handler="cmd_stop",
    ),
    Command(
        name="speed",
        aliases=["sp"],
        description="Set belt speed in km/h",
        usage="speed <km/h>",
        handler="cmd_speed",
    ),
    Command(
        name="mode",
        aliases=["m"],
        description="Set operating mode",
        usage="mode <auto|manual|sleep>",
        handler="cmd_mode",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show current belt status",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="params",
        aliases=["pa"],
        description="Show device settings",
        usage="params",
        handler="cmd_params",
    ),
    Command(
        name="records",
        aliases=["rec"],
        description="Show workout records received so far",
        usage="records",
        handler="cmd_records",
    ),
    Command(
        name="sync",
        aliases=["sy"],
        description="Request a stored workout record (255 = latest)",
        usage="sync [n]",
        handler="cmd_sync",
    ),
    Command(
        name="startspeed",
        aliases=["ss"],
        description="Set start speed in km/h",
        usage="startspeed <km/h>",
        handler="cmd_start_speed",
    ),
    Command(
        name="maxspeed",
        aliases=["ms"],
        description="Set maximum speed in km/h",
        usage="maxspeed <km/h>",
        handler="cmd_max_speed",
    ),
    Command(
        name="sensitivity",
        aliases=["sens"],
        description="Set auto-mode sensitivity",
        usage="sensitivity <high|medium|low>",
        handler="cmd_sensitivity",
    ),
    Command(
        name="unit",
        aliases=["u"],
        description="Set display unit",
        usage="unit <metric|imperial>",
        handler="cmd_unit",
    ),
    Command(
        name="autostart",
        aliases=["as"],
        description="Start the belt when stepped on",
        usage="autostart <on|off>",
        handler="cmd_auto_start",
    ),
    Command(
        name="lock",
        aliases=["lk"],
        description="Lock or unlock the device controls",
        usage="lock <on|off>",
        handler="cmd_lock",
    ),
    Command(
        name="autoreconnect",
        aliases=["ar"],
        description="Enable or disable automatic reconnection",
        usage="autoreconnect <on|off>",
        handler="cmd_auto_reconnect",
    ),
    Command(
        name="live",
        aliases=["l"],
        description="Toggle live display mode",
        usage="live",
        handler="cmd_live",
    ),
    Command(
        name="info",
        aliases=["i"],
        description="Show connection and debug information",
        usage="info",
        handler="cmd_info",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


def speed_suggestions(low: float = 0.5, high: float = 6.0) -> list[str]:
    """Speeds offered by completion, in 0.5 km/h steps."""
    suggestions = []
    step = 0
    while low + step * 0.5 <= high:
        suggestions.append(f"{low + step * 0.5:.1f}")
        step += 1
    return suggestions


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self) -> None:
        """Initialize completer."""
        self._command_names = set()
        self._command_aliases = set()

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # Still typing the command name
        if len(parts) == 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower()
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    yield Completion(
                        name[len(partial_cmd) :],
                        start_position=0,
                        display=name,
                    )
            return

        cmd = get_command(parts[0].lower())
        if cmd is None:
            return

        partial = "" if text.endswith(" ") else parts[-1].lower()
        if cmd.name in ("speed", "startspeed", "maxspeed"):
            choices = speed_suggestions()
        else:
            choices = ARGUMENT_CHOICES.get(cmd.name, [])

        for choice in choices:
            if choice.startswith(partial):
                yield Completion(
                    choice[len(partial) :],
                    start_position=0,
                    display=choice,
                )
