"""
Main REPL application for WalkingPad control.

Interactive command loop with async support, auto-completion,
and live status display.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command
from .controller import TreadmillController
from .core import ADDRESS_ENV_VAR, SessionConfig
from .display import DisplayManager
from .errors import UserCancelledSelection
from .link import BleakLink, ScanFilter
from .models import Mode, Sensitivity, SessionState, Unit

logger = logging.getLogger(__name__)

MODE_NAMES = {"auto": Mode.AUTO, "manual": Mode.MANUAL, "sleep": Mode.SLEEP}
SENSITIVITY_NAMES = {
    "high": Sensitivity.HIGH,
    "medium": Sensitivity.MEDIUM,
    "low": Sensitivity.LOW,
}
UNIT_NAMES = {"metric": Unit.METRIC, "imperial": Unit.IMPERIAL}
SWITCH_NAMES = {"on": True, "off": False, "1": True, "0": False}


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
    )


def parse_kmh(text: str) -> int:
    """Convert a km/h string to 0.1 km/h units.

    Raises:
        ValueError: If the text is not a number
    """
    return int(round(float(text) * 10))


def known_addresses(cli_addresses: Optional[list[str]] = None) -> list[str]:
    """Addresses from the command line, then from the environment."""
    addresses = list(cli_addresses or [])
    env = os.environ.get(ADDRESS_ENV_VAR, "")
    for address in env.split(","):
        address = address.strip()
        if address and address not in addresses:
            addresses.append(address)
    return addresses


class PadCtrlREPL:
    """Interactive REPL for WalkingPad control."""

    def __init__(self, controller: Optional[TreadmillController] = None) -> None:
        """Initialize REPL with controller and display manager."""
        self.controller = controller or TreadmillController()
        self.display = DisplayManager()
        self.running = False
        self.session: PromptSession

        self.controller.set_on_disconnect(self._on_device_disconnect)

        # Create prompt session with auto-completion
        self.session = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background update task
        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()

        # Reconnect to a remembered device, or scan for one
        if await self.controller.start_persistent_reconnect():
            self.display.print_info("Waiting for a remembered WalkingPad...")
        else:
            self.display.console.print("Attempting to connect to WalkingPad...")
            if await self.controller.connect():
                self.display.console.print("✓ Connected successfully\n")
            else:
                self.display.console.print(
                    "⚠ Could not connect to device. Use 'connect' command to retry.\n"
                )

        # Start update processing loop
        self._update_task = asyncio.create_task(self._update_loop())

        try:
            while self.running:
                try:
                    prompt_text = self._get_prompt()
                    text = await self.session.prompt_async(prompt_text)

                    if text.strip():
                        await self._handle_input(text.strip())

                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue

        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass
            await self.controller.shutdown()

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection state."""
        state = self.controller.session_state
        if state is SessionState.CONNECTED:
            label = self.controller.device_name or "WalkingPad"
        else:
            label = state.value
        return FormattedText([("class:prompt", f"[{label}] > ")])

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        if not parts:
            return

        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _update_loop(self) -> None:
        """Background task to process state updates."""
        try:
            async for snapshot in self.controller.get_updates():
                if self.display.live_enabled:
                    self.display.update_live(snapshot)
        except asyncio.CancelledError:
            pass

    def _on_device_disconnect(self) -> None:
        """Callback when device disconnects."""
        if self.display.live_enabled:
            self.display.stop_live()
        if self.controller.session_state is SessionState.RECONNECTING:
            self.display.print_info("Device disconnected, reconnecting...")
        else:
            self.display.print_info("Device disconnected")

    def _require_connection(self) -> bool:
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'connect' first.")
            return False
        return True

    def _parse_choice(self, args: list, choices: dict, usage: str) -> Optional[Any]:
        if not args or args[0].lower() not in choices:
            self.display.print_error(f"Usage: {usage}")
            return None
        return choices[args[0].lower()]

    def _parse_speed(self, args: list, usage: str) -> Optional[int]:
        if not args:
            self.display.print_error(f"Usage: {usage}")
            return None
        try:
            return parse_kmh(args[0])
        except ValueError:
            self.display.print_error(f"Invalid speed: {args[0]}")
            return None

    # ========== Command Handlers ==========

    async def _report_connect(self, connected: bool) -> None:
        if connected:
            self.display.print_info(f"Connected to {self.controller.device_name}")
            await self.cmd_status([])
        else:
            error = self.controller.last_error
            self.display.print_error(f"Connection failed: {error or 'unknown error'}")

    async def cmd_connect(self, args: list) -> None:
        """Scan for a WalkingPad and connect."""
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return
        self.display.print_info("Connecting...")
        await self._report_connect(await self.controller.connect(args[0] if args else None))

    async def cmd_connect_any(self, args: list) -> None:
        """Connect to any nearby device."""
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return
        self.display.print_info("Connecting to first nearby device...")
        await self._report_connect(
            await self.controller.connect_any(args[0] if args else None)
        )

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from device."""
        if self.display.live_enabled:
            self.display.stop_live()
        await self.controller.disconnect()
        self.display.print_info("Disconnected")

    async def cmd_cancel(self, args: list) -> None:
        """Cancel automatic reconnection."""
        self.controller.cancel_reconnect()
        self.display.print_info("Reconnection cancelled")

    async def cmd_start(self, args: list) -> None:
        """Start the belt."""
        if not self._require_connection():
            return
        self.display.print_result("start", self.controller.start())

    async def cmd_stop(self, args: list) -> None:
        """Stop the belt."""
        if not self._require_connection():
            return
        self.display.print_result("stop", self.controller.stop())

    async def cmd_speed(self, args: list) -> None:
        """Set belt speed in km/h."""
        if not self._require_connection():
            return
        speed = self._parse_speed(args, "speed <km/h>")
        if speed is None:
            return
        if not self.controller.set_speed(speed):
            self.display.print_error(
                f"Speed out of range. Must be {self.controller.SPEED_MIN / 10:.1f}-"
                f"{self.controller.SPEED_MAX / 10:.1f} km/h"
            )
            return
        self.display.print_info(f"Speed set to {speed / 10:.1f} km/h")

    async def cmd_mode(self, args: list) -> None:
        if not self._require_connection():
            return
        mode = self._parse_choice(args, MODE_NAMES, "mode <auto|manual|sleep>")
        if mode is not None:
            self.display.print_result("mode", self.controller.set_mode(mode))

    async def cmd_status(self, args: list) -> None:
        """Show current belt status."""
        self.display.print_status(self.controller.snapshot())

    async def cmd_params(self, args: list) -> None:
        self.display.print_params(self.controller.params)

    async def cmd_records(self, args: list) -> None:
        self.display.print_records(self.controller.records)

    async def cmd_sync(self, args: list) -> None:
        if not self._require_connection():
            return
        try:
            index = int(args[0]) if args else 0xFF
        except ValueError:
            self.display.print_error(f"Invalid record index: {args[0]}")
            return
        self.display.print_result("sync", self.controller.sync_records(index))

    async def cmd_start_speed(self, args: list) -> None:
        if not self._require_connection():
            return
        speed = self._parse_speed(args, "startspeed <km/h>")
        if speed is not None:
            self.display.print_result("startspeed", self.controller.set_start_speed(speed))

    async def cmd_max_speed(self, args: list) -> None:
        if not self._require_connection():
            return
        speed = self._parse_speed(args, "maxspeed <km/h>")
        if speed is not None:
            self.display.print_result("maxspeed", self.controller.set_max_speed(speed))

    async def cmd_sensitivity(self, args: list) -> None:
        if not self._require_connection():
            return
        value = self._parse_choice(args, SENSITIVITY_NAMES, "sensitivity <high|medium|low>")
        if value is not None:
            self.display.print_result("sensitivity", self.controller.set_sensitivity(value))

    async def cmd_unit(self, args: list) -> None:
        if not self._require_connection():
            return
        value = self._parse_choice(args, UNIT_NAMES, "unit <metric|imperial>")
        if value is not None:
            self.display.print_result("unit", self.controller.set_unit(value))

    async def cmd_auto_start(self, args: list) -> None:
        if not self._require_connection():
            return
        value = self._parse_choice(args, SWITCH_NAMES, "autostart <on|off>")
        if value is not None:
            self.display.print_result("autostart", self.controller.set_auto_start(value))

    async def cmd_lock(self, args: list) -> None:
        if not self._require_connection():
            return
        value = self._parse_choice(args, SWITCH_NAMES, "lock <on|off>")
        if value is not None:
            self.display.print_result("lock", self.controller.set_lock(value))

    async def cmd_auto_reconnect(self, args: list) -> None:
        value = self._parse_choice(args, SWITCH_NAMES, "autoreconnect <on|off>")
        if value is None:
            return
        self.controller.set_auto_reconnect(value)
        self.display.print_info(f"Auto-reconnect {'enabled' if value else 'disabled'}")

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        if not self.display.toggle_live(self.controller.snapshot()):
            self.display.print_info("Live display disabled")

    async def cmd_info(self, args: list) -> None:
        """Show connection and debug information."""
        supervisor = self.controller.supervisor
        session = supervisor.session

        self.display.console.print("[bold cyan]Connection[/bold cyan]")
        self.display.console.print(f"  State: {self.controller.session_state.value}")
        self.display.console.print(f"  Device: {self.controller.device_name or '-'}")
        self.display.console.print(f"  Auto-reconnect: {self.controller.auto_reconnect}")
        self.display.console.print(f"  Reconnect attempts: {supervisor.attempts}")
        self.display.console.print(f"  Last error: {self.controller.last_error or '-'}")

        self.display.console.print()
        self.display.console.print("[bold cyan]Debug Information[/bold cyan]")
        self.display.console.print(f"  Live enabled: {self.display.live_enabled}")
        self.display.console.print(
            f"  Update queue size: {self.controller._update_queue.qsize()}"
        )
        if session is not None:
            self.display.console.print(f"  Session phase: {session.phase.value}")
            self.display.console.print(f"  Pending commands: {len(session.queue)}")
            self.display.console.print(f"  Write failures: {session.write_failures}")
            self.display.console.print(
                f"  Params received: {session.poller.has_queried_params}"
            )
            for raw in session.discarded_frames:
                self.display.console.print(f"  Discarded frame: {raw.hex(' ')}")

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.controller.is_connected:
            self.display.print_info("Disconnecting...")
            await self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def scan_devices(link: BleakLink, display: DisplayManager) -> None:
    """List nearby WalkingPads without connecting."""
    found = []

    def collect(devices: list) -> None:
        found.extend(devices)
        return None

    link.chooser = collect
    try:
        await link.scan(ScanFilter())
    except UserCancelledSelection:
        # collect() never selects; the device list is all we want
        pass

    if not found:
        display.print_info("No WalkingPad devices found")
        return
    for device in found:
        display.console.print(f"  {device.name or 'Unknown'} ({device.address})")


async def run_cli_command(
    command: str,
    value: Optional[str] = None,
    addresses: Optional[list[str]] = None,
    config: Optional[SessionConfig] = None,
) -> None:
    """Run a single CLI command and exit."""
    link = BleakLink(known_addresses=addresses or [])
    display = DisplayManager()

    if command == "scan":
        await scan_devices(link, display)
        return

    controller = TreadmillController(link=link, config=config, auto_reconnect=False)
    try:
        display.print_info("Connecting to device...")
        if not await controller.connect(addresses[0] if addresses else None):
            display.print_error(f"Failed to connect to device: {controller.last_error}")
            sys.exit(1)

        if command == "start":
            display.print_result("start", controller.start())

        elif command == "stop":
            display.print_result("stop", controller.stop())

        elif command == "speed":
            speed = parse_kmh(value or "")
            display.print_result("speed", controller.set_speed(speed))

        elif command == "status":
            pass

        else:
            display.print_error(f"Unknown command: {command}")
            sys.exit(1)

        # Give the drain and poll timers time to deliver and refresh
        await asyncio.sleep(1)
        if command == "status":
            display.print_status(controller.snapshot())

    finally:
        await controller.shutdown()


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="WalkingPad Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  padctrl                         # Start interactive REPL
  padctrl --start                 # Start the belt (auto-connects)
  padctrl --speed 3.5             # Set speed to 3.5 km/h
  padctrl --status                # Get device status
  padctrl --stop                  # Stop the belt
  padctrl --scan                  # List nearby WalkingPads
  padctrl --address AA:BB:...     # Remember a device for auto-reconnect

Known addresses can also be given in ${ADDRESS_ENV_VAR} (comma separated).
        """,
    )

    parser.add_argument("--start", action="store_true", help="Start the belt")
    parser.add_argument("--stop", action="store_true", help="Stop the belt")
    parser.add_argument("--status", action="store_true", help="Show device status")
    parser.add_argument("--speed", metavar="KMH", help="Set belt speed in km/h")
    parser.add_argument("--scan", action="store_true", help="List nearby WalkingPads")
    parser.add_argument(
        "--address",
        action="append",
        default=[],
        help="Device address to connect to and remember (repeatable)",
    )
    parser.add_argument(
        "--no-auto-reconnect",
        action="store_true",
        help="Do not reconnect after the link drops",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()
    setup_logging(args.debug)
    addresses = known_addresses(args.address)

    commands = []
    if args.start:
        commands.append("start")
    if args.stop:
        commands.append("stop")
    if args.status:
        commands.append("status")
    if args.speed is not None:
        commands.append("speed")
    if args.scan:
        commands.append("scan")

    # If no CLI commands, start REPL
    if not commands:
        try:
            controller = TreadmillController(
                link=BleakLink(known_addresses=addresses),
                auto_reconnect=not args.no_auto_reconnect,
            )
            repl = PadCtrlREPL(controller)
            asyncio.run(repl.run())
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(0)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        if len(commands) > 1:
            print("Error: Only one command can be specified at a time", file=sys.stderr)
            sys.exit(1)

        try:
            asyncio.run(run_cli_command(commands[0], args.speed, addresses))
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(1)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
