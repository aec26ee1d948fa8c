"""Command-line interface for controlling QEMU virtual machines over QMP."""

from __future__ import annotations

import argparse
import datetime as _dt
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from qmpctl import logger
from qmpctl.client import Client
from qmpctl.errors import QMPError
from qmpctl.script import run_script
from qmpctl.settings import (
    Settings,
    key_delay,
    load_settings,
    parse_duration,
    remote_temp_path,
    screenshot_format,
    script_delay,
    socket_path,
)


class _CommandError(Exception):
    """A command failed; the message is printed and the exit status is 1."""


@dataclass
class _Context:
    settings: Settings
    socket: str
    debug_flag: bool


def _duration(text: str) -> _dt.timedelta:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _go_format(value: Any) -> str:
    if isinstance(value, dict):
        items = " ".join(f"{key}:{_go_format(value[key])}" for key in sorted(value))
        return f"map[{items}]"
    if isinstance(value, list):
        return "[" + " ".join(_go_format(item) for item in value) + "]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if value is None:
        return "<nil>"
    return str(value)


def _connect(vmid: str, ctx: _Context) -> Client:
    client = Client(vmid, ctx.socket or None)
    try:
        client.connect()
    except (QMPError, OSError) as exc:
        raise _CommandError(f"Error connecting to VM {vmid}: {exc}") from exc
    return client


def _keyboard_send(args: argparse.Namespace, ctx: _Context) -> None:
    with _connect(args.vmid, ctx) as client:
        try:
            client.send_key(args.key)
        except (QMPError, OSError) as exc:
            raise _CommandError(
                f"Error sending key '{args.key}' to VM {args.vmid}: {exc}"
            ) from exc
    print(f"Sent key '{args.key}' to VM {args.vmid}")


def _keyboard_type(args: argparse.Namespace, ctx: _Context) -> None:
    text = " ".join(args.text)
    with _connect(args.vmid, ctx) as client:
        delay = key_delay(args.delay, ctx.settings)
        logger.debug("Using key delay", delay=delay)
        try:
            client.send_string(text, delay)
        except (QMPError, OSError) as exc:
            raise _CommandError(f"Error typing text to VM {args.vmid}: {exc}") from exc
    shown = logger.format_attr_value(delay)
    print(f"Typed '{text}' to VM {args.vmid} with delay {shown}")


def _screenshot(args: argparse.Namespace, ctx: _Context) -> None:
    output = args.output
    output_dir = os.path.dirname(output) or "."
    if output_dir != ".":
        try:
            os.makedirs(output_dir, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise _CommandError(f"Error creating output directory: {exc}") from exc

    with _connect(args.vmid, ctx) as client:
        fmt = screenshot_format(output, args.format, ctx.settings)
        remote = remote_temp_path(args.remote_temp, ctx.settings)
        try:
            if fmt == "png":
                logger.debug(
                    "Taking screenshot in PNG format", output=output, remoteTempPath=remote
                )
                client.screen_dump_and_convert(output, remote)
            else:
                logger.debug(
                    "Taking screenshot in PPM format", output=output, remoteTempPath=remote
                )
                client.screen_dump(output, remote)
        except (QMPError, OSError) as exc:
            raise _CommandError(f"Error taking screenshot: {exc}") from exc
    print(f"Screenshot saved to {output}")


def _script(args: argparse.Namespace, ctx: _Context) -> None:
    try:
        handle = open(args.file, encoding="utf-8")
    except OSError as exc:
        raise _CommandError(f"Error opening script file: {exc}") from exc
    with handle:
        with _connect(args.vmid, ctx) as client:
            delay = script_delay(args.delay, ctx.settings)
            logger.debug("Using key delay for script", delay=delay)
            lines = (line.rstrip("\r\n") for line in handle)
            try:
                run_script(client, lines, delay, out=sys.stdout)
            except (OSError, UnicodeDecodeError) as exc:
                raise _CommandError(f"Error reading script file: {exc}") from exc
    print(f"Script execution completed for VM {args.vmid}")


def _status(args: argparse.Namespace, ctx: _Context) -> None:
    with _connect(args.vmid, ctx) as client:
        try:
            status = client.query_status()
        except (QMPError, OSError) as exc:
            raise _CommandError(
                f"Error querying status for VM {args.vmid}: {exc}"
            ) from exc
    print(f"Status for VM {args.vmid}:")
    print(f"  Running: {_go_format(status.get('running'))}")
    print(f"  Status: {_go_format(status.get('status'))}")
    if ctx.debug_flag:
        print(f"Debug - Full status response: {_go_format(status)}")


def _usb_list(args: argparse.Namespace, ctx: _Context) -> None:
    with _connect(args.vmid, ctx) as client:
        try:
            devices = client.query_usb_devices()
        except (QMPError, OSError) as exc:
            raise _CommandError(f"Error listing USB devices: {exc}") from exc
    print(f"USB devices for VM {args.vmid}:")
    if not devices:
        print("No USB devices connected")
        return
    for number, device in enumerate(devices, start=1):
        print(f"Device {number}: {_go_format(device)}")


def _usb_add(args: argparse.Namespace, ctx: _Context) -> None:
    adders: dict[str, Callable[[Client, str], None]] = {
        "keyboard": Client.add_usb_keyboard,
        "mouse": Client.add_usb_mouse,
    }
    with _connect(args.vmid, ctx) as client:
        add = adders.get(args.type)
        if add is None:
            raise _CommandError(
                f"Unknown device type: {args.type}. Supported types: keyboard, mouse"
            )
        try:
            add(client, args.id)
        except (QMPError, OSError) as exc:
            raise _CommandError(f"Error adding USB {args.type}: {exc}") from exc
    print(f"Added USB {args.type} with ID {args.id} to VM {args.vmid}")


def _usb_remove(args: argparse.Namespace, ctx: _Context) -> None:
    with _connect(args.vmid, ctx) as client:
        try:
            client.remove_device(args.id)
        except (QMPError, OSError) as exc:
            raise _CommandError(f"Error removing device {args.id}: {exc}") from exc
    print(f"Removed device {args.id} from VM {args.vmid}")


def _add_global_options(parser: argparse.ArgumentParser, suppress: bool) -> None:
    def default(value: Any) -> Any:
        return argparse.SUPPRESS if suppress else value

    parser.add_argument(
        "--config", default=default(""), help="config file (default is $HOME/.qmp.yaml)"
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", default=default(False),
        help="enable debug output",
    )
    parser.add_argument(
        "-s", "--socket", default=default(""),
        help="custom socket path (for SSH tunneling)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    common = argparse.ArgumentParser(add_help=False)
    _add_global_options(common, suppress=True)

    root = argparse.ArgumentParser(
        prog="qmp",
        description=(
            "QMP Controller provides a command-line interface to interact with\n"
            "QEMU's QMP (QEMU Machine Protocol) for managing virtual machines."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_global_options(root, suppress=False)
    root.set_defaults(handler=None, help_parser=root)
    commands = root.add_subparsers(title="commands", metavar="command")

    keyboard = commands.add_parser(
        "keyboard", parents=[common], help="Send keyboard input to the VM",
        description="Send keyboard input to the VM, including key presses and text.",
    )
    keyboard.set_defaults(handler=None, help_parser=keyboard)
    keyboard_commands = keyboard.add_subparsers(title="commands", metavar="command")

    send = keyboard_commands.add_parser(
        "send", parents=[common], help="Send a single key press",
        description="Send a single key press to the VM.",
    )
    send.add_argument("vmid")
    send.add_argument("key")
    send.set_defaults(handler=_keyboard_send)

    type_text = keyboard_commands.add_parser(
        "type", parents=[common], help="Type a string of text",
        description="Type a string of text to the VM.",
    )
    type_text.add_argument("vmid")
    type_text.add_argument("text", nargs="+")
    type_text.add_argument(
        "-l", "--delay", type=_duration, default=None,
        help="delay between key presses (default 50ms)",
    )
    type_text.set_defaults(handler=_keyboard_type)

    screenshot = commands.add_parser(
        "screenshot", parents=[common], help="Take a screenshot of the VM",
        description=(
            "Take a screenshot of the VM and save it to a file.\n"
            "Supported formats: ppm, png"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    screenshot.add_argument("vmid")
    screenshot.add_argument("output")
    screenshot.add_argument("extra", nargs="*", help=argparse.SUPPRESS)
    screenshot.add_argument(
        "-f", "--format", default=None, help="screenshot format (ppm, png)"
    )
    screenshot.add_argument(
        "-r", "--remote-temp", dest="remote_temp", default=None,
        help="temporary path on remote server (for SSH tunneling)",
    )
    screenshot.set_defaults(handler=_screenshot)

    script = commands.add_parser(
        "script", parents=[common], help="Run a script of commands",
        description=(
            "Run a script of commands on the VM.\n"
            "Each line in the script file is treated as a separate command to be executed.\n"
            "Empty lines and lines starting with # are ignored.\n\n"
            "Special commands can be included using <command> syntax:\n"
            "  <sleep N>    - Sleep for N seconds"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    script.add_argument("vmid")
    script.add_argument("file")
    script.add_argument(
        "-l", "--delay", type=_duration, default=None,
        help="delay between key presses (default 50ms)",
    )
    script.set_defaults(handler=_script)

    status = commands.add_parser(
        "status", parents=[common], help="Query VM status",
        description="Query the current status of a QEMU virtual machine using QMP.",
    )
    status.add_argument("vmid")
    status.set_defaults(handler=_status)

    usb = commands.add_parser(
        "usb", parents=[common], help="Manage USB devices",
        description="Manage USB devices attached to the virtual machine.",
    )
    usb.set_defaults(handler=None, help_parser=usb)
    usb_commands = usb.add_subparsers(title="commands", metavar="command")

    usb_list = usb_commands.add_parser("list", parents=[common], help="List USB devices")
    usb_list.add_argument("vmid")
    usb_list.set_defaults(handler=_usb_list)

    usb_add = usb_commands.add_parser(
        "add", parents=[common], help="Add a USB device",
        description="Add a USB device to the VM. Type can be 'keyboard' or 'mouse'.",
    )
    usb_add.add_argument("vmid")
    usb_add.add_argument("type")
    usb_add.add_argument("id")
    usb_add.set_defaults(handler=_usb_add)

    usb_remove = usb_commands.add_parser(
        "remove", parents=[common], help="Remove a USB device"
    )
    usb_remove.add_argument("vmid")
    usb_remove.add_argument("id")
    usb_remove.set_defaults(handler=_usb_remove)

    return root


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args.config or None)
    if settings.config_error:
        print(f"Error reading config file: {settings.config_error}", file=sys.stderr)

    debug = bool(args.debug) or settings.get_bool("debug")
    sock = socket_path(args.socket, settings)
    logger.init(debug)
    if debug:
        if settings.config_file_used:
            logger.debug("Using config file", path=settings.config_file_used)
        logger.debug("Debug mode enabled")
        logger.debug("Using socket path", path=sock)

    handler = args.handler
    if handler is None:
        print(args.help_parser.format_help(), end="")
        return 0

    ctx = _Context(settings=settings, socket=sock, debug_flag=bool(args.debug))
    try:
        handler(args, ctx)
    except _CommandError as exc:
        print(exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())