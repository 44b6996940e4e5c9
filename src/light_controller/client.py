"""Command-line client: ``light-ctl``.

Sends one command to the running daemon over the local socket, e.g.::

    light-ctl on
    light-ctl dim 100
    light-ctl set-brightness 750
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from light_controller.codec import parse_command
from light_controller.const import LIGHT_SOCKET_PATH
from light_controller.exceptions import MalformedCommand
from light_controller.ipc import send_command
from light_controller.structs import Command


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="light-ctl", description="Control the light through light-controller")
    _ = parser.add_argument("--socket", default=LIGHT_SOCKET_PATH, help="Path of the daemon's control socket")
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    _ = commands.add_parser("on", help="Turn on the light")
    _ = commands.add_parser("off", help="Turn off the light")
    for name, help_text in (
        ("dim", "Dim the light by a value"),
        ("brighten", "Brighten the light by a value"),
        ("set-brightness", "Set the brightness to the value"),
    ):
        sub = commands.add_parser(name, help=help_text)
        _ = sub.add_argument("value", type=int)
    return parser


def command_from_args(args: argparse.Namespace) -> Command:
    return parse_command(args.command, getattr(args, "value", None))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        cmd = command_from_args(args)
    except MalformedCommand as e:
        parser.error(str(e))
    try:
        asyncio.run(send_command(args.socket, cmd))
    except OSError as e:
        print(f"light-ctl: cannot reach {args.socket}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
