"""matrix-engine CLI: small read-only commands driven through the backend."""

from __future__ import annotations

import argparse
import math
import os
import sys

import anyio

from . import __version__
from . import commands as cmd
from . import responses as rsp
from .backend import Backend
from .config import ConfigError, EngineSettings, load_settings
from .errors import MatrixError
from .logging import setup_logging

PASSWORD_ENV = "MATRIX_ENGINE_PASSWORD"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="matrix-engine")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a TOML config file (default: environment only)",
    )
    parser.add_argument(
        "--server",
        default="",
        help="Homeserver URL (default: server_url from the config)",
    )
    parser.add_argument(
        "--user",
        default="",
        help="User name to log in with. If omitted, a guest account is used.",
    )
    parser.add_argument(
        "--password",
        default=None,
        help=f"Password (default: ${PASSWORD_ENV})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Log debug events to stderr.",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("rooms", help="List joined rooms")

    history = sub.add_parser("history", help="Print the latest messages of a room")
    history.add_argument("room", help="Room id (!opaque:server)")

    directory = sub.add_parser("directory", help="Search the public room directory")
    directory.add_argument("query", nargs="?", default="", help="Search term")
    directory.add_argument(
        "--protocol",
        default="",
        help="Third-party instance id to search (default: the homeserver itself)",
    )

    return parser


class _Session:
    """Sends one command at a time and waits for its answer."""

    def __init__(self, commands, responses) -> None:
        self._commands = commands
        self._responses = responses

    async def ask(self, command: cmd.Command, *expected: type[rsp.Response]) -> rsp.Response:
        await self._commands.send(command)
        async for response in self._responses:
            if isinstance(response, rsp.ErrorResponse):
                raise response.error
            if isinstance(response, expected):
                return response
        raise RuntimeError("backend stopped before answering")


def _print_room(room) -> None:
    label = room.name or room.alias or room.id
    print(f"{room.id}\t{label}\t{room.member_count}\t{room.topic}")


async def _run(args: argparse.Namespace, settings: EngineSettings) -> int:
    server = args.server or settings.server_url
    command_send, command_receive = anyio.create_memory_object_stream(math.inf)
    response_send, response_receive = anyio.create_memory_object_stream(math.inf)
    backend = Backend(response_send, settings)
    session = _Session(command_send, response_receive)

    rc = 0
    async with anyio.create_task_group() as tg:
        tg.start_soon(backend.run, command_receive)
        try:
            if args.user:
                password = args.password or os.environ.get(PASSWORD_ENV, "")
                await session.ask(cmd.Login(args.user, password, server), rsp.Token)
            else:
                await session.ask(cmd.GuestEntry(server), rsp.Token)

            if args.cmd == "rooms":
                answer = await session.ask(cmd.Sync(), rsp.Rooms)
                for room in answer.rooms:
                    _print_room(room)
            elif args.cmd == "history":
                answer = await session.ask(cmd.SetActiveRoom(args.room), rsp.RoomMessagesInit)
                for message in answer.messages:
                    stamp = message.timestamp.isoformat(timespec="seconds")
                    print(f"{stamp}\t{message.sender}\t{message.body}")
            elif args.cmd == "directory":
                answer = await session.ask(
                    cmd.DirectorySearch(args.query, args.protocol), rsp.DirectoryResults
                )
                for room in answer.rooms:
                    _print_room(room)
        except MatrixError as exc:
            print(f"error: {exc}", file=sys.stderr)
            rc = 1
        finally:
            await command_send.send(cmd.Shutdown())
    return rc


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        settings = load_settings(args.config)[0] if args.config else EngineSettings()
    except ConfigError as exc:
        parser.error(str(exc))

    raise SystemExit(anyio.run(_run, args, settings))


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
