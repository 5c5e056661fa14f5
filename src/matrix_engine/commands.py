"""Commands accepted by the backend dispatcher.

Each command is a small frozen dataclass; the dispatcher routes on its type.
Commands that carry a ``reply`` stream answer on that one-shot channel
instead of the shared response stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .types import Message

if TYPE_CHECKING:
    from anyio.streams.memory import MemoryObjectSendStream


class Command:
    """Marker base class for dispatcher commands."""

    __slots__ = ()


@dataclass(frozen=True, slots=True)
class Login(Command):
    user: str
    password: str
    server: str


@dataclass(frozen=True, slots=True)
class Register(Command):
    user: str
    password: str
    server: str


@dataclass(frozen=True, slots=True)
class GuestEntry(Command):
    server: str


@dataclass(frozen=True, slots=True)
class GetDisplayName(Command):
    pass


@dataclass(frozen=True, slots=True)
class GetAvatar(Command):
    pass


@dataclass(frozen=True, slots=True)
class Sync(Command):
    pass


@dataclass(frozen=True, slots=True)
class ForcedSync(Command):
    pass


@dataclass(frozen=True, slots=True)
class FetchOlderMessages(Command):
    room_id: str


@dataclass(frozen=True, slots=True)
class GetRoomAvatar(Command):
    room_id: str


@dataclass(frozen=True, slots=True)
class GetThumbnail(Command):
    media: str
    reply: MemoryObjectSendStream[str]


@dataclass(frozen=True, slots=True)
class GetMedia(Command):
    media: str


@dataclass(frozen=True, slots=True)
class GetUserInfo(Command):
    """Resolve a user's display name and avatar; replies ``(name, path)``."""

    user_id: str
    reply: MemoryObjectSendStream[tuple[str, str]]


@dataclass(frozen=True, slots=True)
class SendMessage(Command):
    message: Message


@dataclass(frozen=True, slots=True)
class SetActiveRoom(Command):
    room_id: str


@dataclass(frozen=True, slots=True)
class Shutdown(Command):
    pass


@dataclass(frozen=True, slots=True)
class DirectoryListProtocols(Command):
    pass


@dataclass(frozen=True, slots=True)
class DirectorySearch(Command):
    query: str = ""
    protocol: str = ""
    more: bool = False


@dataclass(frozen=True, slots=True)
class JoinRoom(Command):
    room_id: str


@dataclass(frozen=True, slots=True)
class MarkAsRead(Command):
    room_id: str
    event_id: str


@dataclass(frozen=True, slots=True)
class LeaveRoom(Command):
    room_id: str


@dataclass(frozen=True, slots=True)
class SetRoomName(Command):
    room_id: str
    name: str


@dataclass(frozen=True, slots=True)
class SetRoomTopic(Command):
    room_id: str
    topic: str


@dataclass(frozen=True, slots=True)
class SetRoomAvatar(Command):
    room_id: str
    path: str


@dataclass(frozen=True, slots=True)
class AttachFile(Command):
    room_id: str
    path: str
