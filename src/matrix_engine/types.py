"""Plain data carried between the engine and its caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

IMAGE_MSGTYPE = "m.image"
FILE_MSGTYPE = "m.file"
TEXT_MSGTYPE = "m.text"


@dataclass(slots=True)
class Room:
    id: str
    name: str = ""
    alias: str = ""
    topic: str = ""
    avatar_uri: str = ""
    member_count: int = 0
    world_readable: bool = False
    guest_can_join: bool = False
    unread_count: int = 0


@dataclass(frozen=True, slots=True)
class Message:
    """A chat message, either provisional (sent locally) or server-confirmed.

    ``id`` is the server event id and stays empty for provisional messages.
    ``txn_id`` is the client transaction id: set when we send, and echoed back
    by the server in ``unsigned.transaction_id`` for our own events.
    """

    sender: str
    room_id: str
    body: str
    type: str = TEXT_MSGTYPE
    id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    thumbnail_path: str = ""
    media_uri: str = ""
    txn_id: str = ""

    @property
    def provisional(self) -> bool:
        return not self.id


@dataclass(frozen=True, slots=True)
class Member:
    user_id: str
    display_alias: str = ""
    avatar_uri: str = ""


@dataclass(frozen=True, slots=True)
class Protocol:
    id: str
    description: str
