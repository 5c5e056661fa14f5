"""Responses emitted by the backend on the shared response stream."""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import MatrixError
from .types import Member, Message, Protocol, Room


class Response:
    """Marker base class for everything the backend emits."""

    __slots__ = ()


@dataclass(frozen=True, slots=True)
class Token(Response):
    user_id: str
    access_token: str


@dataclass(frozen=True, slots=True)
class DisplayName(Response):
    name: str


@dataclass(frozen=True, slots=True)
class Avatar(Response):
    path: str


@dataclass(frozen=True, slots=True)
class Synced(Response):
    cursor: str


@dataclass(frozen=True, slots=True)
class Rooms(Response):
    rooms: list[Room]
    default: Room | None = None


@dataclass(frozen=True, slots=True)
class RoomDetail(Response):
    room_id: str
    key: str
    value: str


@dataclass(frozen=True, slots=True)
class RoomAvatar(Response):
    room_id: str
    path: str


@dataclass(frozen=True, slots=True)
class NewRoomAvatar(Response):
    room_id: str


@dataclass(frozen=True, slots=True)
class RoomMessages(Response):
    messages: list[Message]


@dataclass(frozen=True, slots=True)
class RoomMessagesInit(Response):
    room_id: str
    messages: list[Message]


@dataclass(frozen=True, slots=True)
class RoomMessagesTo(Response):
    room_id: str
    messages: list[Message]


@dataclass(frozen=True, slots=True)
class RoomMembers(Response):
    room_id: str
    members: list[Member]


@dataclass(frozen=True, slots=True)
class MessageSent(Response):
    room_id: str
    event_id: str
    txn_id: str


@dataclass(frozen=True, slots=True)
class DirectoryProtocols(Response):
    protocols: list[Protocol]


@dataclass(frozen=True, slots=True)
class DirectoryResults(Response):
    rooms: list[Room]
    next_batch: str = ""


@dataclass(frozen=True, slots=True)
class JoinedRoom(Response):
    room_id: str


@dataclass(frozen=True, slots=True)
class LeftRoom(Response):
    room_id: str


@dataclass(frozen=True, slots=True)
class MarkedAsRead(Response):
    room_id: str
    event_id: str


@dataclass(frozen=True, slots=True)
class RoomNameSet(Response):
    room_id: str


@dataclass(frozen=True, slots=True)
class RoomTopicSet(Response):
    room_id: str


@dataclass(frozen=True, slots=True)
class RoomAvatarSet(Response):
    room_id: str


@dataclass(frozen=True, slots=True)
class RoomName(Response):
    room_id: str
    name: str


@dataclass(frozen=True, slots=True)
class RoomTopic(Response):
    room_id: str
    topic: str


@dataclass(frozen=True, slots=True)
class Media(Response):
    media: str
    path: str


@dataclass(frozen=True, slots=True)
class AttachedFile(Response):
    """An upload finished; ``message`` is ready to be sent by the caller."""

    message: Message

    @property
    def uri(self) -> str:
        return self.message.media_uri


# --- error families ---


@dataclass(frozen=True, slots=True)
class ErrorResponse(Response):
    error: MatrixError = field(compare=False)


class LoginError(ErrorResponse):
    __slots__ = ()


class GuestLoginError(ErrorResponse):
    __slots__ = ()


class UserNameError(ErrorResponse):
    __slots__ = ()


class AvatarError(ErrorResponse):
    __slots__ = ()


class SyncError(ErrorResponse):
    __slots__ = ()


class RoomDetailError(ErrorResponse):
    __slots__ = ()


class RoomAvatarError(ErrorResponse):
    __slots__ = ()


class RoomMessagesError(ErrorResponse):
    __slots__ = ()


class RoomMembersError(ErrorResponse):
    __slots__ = ()


class SendMessageError(ErrorResponse):
    __slots__ = ()


class SetRoomError(ErrorResponse):
    __slots__ = ()


class CommandError(ErrorResponse):
    __slots__ = ()


class DirectoryError(ErrorResponse):
    __slots__ = ()


class JoinRoomError(ErrorResponse):
    __slots__ = ()


class MarkAsReadError(ErrorResponse):
    __slots__ = ()


class LeaveRoomError(ErrorResponse):
    __slots__ = ()


class SetRoomNameError(ErrorResponse):
    __slots__ = ()


class SetRoomTopicError(ErrorResponse):
    __slots__ = ()


class SetRoomAvatarError(ErrorResponse):
    __slots__ = ()


class MediaError(ErrorResponse):
    __slots__ = ()


class AttachFileError(ErrorResponse):
    __slots__ = ()
