"""Room-level requests: details, members, messages and metadata."""

from __future__ import annotations

from typing import Any

from .errors import InvalidIdentifierError, MatrixHTTPError, PayloadError
from .logging import get_logger
from .state import SessionState
from .transport import HomeserverTransport
from .types import Member, Message

logger = get_logger(__name__)


def validate_room_id(room_id: str, *, allow_alias: bool = False) -> str:
    """Check ``!opaque:server`` (or ``#alias:server`` when allowed)."""
    sigils = ("!", "#") if allow_alias else ("!",)
    if (
        not isinstance(room_id, str)
        or len(room_id) < 4
        or room_id[0] not in sigils
        or ":" not in room_id[2:]
        or any(ch.isspace() for ch in room_id)
    ):
        raise InvalidIdentifierError(f"malformed room id: {room_id!r}")
    return room_id


def validate_event_id(event_id: str) -> str:
    if (
        not isinstance(event_id, str)
        or len(event_id) < 2
        or event_id[0] != "$"
        or any(ch.isspace() for ch in event_id)
    ):
        raise InvalidIdentifierError(f"malformed event id: {event_id!r}")
    return event_id


def members_from_state(body: dict[str, Any]) -> list[Member]:
    """Joined members from a ``rooms/{id}/members`` response."""
    chunk = body.get("chunk")
    if not isinstance(chunk, list):
        raise PayloadError("members response 'chunk' is not a list")
    members: list[Member] = []
    for event in reversed(chunk):
        if not isinstance(event, dict) or event.get("type") != "m.room.member":
            continue
        content = event.get("content")
        if not isinstance(content, dict) or content.get("membership") != "join":
            continue
        user_id = event.get("state_key") or event.get("sender")
        if not isinstance(user_id, str):
            continue
        name = content.get("displayname")
        avatar = content.get("avatar_url")
        members.append(
            Member(
                user_id=user_id,
                display_alias=name if isinstance(name, str) else "",
                avatar_uri=avatar if isinstance(avatar, str) else "",
            )
        )
    return members


def message_content(message: Message) -> dict[str, Any]:
    content: dict[str, Any] = {"msgtype": message.type, "body": message.body}
    if message.media_uri:
        content["url"] = message.media_uri
    return content


class RoomOperations:
    def __init__(self, state: SessionState, transport: HomeserverTransport) -> None:
        self._state = state
        self._transport = transport

    async def state_value(self, room_id: str, event_type: str) -> str:
        """Value of a simple state event: ``m.room.topic`` gives its ``topic``."""
        key = event_type.rsplit(".", 1)[-1]
        try:
            body = await self._transport.get(
                self._transport.client_url("rooms", room_id, "state", event_type)
            )
        except MatrixHTTPError as exc:
            if exc.status_code == 404:
                return ""
            raise
        value = body.get(key)
        return value if isinstance(value, str) else ""

    async def members(self, room_id: str) -> list[Member]:
        body = await self._transport.get(
            self._transport.client_url("rooms", room_id, "members")
        )
        return members_from_state(body)

    async def send_message(self, message: Message) -> tuple[str, str]:
        """Send a message; returns ``(event_id, txn_id)``."""
        txn_id = str(self._state.next_msg_seq())
        url = self._transport.client_url(
            "rooms", message.room_id, "send", "m.room.message", txn_id
        )
        body = await self._transport.put(url, message_content(message))
        event_id = body.get("event_id")
        logger.debug("matrix.send.done", room_id=message.room_id, txn_id=txn_id)
        return (event_id if isinstance(event_id, str) else ""), txn_id

    async def join(self, room_id: str) -> str:
        body = await self._transport.post(self._transport.client_url("join", room_id), {})
        joined = body.get("room_id")
        joined_id = joined if isinstance(joined, str) and joined else room_id
        self._state.update(pending_join_room_id=joined_id)
        logger.info("matrix.join.success", room_id=joined_id)
        return joined_id

    async def leave(self, room_id: str) -> None:
        await self._transport.post(self._transport.client_url("rooms", room_id, "leave"), {})
        logger.info("matrix.leave.success", room_id=room_id)

    async def mark_as_read(self, room_id: str, event_id: str) -> None:
        validate_event_id(event_id)
        await self._transport.post(
            self._transport.client_url("rooms", room_id, "receipt", "m.read", event_id),
            {},
        )

    async def put_state(self, room_id: str, event_type: str, content: dict[str, Any]) -> None:
        await self._transport.put(
            self._transport.client_url("rooms", room_id, "state", event_type), content
        )
