"""Decoding of raw Matrix events into engine types."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import nio

from .logging import get_logger
from .types import Message, Room

logger = get_logger(__name__)

EMPTY_ROOM_NAME = "Empty room"


def parse_event(raw: Any, room_id: str) -> Any | None:
    """Parse one raw event with matrix-nio; returns None for malformed events."""
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        logger.debug("matrix.event.malformed", room_id=room_id)
        return None
    try:
        event = nio.Event.parse_event(raw)
    except (KeyError, TypeError, ValueError) as exc:
        logger.debug(
            "matrix.event.parse_failed",
            room_id=room_id,
            event_type=raw.get("type"),
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return None
    if isinstance(event, (nio.BadEvent, nio.UnknownBadEvent)):
        logger.debug(
            "matrix.event.bad",
            room_id=room_id,
            event_type=raw.get("type"),
            event_id=raw.get("event_id"),
        )
        return None
    return event


def _timestamp(ms: Any) -> datetime:
    if isinstance(ms, (int, float)) and ms > 0:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    return datetime.now(timezone.utc)


def message_from_event(event: Any, room_id: str) -> Message | None:
    """Convert a parsed ``m.room.message`` event; other events give None."""
    if not isinstance(event, nio.RoomMessage):
        return None
    source = event.source if isinstance(event.source, dict) else {}
    content = source.get("content", {})
    if not isinstance(content, dict):
        return None
    unsigned = source.get("unsigned", {})
    txn_id = unsigned.get("transaction_id", "") if isinstance(unsigned, dict) else ""
    url = content.get("url")
    return Message(
        id=event.event_id,
        sender=event.sender,
        room_id=room_id,
        type=str(content.get("msgtype", "")),
        body=str(content.get("body", "")),
        timestamp=_timestamp(event.server_timestamp),
        media_uri=url if isinstance(url, str) else "",
        txn_id=txn_id if isinstance(txn_id, str) else "",
    )


def messages_from_events(raw_events: Any, room_id: str) -> list[Message]:
    if not isinstance(raw_events, list):
        return []
    messages: list[Message] = []
    for raw in raw_events:
        event = parse_event(raw, room_id)
        if event is None:
            continue
        message = message_from_event(event, room_id)
        if message is not None:
            messages.append(message)
    return messages


# --- room snapshot decoding (state-only initial sync) ---


def _state_content(events: list[dict[str, Any]], event_type: str) -> dict[str, Any]:
    """Content of the last ``event_type`` state event with an empty state key."""
    found: dict[str, Any] = {}
    for event in events:
        if event.get("type") != event_type:
            continue
        if event.get("state_key", "") != "":
            continue
        content = event.get("content")
        if isinstance(content, dict):
            found = content
    return found


def _state_str(events: list[dict[str, Any]], event_type: str, key: str) -> str:
    value = _state_content(events, event_type).get(key)
    return value if isinstance(value, str) else ""


def _joined_members(events: list[dict[str, Any]]) -> dict[str, str]:
    """Map joined user ids to display names from ``m.room.member`` events."""
    members: dict[str, str] = {}
    for event in events:
        if event.get("type") != "m.room.member":
            continue
        user_id = event.get("state_key") or event.get("sender")
        content = event.get("content")
        if not isinstance(user_id, str) or not isinstance(content, dict):
            continue
        if content.get("membership") == "join":
            name = content.get("displayname")
            members[user_id] = name if isinstance(name, str) and name else user_id
        else:
            members.pop(user_id, None)
    return members


def room_display_name(
    events: list[dict[str, Any]], own_user_id: str, members: dict[str, str]
) -> str:
    name = _state_str(events, "m.room.name", "name")
    if name:
        return name
    alias = _state_str(events, "m.room.canonical_alias", "alias")
    if alias:
        return alias
    others = sorted(
        display for user_id, display in members.items() if user_id != own_user_id
    )
    if not others:
        return EMPTY_ROOM_NAME
    if len(others) == 1:
        return others[0]
    if len(others) == 2:
        return f"{others[0]} and {others[1]}"
    return f"{others[0]} and {len(others) - 1} others"


def room_from_sync(room_id: str, payload: Any, own_user_id: str) -> Room:
    """Build a :class:`Room` from a ``rooms.join`` entry of a sync response."""
    if not isinstance(payload, dict):
        raise TypeError(f"room {room_id} is not an object")
    state = payload.get("state", {})
    raw_events = state.get("events", []) if isinstance(state, dict) else []
    if not isinstance(raw_events, list):
        raise TypeError(f"room {room_id} has malformed state events")
    events = [event for event in raw_events if isinstance(event, dict)]
    members = _joined_members(events)

    summary = payload.get("summary", {})
    member_count = len(members)
    if isinstance(summary, dict):
        joined = summary.get("m.joined_member_count")
        if isinstance(joined, int) and joined > member_count:
            member_count = joined

    notifications = payload.get("unread_notifications", {})
    unread = 0
    if isinstance(notifications, dict):
        count = notifications.get("notification_count")
        unread = count if isinstance(count, int) else 0

    return Room(
        id=room_id,
        name=room_display_name(events, own_user_id, members),
        alias=_state_str(events, "m.room.canonical_alias", "alias"),
        topic=_state_str(events, "m.room.topic", "topic"),
        avatar_uri=_state_str(events, "m.room.avatar", "url"),
        member_count=member_count,
        world_readable=(
            _state_str(events, "m.room.history_visibility", "history_visibility")
            == "world_readable"
        ),
        guest_can_join=(
            _state_str(events, "m.room.guest_access", "guest_access") == "can_join"
        ),
        unread_count=unread,
    )


def joined_rooms(body: dict[str, Any]) -> dict[str, Any]:
    rooms = body.get("rooms", {})
    if not isinstance(rooms, dict):
        raise TypeError("sync response 'rooms' is not an object")
    join = rooms.get("join", {})
    if not isinstance(join, dict):
        raise TypeError("sync response 'rooms.join' is not an object")
    return join
