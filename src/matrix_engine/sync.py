"""Initial and incremental ``/sync`` handling."""

from __future__ import annotations

import json
from typing import Any

import nio

from .errors import PayloadError
from .events import joined_rooms, messages_from_events, parse_event, room_from_sync
from .logging import get_logger
from .responses import NewRoomAvatar, Response, RoomMessages, RoomName, Rooms, RoomTopic, Synced
from .state import SessionState
from .transport import HomeserverTransport
from .types import Message, Room

logger = get_logger(__name__)

# State-only snapshot: no timeline, no ephemeral or presence data.
INITIAL_SYNC_FILTER: dict[str, Any] = {
    "room": {
        "state": {"types": ["m.room.*"]},
        "timeline": {"limit": 0},
        "ephemeral": {"types": []},
    },
    "presence": {"types": []},
    "event_format": "client",
}


def sync_params(cursor: str, timeout_ms: int) -> dict[str, str]:
    params = {"full_state": "false", "timeout": str(timeout_ms)}
    if cursor:
        params["since"] = cursor
    else:
        params["filter"] = json.dumps(INITIAL_SYNC_FILTER, separators=(",", ":"))
    return params


def select_default_room(rooms: list[Room], pending_join: str) -> Room | None:
    if not pending_join:
        return None
    for room in rooms:
        if room.id == pending_join:
            return room
    return None


def decode_rooms(body: dict[str, Any], own_user_id: str) -> list[Room]:
    try:
        join = joined_rooms(body)
        return [room_from_sync(room_id, payload, own_user_id) for room_id, payload in join.items()]
    except TypeError as exc:
        raise PayloadError(str(exc)) from exc


def decode_timeline(body: dict[str, Any]) -> list[Message]:
    """All new ``m.room.message`` events across joined rooms, in server order."""
    try:
        join = joined_rooms(body)
    except TypeError as exc:
        raise PayloadError(str(exc)) from exc
    messages: list[Message] = []
    for room_id, payload in join.items():
        if not isinstance(payload, dict):
            continue
        timeline = payload.get("timeline", {})
        if isinstance(timeline, dict):
            messages.extend(messages_from_events(timeline.get("events"), room_id))
    return messages


def _state_events(payload: dict[str, Any]) -> list[Any]:
    events: list[Any] = []
    state = payload.get("state", {})
    if isinstance(state, dict) and isinstance(state.get("events"), list):
        events.extend(state["events"])
    timeline = payload.get("timeline", {})
    if isinstance(timeline, dict) and isinstance(timeline.get("events"), list):
        events.extend(
            event
            for event in timeline["events"]
            if isinstance(event, dict) and "state_key" in event
        )
    return events


def decode_state_changes(body: dict[str, Any]) -> list[Response]:
    """Room name/topic/avatar notifications; other state types are ignored."""
    try:
        join = joined_rooms(body)
    except TypeError as exc:
        raise PayloadError(str(exc)) from exc
    notifications: list[Response] = []
    for room_id, payload in join.items():
        if not isinstance(payload, dict):
            continue
        for raw in _state_events(payload):
            event = parse_event(raw, room_id)
            if isinstance(event, nio.RoomNameEvent):
                notifications.append(RoomName(room_id, event.name))
            elif isinstance(event, nio.RoomTopicEvent):
                notifications.append(RoomTopic(room_id, event.topic))
            elif isinstance(event, nio.RoomAvatarEvent):
                notifications.append(NewRoomAvatar(room_id))
            elif event is not None:
                logger.debug(
                    "matrix.sync.state_ignored",
                    room_id=room_id,
                    event_type=raw.get("type"),
                )
    return notifications


class SyncEngine:
    """One sync per call: full snapshot when no cursor is stored, delta otherwise."""

    def __init__(self, state: SessionState, transport: HomeserverTransport) -> None:
        self._state = state
        self._transport = transport

    def reset(self) -> None:
        self._state.update(sync_cursor="")

    async def sync(self) -> list[Response]:
        cursor = self._state.get("sync_cursor")
        user_id = self._state.get("user_id")
        timeout_ms = self._transport.settings.sync_timeout_ms
        url = self._transport.client_url("sync", params=sync_params(cursor, timeout_ms))

        body = await self._transport.get(url)

        # Advance before interpreting so a bad payload is never fetched twice.
        next_batch = body.get("next_batch")
        next_cursor = next_batch if isinstance(next_batch, str) else ""
        self._state.update(sync_cursor=next_cursor)

        if not cursor:
            rooms = decode_rooms(body, user_id)
            default = select_default_room(rooms, self._state.get("pending_join_room_id"))
            logger.info(
                "matrix.sync.initial",
                rooms=len(rooms),
                default_room=default.id if default else None,
            )
            return [Rooms(rooms, default), Synced(next_cursor)]

        messages = decode_timeline(body)
        notifications = decode_state_changes(body)
        logger.debug(
            "matrix.sync.incremental",
            messages=len(messages),
            state_changes=len(notifications),
        )
        return [RoomMessages(messages), *notifications, Synced(next_cursor)]
