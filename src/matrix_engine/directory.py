"""Public room directory and third-party protocol listing."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

from .errors import PayloadError
from .logging import get_logger
from .state import SessionState
from .transport import HomeserverTransport
from .types import Protocol, Room

logger = get_logger(__name__)


def _server_label(server_url: str) -> str:
    host = urlsplit(server_url).netloc
    return host or server_url.rstrip("/").split("/")[-1]


def parse_protocols(body: dict[str, Any], server_url: str) -> list[Protocol]:
    # The homeserver's own directory comes first, addressed by an empty id.
    protocols = [Protocol(id="", description=_server_label(server_url))]
    for name, protocol in body.items():
        if not isinstance(protocol, dict):
            raise PayloadError(f"protocol {name!r} is not an object")
        instances = protocol.get("instances", [])
        if not isinstance(instances, list):
            raise PayloadError(f"protocol {name!r} has malformed instances")
        for instance in instances:
            if not isinstance(instance, dict):
                continue
            instance_id = instance.get("instance_id")
            if not isinstance(instance_id, str):
                continue
            desc = instance.get("desc")
            protocols.append(
                Protocol(id=instance_id, description=desc if isinstance(desc, str) else instance_id)
            )
    return protocols


def room_from_directory(entry: dict[str, Any]) -> Room:
    def text(key: str) -> str:
        value = entry.get(key)
        return value if isinstance(value, str) else ""

    members = entry.get("num_joined_members")
    return Room(
        id=text("room_id"),
        name=text("name"),
        alias=text("canonical_alias"),
        topic=text("topic"),
        avatar_uri=text("avatar_url"),
        member_count=members if isinstance(members, int) else 0,
        world_readable=entry.get("world_readable") is True,
        guest_can_join=entry.get("guest_can_join") is True,
    )


class DirectorySearch:
    """Paged ``publicRooms`` search; owns ``directory_cursor``."""

    def __init__(self, state: SessionState, transport: HomeserverTransport) -> None:
        self._state = state
        self._transport = transport

    async def protocols(self) -> list[Protocol]:
        body = await self._transport.get(self._transport.client_url("thirdparty", "protocols"))
        return parse_protocols(body, self._state.get("server_url"))

    async def search(
        self, query: str = "", protocol: str = "", *, more: bool = False
    ) -> tuple[list[Room], str]:
        """Fetch one page; returns the rooms and the new cursor ("" at the end)."""
        attrs: dict[str, Any] = {"limit": self._transport.settings.directory_limit}
        if more:
            # the server keeps the first page's filters behind the cursor
            since = self._state.get("directory_cursor")
            if not since:
                logger.debug("matrix.directory.exhausted")
                return [], ""
            attrs["since"] = since
        else:
            if query:
                attrs["filter"] = {"generic_search_term": query}
            if protocol:
                attrs["third_party_instance_id"] = protocol

        body = await self._transport.post(self._transport.client_url("publicRooms"), attrs)
        chunk = body.get("chunk", [])
        if not isinstance(chunk, list):
            raise PayloadError("publicRooms response 'chunk' is not a list")
        next_batch = body.get("next_batch")
        cursor = next_batch if isinstance(next_batch, str) else ""
        self._state.update(directory_cursor=cursor)

        rooms = [room_from_directory(entry) for entry in chunk if isinstance(entry, dict)]
        logger.debug("matrix.directory.page", rooms=len(rooms), more=more, has_next=bool(cursor))
        return rooms, cursor
