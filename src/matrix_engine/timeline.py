"""Backward pagination over a room's history."""

from __future__ import annotations

from dataclasses import dataclass

import anyio

from .errors import PayloadError
from .events import messages_from_events
from .logging import get_logger
from .state import SessionState
from .transport import HomeserverTransport
from .types import Message

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TimelinePage:
    room_id: str
    messages: list[Message]
    start: str
    end: str

    @property
    def exhausted(self) -> bool:
        return not self.messages


class TimelinePager:
    """Fetches message windows, remembering where the last one ended.

    The stored window is ``(timeline_window_start, timeline_window_end)``:
    start is the oldest edge, the token to continue further back; end is the
    newest edge. Only this class writes those fields, and loads run one at a
    time so each backward page starts from the token the previous one stored.
    """

    def __init__(self, state: SessionState, transport: HomeserverTransport) -> None:
        self._state = state
        self._transport = transport
        self._lock = anyio.Lock()

    async def load_initial(self, room_id: str) -> TimelinePage:
        async with self._lock:
            return await self._fetch(room_id, from_token=None)

    async def load_older(self, room_id: str) -> TimelinePage:
        async with self._lock:
            return await self._load_older(room_id)

    async def _load_older(self, room_id: str) -> TimelinePage:
        window = self._state.snapshot()
        if window.timeline_room_id != room_id:
            logger.debug("matrix.timeline.no_window", room_id=room_id)
            return await self._fetch(room_id, from_token=None)
        if window.timeline_exhausted:
            return TimelinePage(
                room_id, [], window.timeline_window_start, window.timeline_window_end
            )
        if not window.timeline_window_start:
            return await self._fetch(room_id, from_token=None)
        return await self._fetch(
            room_id,
            from_token=window.timeline_window_start,
            newest=window.timeline_window_end,
        )

    async def _fetch_page(
        self, room_id: str, from_token: str | None
    ) -> tuple[list[Message], str, str]:
        settings = self._transport.settings
        url = self._transport.client_url(
            "rooms",
            room_id,
            "messages",
            params={"dir": "b", "limit": settings.page_size, "from": from_token},
        )
        body = await self._transport.get(url)
        chunk = body.get("chunk", [])
        if not isinstance(chunk, list):
            raise PayloadError("messages response 'chunk' is not a list")
        start = body.get("start")
        end = body.get("end")
        # dir=b returns newest first
        messages = messages_from_events(list(reversed(chunk)), room_id)
        if not chunk:
            end = None
        return (
            messages,
            start if isinstance(start, str) else "",
            end if isinstance(end, str) else "",
        )

    async def _fetch(
        self, room_id: str, *, from_token: str | None, newest: str = ""
    ) -> TimelinePage:
        settings = self._transport.settings
        collected: list[Message] = []
        oldest = from_token or ""
        token = from_token
        exhausted = False
        for page in range(settings.max_pages):
            messages, start, end = await self._fetch_page(room_id, token)
            if page == 0 and from_token is None:
                newest = start
            collected[:0] = messages
            if not end:
                # the server omits "end" once the start of the room is reached
                exhausted = True
                break
            oldest = token = end
            if len(collected) >= settings.min_messages:
                break

        self._state.update(
            timeline_room_id=room_id,
            timeline_window_start=oldest,
            timeline_window_end=newest,
            timeline_exhausted=exhausted,
        )
        logger.debug(
            "matrix.timeline.fetched",
            room_id=room_id,
            messages=len(collected),
            backward=from_token is not None,
            exhausted=exhausted,
        )
        return TimelinePage(room_id, collected, oldest, newest)
