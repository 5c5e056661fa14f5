"""Tests for timeline.py - backward pagination and window bookkeeping."""

from __future__ import annotations

import anyio
import httpx
import pytest

from matrix_engine.timeline import TimelinePager

from matrix_fixtures import (
    CLIENT,
    MATRIX_OTHER_ROOM_ID,
    MATRIX_ROOM_ID,
    FakeHomeserver,
    make_settings,
    make_state,
    make_transport,
    message_event,
    state_event,
)

MESSAGES = f"{CLIENT}/rooms/{MATRIX_ROOM_ID}/messages"


def page(start: str, end: str | None, *ids: str) -> tuple[int, dict]:
    body: dict = {
        "start": start,
        # newest first, as the server returns them for dir=b
        "chunk": [message_event(event_id, f"body {event_id}") for event_id in ids],
    }
    if end is not None:
        body["end"] = end
    return 200, body


def pager_for(server: FakeHomeserver, **settings) -> tuple[TimelinePager, object]:
    state = make_state()
    transport = make_transport(server, state, make_settings(**settings))
    return TimelinePager(state, transport), state


@pytest.mark.anyio
async def test_initial_load_returns_oldest_first_and_records_window() -> None:
    server = FakeHomeserver()
    server.route("GET", MESSAGES, page("t0", "t1", "$3", "$2", "$1"))
    pager, state = pager_for(server, min_messages=3)

    result = await pager.load_initial(MATRIX_ROOM_ID)

    assert [m.id for m in result.messages] == ["$1", "$2", "$3"]
    data = state.snapshot()
    assert data.timeline_room_id == MATRIX_ROOM_ID
    assert data.timeline_window_start == "t1"
    assert data.timeline_window_end == "t0"
    assert not data.timeline_exhausted

    params = server.requests[0].url.params
    assert params["dir"] == "b"
    assert params["limit"] == "10"
    assert "from" not in params


@pytest.mark.anyio
async def test_non_message_events_are_dropped() -> None:
    server = FakeHomeserver()
    status, body = page("t0", "t1", "$2")
    body["chunk"].append(state_event("m.room.topic", {"topic": "x"}))
    server.route("GET", MESSAGES, (status, body))
    pager, _ = pager_for(server, min_messages=1)

    result = await pager.load_initial(MATRIX_ROOM_ID)

    assert [m.id for m in result.messages] == ["$2"]


@pytest.mark.anyio
async def test_keeps_paging_until_min_messages() -> None:
    server = FakeHomeserver()
    server.route(
        "GET",
        MESSAGES,
        page("t0", "t1", "$4", "$3"),
        page("t1", "t2", "$2", "$1"),
    )
    pager, state = pager_for(server, min_messages=4)

    result = await pager.load_initial(MATRIX_ROOM_ID)

    assert [m.id for m in result.messages] == ["$1", "$2", "$3", "$4"]
    assert server.requests[1].url.params["from"] == "t1"
    assert state.get("timeline_window_start") == "t2"
    assert state.get("timeline_window_end") == "t0"


@pytest.mark.anyio
async def test_paging_is_bounded_by_max_pages() -> None:
    server = FakeHomeserver()
    server.route("GET", MESSAGES, page("t0", "t1", "$1"))
    pager, _ = pager_for(server, min_messages=100, max_pages=3)

    await pager.load_initial(MATRIX_ROOM_ID)

    assert len(server.requests) == 3


@pytest.mark.anyio
async def test_load_older_continues_from_stored_start() -> None:
    server = FakeHomeserver()
    server.route(
        "GET",
        MESSAGES,
        page("t0", "t1", "$4", "$3"),
        page("t1", "t2", "$2", "$1"),
    )
    pager, state = pager_for(server, min_messages=2)
    await pager.load_initial(MATRIX_ROOM_ID)

    older = await pager.load_older(MATRIX_ROOM_ID)

    assert [m.id for m in older.messages] == ["$1", "$2"]
    assert server.requests[1].url.params["from"] == "t1"
    assert state.get("timeline_window_start") == "t2"
    # the newest edge does not move when paging backwards
    assert state.get("timeline_window_end") == "t0"


@pytest.mark.anyio
async def test_history_end_is_idempotent() -> None:
    server = FakeHomeserver()
    server.route(
        "GET",
        MESSAGES,
        page("t0", "t1", "$2"),
        page("t1", None, "$1"),
    )
    pager, state = pager_for(server, min_messages=1)
    await pager.load_initial(MATRIX_ROOM_ID)

    last = await pager.load_older(MATRIX_ROOM_ID)
    assert [m.id for m in last.messages] == ["$1"]
    assert state.get("timeline_exhausted")

    again = await pager.load_older(MATRIX_ROOM_ID)
    again_too = await pager.load_older(MATRIX_ROOM_ID)

    assert again.messages == []
    assert again_too.messages == []
    assert again.exhausted
    assert len(server.requests) == 2


@pytest.mark.anyio
async def test_empty_chunk_marks_history_exhausted() -> None:
    server = FakeHomeserver()
    server.route("GET", MESSAGES, page("t0", "t0"))
    pager, state = pager_for(server)

    result = await pager.load_initial(MATRIX_ROOM_ID)

    assert result.messages == []
    assert state.get("timeline_exhausted")
    assert len(server.requests) == 1


@pytest.mark.anyio
async def test_load_older_for_another_room_starts_fresh() -> None:
    other = f"{CLIENT}/rooms/{MATRIX_OTHER_ROOM_ID}/messages"
    server = FakeHomeserver()
    server.route("GET", MESSAGES, page("t0", "t1", "$2"))
    server.route("GET", other, page("o0", "o1", "$9"))
    pager, state = pager_for(server, min_messages=1)
    await pager.load_initial(MATRIX_ROOM_ID)

    result = await pager.load_older(MATRIX_OTHER_ROOM_ID)

    assert [m.id for m in result.messages] == ["$9"]
    assert "from" not in server.requests[-1].url.params
    assert state.get("timeline_room_id") == MATRIX_OTHER_ROOM_ID


@pytest.mark.anyio
async def test_overlapping_backward_pages_chain_their_tokens() -> None:
    async def by_token(request: httpx.Request) -> httpx.Response:
        token = request.url.params.get("from", "")
        await anyio.sleep(0.01)
        if not token:
            status, body = page("t0", "t1", "$4")
        elif token == "t1":
            status, body = page("t1", "t2", "$3")
        else:
            status, body = page("t2", "t3", "$2")
        return httpx.Response(status, json=body)

    server = FakeHomeserver()
    server.route("GET", MESSAGES, by_token)
    pager, state = pager_for(server, min_messages=1)
    await pager.load_initial(MATRIX_ROOM_ID)
    batches: list[list[str]] = []

    async def older() -> None:
        result = await pager.load_older(MATRIX_ROOM_ID)
        batches.append([m.id for m in result.messages])

    async with anyio.create_task_group() as tg:
        tg.start_soon(older)
        tg.start_soon(older)

    froms = [request.url.params.get("from", "") for request in server.requests]
    assert froms == ["", "t1", "t2"]
    assert sorted(batches) == [["$2"], ["$3"]]
    assert state.snapshot().timeline_window_start == "t3"
