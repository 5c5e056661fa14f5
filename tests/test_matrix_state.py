"""Tests for state.py - lock-guarded session record."""

from __future__ import annotations

import threading

import pytest

from matrix_engine.state import DEFAULT_SERVER_URL, SessionState

from matrix_fixtures import MATRIX_SERVER, MATRIX_TOKEN, MATRIX_USER_ID


def test_defaults_are_logged_out() -> None:
    state = SessionState()
    assert state.get("server_url") == DEFAULT_SERVER_URL
    assert state.get("sync_cursor") == ""
    assert not state.logged_in


def test_update_and_get_roundtrip() -> None:
    state = SessionState()
    state.update(sync_cursor="s1", directory_cursor="d1")
    assert state.get("sync_cursor") == "s1"
    assert state.get("directory_cursor") == "d1"


def test_unknown_fields_rejected() -> None:
    state = SessionState()
    with pytest.raises(AttributeError):
        state.update(no_such_field="x")
    with pytest.raises(AttributeError):
        state.get("no_such_field")


def test_snapshot_is_a_copy() -> None:
    state = SessionState()
    state.update(timeline_window_start="t1")
    snap = state.snapshot()
    state.update(timeline_window_start="t2")
    assert snap.timeline_window_start == "t1"


def test_start_session_resets_cursors_but_keeps_msg_seq() -> None:
    state = SessionState()
    state.update(sync_cursor="s1", timeline_room_id="!r:x", directory_cursor="d1")
    state.next_msg_seq()
    state.next_msg_seq()

    state.start_session(
        server_url=MATRIX_SERVER, user_id=MATRIX_USER_ID, access_token=MATRIX_TOKEN
    )

    data = state.snapshot()
    assert data.sync_cursor == ""
    assert data.timeline_room_id == ""
    assert data.directory_cursor == ""
    assert data.msg_seq == 2
    assert state.logged_in


def test_msg_seq_unique_across_threads() -> None:
    state = SessionState()
    seen: list[int] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(200):
            value = state.next_msg_seq()
            with lock:
                seen.append(value)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(seen) == list(range(1, 801))
