"""Mutable session record shared by the dispatcher and its workers."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields, replace
from typing import Any

DEFAULT_SERVER_URL = "https://matrix.org"


@dataclass
class SessionData:
    user_id: str = ""
    access_token: str = ""
    server_url: str = DEFAULT_SERVER_URL
    sync_cursor: str = ""
    msg_seq: int = 0
    timeline_window_start: str = ""
    timeline_window_end: str = ""
    timeline_room_id: str = ""
    timeline_exhausted: bool = False
    directory_cursor: str = ""
    pending_join_room_id: str = ""


_FIELDS = frozenset(f.name for f in fields(SessionData))


@dataclass
class SessionState:
    """Lock-guarded session record.

    The lock is held for one read, one write or one snapshot copy at a time,
    never across network I/O. Each cursor has a single writer:

    - ``sync_cursor``: the sync engine (and login flows, which reset it)
    - ``timeline_*``: the timeline pager
    - ``directory_cursor``: directory search
    - ``pending_join_room_id``: join
    - ``msg_seq``: send
    """

    data: SessionData = field(default_factory=SessionData)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get(self, name: str) -> Any:
        if name not in _FIELDS:
            raise AttributeError(name)
        with self._lock:
            return getattr(self.data, name)

    def update(self, **values: Any) -> None:
        unknown = set(values) - _FIELDS
        if unknown:
            raise AttributeError(", ".join(sorted(unknown)))
        with self._lock:
            for name, value in values.items():
                setattr(self.data, name, value)

    def snapshot(self) -> SessionData:
        with self._lock:
            return replace(self.data)

    def next_msg_seq(self) -> int:
        with self._lock:
            self.data.msg_seq += 1
            return self.data.msg_seq

    def start_session(self, *, server_url: str, user_id: str, access_token: str) -> None:
        """Install fresh credentials and forget every cursor of the old session."""
        with self._lock:
            self.data = SessionData(
                user_id=user_id,
                access_token=access_token,
                server_url=server_url,
                msg_seq=self.data.msg_seq,
            )

    @property
    def logged_in(self) -> bool:
        return bool(self.get("access_token"))
