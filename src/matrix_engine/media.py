"""Media repository access: cached downloads, thumbnails, uploads, avatars."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import quote
from uuid import uuid4

import anyio
import filetype

from .errors import InvalidIdentifierError, LocalIOError, MatrixError, MatrixHTTPError
from .logging import get_logger
from .state import SessionState
from .transport import HomeserverTransport
from .types import FILE_MSGTYPE, IMAGE_MSGTYPE

logger = get_logger(__name__)

DEFAULT_MIME = "application/octet-stream"
IMAGE_MIMES = frozenset({"image/gif", "image/png", "image/jpeg", "image/jpg"})


def parse_mxc(uri: str) -> tuple[str, str]:
    """Split ``mxc://server/media_id`` into ``(server, media_id)``."""
    if not uri.startswith("mxc://"):
        raise InvalidIdentifierError(f"not a content uri: {uri!r}")
    server, _, media_id = uri[len("mxc://"):].partition("/")
    if not server or not media_id or "/" in media_id:
        raise InvalidIdentifierError(f"malformed content uri: {uri!r}")
    return server, media_id


def sniff_mime(data: bytes) -> str:
    """MIME type from the file's leading bytes; the file name is never consulted."""
    return filetype.guess_mime(data) or DEFAULT_MIME


def msgtype_for_mime(mime: str) -> str:
    return IMAGE_MSGTYPE if mime in IMAGE_MIMES else FILE_MSGTYPE


async def read_local_file(path: str | Path) -> bytes:
    try:
        return await anyio.Path(path).read_bytes()
    except OSError as exc:
        raise LocalIOError(f"cannot read {path}: {exc.strerror or exc}") from exc


class MediaResolver:
    """Resolves content URIs to files under ``cache_dir``.

    A cached file is returned without touching the network; otherwise the
    media is fetched and written before its path is returned.
    """

    def __init__(
        self,
        state: SessionState,
        transport: HomeserverTransport,
        cache_dir: Path | None = None,
    ) -> None:
        self._state = state
        self._transport = transport
        self._cache_dir = Path(cache_dir or transport.settings.cache_dir)
        self._fetch_locks: dict[Path, anyio.Lock] = {}

    def cache_path(self, kind: str, uri: str) -> Path:
        server, media_id = parse_mxc(uri)
        return self._cache_dir / kind / f"{quote(server, safe='')}_{quote(media_id, safe='')}"

    async def _cached(self, path: Path, fetch) -> str:
        target = anyio.Path(path)
        if await target.is_file():
            return str(path)
        # one fetch per file; later callers find it cached
        lock = self._fetch_locks.setdefault(path, anyio.Lock())
        async with lock:
            if await target.is_file():
                return str(path)
            await self._store(target, await fetch())
        self._fetch_locks.pop(path, None)
        return str(path)

    async def _store(self, target: anyio.Path, data: bytes) -> None:
        try:
            await target.parent.mkdir(parents=True, exist_ok=True)
            partial = target.with_name(f"{target.name}.{uuid4().hex}.part")
            await partial.write_bytes(data)
            await partial.replace(target)
        except OSError as exc:
            raise LocalIOError(f"cannot write {target}: {exc.strerror or exc}") from exc
        logger.debug("matrix.media.cached", path=str(target), size=len(data))

    async def thumbnail(self, uri: str) -> str:
        server, media_id = parse_mxc(uri)
        size = self._transport.settings.thumbnail_size
        url = self._transport.media_url(
            "thumbnail",
            server,
            media_id,
            params={"width": size, "height": size, "method": "scale"},
        )
        return await self._cached(
            self.cache_path("thumbs", uri), lambda: self._transport.download(url)
        )

    async def download(self, uri: str) -> str:
        server, media_id = parse_mxc(uri)
        url = self._transport.media_url("download", server, media_id)
        return await self._cached(
            self.cache_path("media", uri), lambda: self._transport.download(url)
        )

    async def try_thumbnail(self, uri: str) -> str:
        """Like :meth:`thumbnail` but degrades to an empty path on any failure."""
        if not uri:
            return ""
        try:
            return await self.thumbnail(uri)
        except MatrixError as exc:
            logger.debug(
                "matrix.media.thumbnail_failed",
                uri=uri,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return ""

    async def user_profile(self, user_id: str) -> tuple[str, str]:
        """Return ``(display_name, avatar_uri)`` for a user."""
        body = await self._transport.get(self._transport.client_url("profile", user_id))
        name = body.get("displayname")
        avatar = body.get("avatar_url")
        return (
            name if isinstance(name, str) and name else user_id,
            avatar if isinstance(avatar, str) else "",
        )

    async def user_avatar(self, user_id: str) -> tuple[str, str]:
        """Return ``(display_name, avatar_path)``; the path is empty without an avatar."""
        name, avatar_uri = await self.user_profile(user_id)
        return name, await self.try_thumbnail(avatar_uri)

    async def room_avatar_uri(self, room_id: str) -> str:
        """Avatar URI from room state.

        Rooms without an avatar fall back to the other member's avatar in a
        two-person room.
        """
        url = self._transport.client_url("rooms", room_id, "state", "m.room.avatar")
        try:
            body = await self._transport.get(url)
        except MatrixHTTPError as exc:
            if exc.status_code != 404:
                raise
            return await self._direct_chat_avatar_uri(room_id)
        uri = body.get("url")
        return uri if isinstance(uri, str) else ""

    async def _direct_chat_avatar_uri(self, room_id: str) -> str:
        body = await self._transport.get(
            self._transport.client_url("rooms", room_id, "joined_members")
        )
        joined = body.get("joined")
        if not isinstance(joined, dict) or len(joined) != 2:
            return ""
        own = self._state.get("user_id")
        for user_id, info in joined.items():
            if user_id != own and isinstance(info, dict):
                avatar = info.get("avatar_url")
                return avatar if isinstance(avatar, str) else ""
        return ""
