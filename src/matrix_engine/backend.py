"""Command dispatcher: one sequential consumer, many short-lived workers."""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from pathlib import Path
from typing import TYPE_CHECKING, Any

import anyio
import anyio.from_thread
import httpx

from . import commands as cmd
from . import responses as rsp
from .account import Account
from .config import EngineSettings
from .directory import DirectorySearch
from .errors import MatrixError, as_matrix_error
from .logging import bind_context, clear_context, get_logger
from .media import MediaResolver, msgtype_for_mime, read_local_file, sniff_mime
from .rooms import RoomOperations, validate_event_id, validate_room_id
from .state import SessionState
from .sync import SyncEngine
from .timeline import TimelinePager
from .transport import HomeserverTransport
from .types import Message

if TYPE_CHECKING:
    from anyio.abc import TaskGroup
    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

logger = get_logger(__name__)

Handler = Callable[..., Awaitable[None]]


class Backend:
    """Drains a command stream in order and answers on a response stream.

    Inline handlers run on the dispatcher task and block the next command
    until they finish; a long-poll sync therefore delays every inline
    command queued behind it. Handlers that fetch media or history spawn a
    worker in the backend's task group and return at once, so their
    responses arrive in no particular order. Every failure becomes exactly
    one error response of the command's family.
    """

    def __init__(
        self,
        responses: MemoryObjectSendStream[rsp.Response],
        settings: EngineSettings | None = None,
        *,
        state: SessionState | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.state = state or SessionState()
        self._responses = responses
        self._transport = HomeserverTransport(
            self.state, self.settings, http_client=http_client, sleep=sleep
        )
        self._account = Account(self.state, self._transport)
        self._sync = SyncEngine(self.state, self._transport)
        self._pager = TimelinePager(self.state, self._transport)
        self._directory = DirectorySearch(self.state, self._transport)
        self._media = MediaResolver(self.state, self._transport, self.settings.cache_dir)
        self._rooms = RoomOperations(self.state, self._transport)
        self._tg: TaskGroup | None = None

        self._handlers: dict[type[cmd.Command], tuple[Handler, type[rsp.ErrorResponse]]] = {
            cmd.Login: (self._login, rsp.LoginError),
            cmd.Register: (self._register, rsp.LoginError),
            cmd.GuestEntry: (self._guest, rsp.GuestLoginError),
            cmd.GetDisplayName: (self._display_name, rsp.UserNameError),
            cmd.GetAvatar: (self._avatar, rsp.AvatarError),
            cmd.Sync: (self._run_sync, rsp.SyncError),
            cmd.ForcedSync: (self._forced_sync, rsp.SyncError),
            cmd.FetchOlderMessages: (self._older_messages, rsp.RoomMessagesError),
            cmd.GetRoomAvatar: (self._room_avatar, rsp.RoomAvatarError),
            cmd.GetThumbnail: (self._thumbnail, rsp.CommandError),
            cmd.GetMedia: (self._get_media, rsp.MediaError),
            cmd.GetUserInfo: (self._user_info, rsp.CommandError),
            cmd.SendMessage: (self._send_message, rsp.SendMessageError),
            cmd.SetActiveRoom: (self._set_active_room, rsp.SetRoomError),
            cmd.DirectoryListProtocols: (self._protocols, rsp.DirectoryError),
            cmd.DirectorySearch: (self._directory_search, rsp.DirectoryError),
            cmd.JoinRoom: (self._join, rsp.JoinRoomError),
            cmd.MarkAsRead: (self._mark_as_read, rsp.MarkAsReadError),
            cmd.LeaveRoom: (self._leave, rsp.LeaveRoomError),
            cmd.SetRoomName: (self._set_room_name, rsp.SetRoomNameError),
            cmd.SetRoomTopic: (self._set_room_topic, rsp.SetRoomTopicError),
            cmd.SetRoomAvatar: (self._set_room_avatar, rsp.SetRoomAvatarError),
            cmd.AttachFile: (self._attach_file, rsp.AttachFileError),
        }

    # --- loop ---

    async def run(self, commands: MemoryObjectReceiveStream[cmd.Command]) -> None:
        """Process commands until ``Shutdown`` or until the stream is closed.

        Workers still running at shutdown are awaited, not cancelled.
        """
        try:
            async with anyio.create_task_group() as tg:
                self._tg = tg
                async with commands:
                    async for command in commands:
                        if not await self.handle(command):
                            break
        finally:
            self._tg = None
            await self._transport.aclose()
            await self._responses.aclose()

    async def handle(self, command: cmd.Command) -> bool:
        """Dispatch one command; returns False when the loop should stop."""
        if isinstance(command, cmd.Shutdown):
            logger.info("matrix.dispatch.shutdown")
            return False
        entry = self._handlers.get(type(command))
        if entry is None:
            await self._emit(
                rsp.CommandError(MatrixError(f"unknown command {type(command).__name__}"))
            )
            return True
        handler, error_cls = entry
        bind_context(command=type(command).__name__)
        try:
            await self._attempt(error_cls, handler, command)
        finally:
            clear_context()
        return True

    async def _emit(self, response: rsp.Response) -> None:
        try:
            await self._responses.send(response)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("matrix.dispatch.response_dropped", response=type(response).__name__)

    async def _attempt(
        self, error_cls: type[rsp.ErrorResponse], handler: Handler, *args: Any
    ) -> None:
        try:
            await handler(*args)
        except MatrixError as exc:
            logger.warning(
                "matrix.dispatch.failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
                response=error_cls.__name__,
            )
            await self._emit(error_cls(exc))
        except Exception as exc:
            logger.exception(
                "matrix.dispatch.crashed",
                error=str(exc),
                error_type=exc.__class__.__name__,
                response=error_cls.__name__,
            )
            await self._emit(error_cls(as_matrix_error(exc)))

    def _spawn(
        self, error_cls: type[rsp.ErrorResponse], work: Callable[[], Awaitable[None]]
    ) -> None:
        if self._tg is None:
            raise RuntimeError("backend is not running")
        self._tg.start_soon(self._attempt, error_cls, work)

    # --- account ---

    async def _login(self, command: cmd.Login) -> None:
        user_id, token = await self._account.login(command.user, command.password, command.server)
        await self._emit(rsp.Token(user_id, token))

    async def _register(self, command: cmd.Register) -> None:
        user_id, token = await self._account.register(
            command.user, command.password, command.server
        )
        await self._emit(rsp.Token(user_id, token))

    async def _guest(self, command: cmd.GuestEntry) -> None:
        user_id, token = await self._account.guest(command.server)
        await self._emit(rsp.Token(user_id, token))

    async def _display_name(self, command: cmd.GetDisplayName) -> None:
        await self._emit(rsp.DisplayName(await self._account.display_name()))

    async def _avatar(self, command: cmd.GetAvatar) -> None:
        user_id = self.state.get("user_id")

        async def work() -> None:
            _, path = await self._media.user_avatar(user_id)
            await self._emit(rsp.Avatar(path))

        self._spawn(rsp.AvatarError, work)

    # --- sync ---

    async def _run_sync(self, command: cmd.Command) -> None:
        for response in await self._sync.sync():
            await self._emit(response)

    async def _forced_sync(self, command: cmd.ForcedSync) -> None:
        self._sync.reset()
        await self._run_sync(command)

    # --- timeline ---

    async def _older_messages(self, command: cmd.FetchOlderMessages) -> None:
        room_id = validate_room_id(command.room_id)

        async def work() -> None:
            page = await self._pager.load_older(room_id)
            await self._emit(rsp.RoomMessagesTo(room_id, page.messages))

        self._spawn(rsp.RoomMessagesError, work)

    async def _initial_messages(self, room_id: str) -> None:
        async def work() -> None:
            page = await self._pager.load_initial(room_id)
            await self._emit(rsp.RoomMessagesInit(room_id, page.messages))

        self._spawn(rsp.RoomMessagesError, work)

    # --- media ---

    async def _room_avatar(self, command: cmd.GetRoomAvatar) -> None:
        room_id = validate_room_id(command.room_id)
        uri = await self._media.room_avatar_uri(room_id)

        async def work() -> None:
            await self._emit(rsp.RoomAvatar(room_id, await self._media.try_thumbnail(uri)))

        self._spawn(rsp.RoomAvatarError, work)

    async def _thumbnail(self, command: cmd.GetThumbnail) -> None:
        async def work() -> None:
            path = await self._media.try_thumbnail(command.media)
            await _reply(command.reply, path)

        self._spawn(rsp.CommandError, work)

    async def _get_media(self, command: cmd.GetMedia) -> None:
        async def work() -> None:
            path = await self._media.download(command.media)
            await self._emit(rsp.Media(command.media, path))

        self._spawn(rsp.MediaError, work)

    async def _user_info(self, command: cmd.GetUserInfo) -> None:
        async def work() -> None:
            try:
                info = await self._media.user_avatar(command.user_id)
            except MatrixError as exc:
                logger.debug(
                    "matrix.user_info.failed",
                    user_id=command.user_id,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                info = ("", "")
            await _reply(command.reply, info)

        self._spawn(rsp.CommandError, work)

    # --- rooms ---

    async def _send_message(self, command: cmd.SendMessage) -> None:
        room_id = validate_room_id(command.message.room_id)
        event_id, txn_id = await self._rooms.send_message(command.message)
        await self._emit(rsp.MessageSent(room_id, event_id, txn_id))

    async def _set_active_room(self, command: cmd.SetActiveRoom) -> None:
        room_id = validate_room_id(command.room_id)

        async def detail() -> None:
            topic = await self._rooms.state_value(room_id, "m.room.topic")
            await self._emit(rsp.RoomDetail(room_id, "m.room.topic", topic))

        async def members() -> None:
            await self._emit(rsp.RoomMembers(room_id, await self._rooms.members(room_id)))

        await self._attempt(rsp.RoomDetailError, detail)
        await self._attempt(rsp.RoomAvatarError, self._room_avatar, cmd.GetRoomAvatar(room_id))
        await self._attempt(rsp.RoomMembersError, members)
        await self._attempt(rsp.RoomMessagesError, self._initial_messages, room_id)

    async def _join(self, command: cmd.JoinRoom) -> None:
        room_id = validate_room_id(command.room_id, allow_alias=True)
        await self._emit(rsp.JoinedRoom(await self._rooms.join(room_id)))

    async def _leave(self, command: cmd.LeaveRoom) -> None:
        room_id = validate_room_id(command.room_id)
        await self._rooms.leave(room_id)
        await self._emit(rsp.LeftRoom(room_id))

    async def _mark_as_read(self, command: cmd.MarkAsRead) -> None:
        room_id = validate_room_id(command.room_id)
        validate_event_id(command.event_id)
        await self._rooms.mark_as_read(room_id, command.event_id)
        await self._emit(rsp.MarkedAsRead(room_id, command.event_id))

    async def _set_room_name(self, command: cmd.SetRoomName) -> None:
        room_id = validate_room_id(command.room_id)
        await self._rooms.put_state(room_id, "m.room.name", {"name": command.name})
        await self._emit(rsp.RoomNameSet(room_id))

    async def _set_room_topic(self, command: cmd.SetRoomTopic) -> None:
        room_id = validate_room_id(command.room_id)
        await self._rooms.put_state(room_id, "m.room.topic", {"topic": command.topic})
        await self._emit(rsp.RoomTopicSet(room_id))

    async def _set_room_avatar(self, command: cmd.SetRoomAvatar) -> None:
        room_id = validate_room_id(command.room_id)
        data = await read_local_file(command.path)
        mime = sniff_mime(data)

        async def work() -> None:
            uri = await self._transport.upload(data, mime, Path(command.path).name)
            await self._rooms.put_state(room_id, "m.room.avatar", {"url": uri})
            await self._emit(rsp.RoomAvatarSet(room_id))

        self._spawn(rsp.SetRoomAvatarError, work)

    async def _attach_file(self, command: cmd.AttachFile) -> None:
        room_id = validate_room_id(command.room_id)
        data = await read_local_file(command.path)
        mime = sniff_mime(data)
        name = Path(command.path).name
        sender = self.state.get("user_id")

        async def work() -> None:
            uri = await self._transport.upload(data, mime, name)
            # The caller sends the message itself once it has the URI.
            message = Message(
                sender=sender,
                room_id=room_id,
                body=name,
                type=msgtype_for_mime(mime),
                media_uri=uri,
            )
            await self._emit(rsp.AttachedFile(message))

        self._spawn(rsp.AttachFileError, work)

    # --- directory ---

    async def _protocols(self, command: cmd.DirectoryListProtocols) -> None:
        await self._emit(rsp.DirectoryProtocols(await self._directory.protocols()))

    async def _directory_search(self, command: cmd.DirectorySearch) -> None:
        rooms, cursor = await self._directory.search(
            command.query, command.protocol, more=command.more
        )
        await self._emit(rsp.DirectoryResults(rooms, cursor))


async def _reply(stream: MemoryObjectSendStream[Any], value: Any) -> None:
    async with stream:
        try:
            await stream.send(value)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("matrix.dispatch.reply_dropped")


class BackendThread:
    """Runs a :class:`Backend` on its own event-loop thread.

    For callers without an event loop (GUI toolkits): commands go in with
    :meth:`send`, responses come out with :meth:`receive` or :meth:`drain`.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        async_backend: str = "asyncio",
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._async_backend = async_backend
        self._portal_cm: Any = None
        self._portal: anyio.from_thread.BlockingPortal | None = None
        self._future: Future[None] | None = None
        self.backend: Backend | None = None

    def start(self) -> BackendThread:
        self._portal_cm = anyio.from_thread.start_blocking_portal(self._async_backend)
        self._portal = self._portal_cm.__enter__()
        self._commands, command_receive = anyio.create_memory_object_stream(math.inf)
        response_send, self._responses = anyio.create_memory_object_stream(math.inf)
        self.backend = Backend(response_send, self._settings, http_client=self._http_client)
        self._future = self._portal.start_task_soon(self.backend.run, command_receive)
        return self

    def _require_portal(self) -> anyio.from_thread.BlockingPortal:
        if self._portal is None:
            raise RuntimeError("backend thread is not started")
        return self._portal

    def send(self, command: cmd.Command) -> None:
        self._require_portal().call(self._commands.send, command)

    def receive(self, timeout: float | None = None) -> rsp.Response:
        """Block until the next response; raises ``TimeoutError`` after ``timeout``."""

        async def receive() -> rsp.Response:
            with anyio.fail_after(timeout):
                return await self._responses.receive()

        return self._require_portal().call(receive)

    def drain(self) -> list[rsp.Response]:
        """Every response available right now, without blocking."""

        def collect() -> list[rsp.Response]:
            out: list[rsp.Response] = []
            while True:
                try:
                    out.append(self._responses.receive_nowait())
                except (anyio.WouldBlock, anyio.EndOfStream):
                    return out

        return self._require_portal().call(collect)

    def close(self) -> None:
        if self._portal is None:
            return
        try:
            if self._future is not None and not self._future.done():
                self._portal.call(self._commands.send, cmd.Shutdown())
                self._future.result()
        finally:
            self._portal_cm.__exit__(None, None, None)
            self._portal = None

    def __enter__(self) -> BackendThread:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
