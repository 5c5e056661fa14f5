"""Login, registration, guest access and the own profile."""

from __future__ import annotations

from typing import Any

from .errors import AuthError, PayloadError
from .logging import get_logger
from .state import SessionState
from .transport import HomeserverTransport

logger = get_logger(__name__)


def _credentials(body: dict[str, Any]) -> tuple[str, str]:
    user_id = body.get("user_id")
    token = body.get("access_token")
    if not isinstance(user_id, str) or not user_id:
        raise PayloadError("response has no user_id")
    if not isinstance(token, str) or not token:
        raise PayloadError("response has no access_token")
    return user_id, token


def _offers_dummy_stage(body: dict[str, Any]) -> bool:
    flows = body.get("flows")
    if not isinstance(flows, list):
        return False
    for flow in flows:
        stages = flow.get("stages") if isinstance(flow, dict) else None
        if stages == ["m.login.dummy"]:
            return True
    return False


class Account:
    def __init__(self, state: SessionState, transport: HomeserverTransport) -> None:
        self._state = state
        self._transport = transport

    def _target(self, server: str) -> str:
        return server or self._state.get("server_url")

    def _finish(self, body: dict[str, Any], server: str) -> tuple[str, str]:
        # the old session stays until the new credentials are in hand
        user_id, token = _credentials(body)
        self._state.start_session(
            server_url=server,
            user_id=user_id,
            access_token=token,
        )
        return user_id, token

    async def login(self, user: str, password: str, server: str) -> tuple[str, str]:
        server = self._target(server)
        attrs = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": user},
            "user": user,
            "password": password,
            "initial_device_display_name": self._transport.settings.device_name,
        }
        url = self._transport.client_url("login", server=server)
        body = await self._transport.post(url, attrs)
        user_id, token = self._finish(body, server)
        logger.info("matrix.login.password", user_id=user_id)
        return user_id, token

    async def register(self, user: str, password: str, server: str) -> tuple[str, str]:
        server = self._target(server)
        url = self._transport.client_url("register", params={"kind": "user"}, server=server)
        attrs: dict[str, Any] = {
            "username": user,
            "password": password,
            "initial_device_display_name": self._transport.settings.device_name,
        }
        try:
            body = await self._transport.post(url, attrs)
        except AuthError as exc:
            # User-interactive auth: retry once through the dummy stage.
            session = exc.body.get("session")
            if (
                exc.status_code != 401
                or not isinstance(session, str)
                or not _offers_dummy_stage(exc.body)
            ):
                raise
            attrs["auth"] = {"type": "m.login.dummy", "session": session}
            body = await self._transport.post(url, attrs)
        user_id, token = self._finish(body, server)
        logger.info("matrix.register.done", user_id=user_id)
        return user_id, token

    async def guest(self, server: str) -> tuple[str, str]:
        server = self._target(server)
        url = self._transport.client_url("register", params={"kind": "guest"}, server=server)
        body = await self._transport.post(url, {})
        user_id, token = self._finish(body, server)
        logger.info("matrix.login.guest", user_id=user_id)
        return user_id, token

    async def display_name(self) -> str:
        user_id = self._state.get("user_id")
        body = await self._transport.get(
            self._transport.client_url("profile", user_id, "displayname")
        )
        name = body.get("displayname")
        return name if isinstance(name, str) and name else user_id
