"""Authenticated HTTP access to the homeserver client and media APIs."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any
from urllib.parse import quote

import anyio
import httpx

from .config import EngineSettings
from .errors import (
    AuthError,
    InvalidIdentifierError,
    MatrixHTTPError,
    PayloadError,
    RateLimitedError,
    TransportError,
    parse_matrix_error,
)
from .logging import get_logger
from .state import SessionState

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER = 5.0


def encode_path(*segments: str) -> str:
    """Join path segments, percent-encoding each one (room ids contain ``!`` and ``:``)."""
    return "/".join(quote(str(segment), safe="") for segment in segments)


def error_from_response(response: httpx.Response) -> MatrixHTTPError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    errcode, retry_after = parse_matrix_error(body)
    message = body.get("error") or response.reason_phrase
    status = response.status_code
    if status == 429:
        return RateLimitedError(
            retry_after if retry_after is not None else DEFAULT_RETRY_AFTER,
            errcode or "M_LIMIT_EXCEEDED",
            message,
            body=body,
        )
    if status in (401, 403):
        return AuthError(status, errcode, message, body=body)
    return MatrixHTTPError(status, errcode, message, body=body)


class HomeserverTransport:
    """Builds authenticated URLs and performs requests.

    Holds no session data of its own: the server URL and access token are
    read from the shared :class:`SessionState` for every URL it builds.
    """

    def __init__(
        self,
        state: SessionState,
        settings: EngineSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._state = state
        self._settings = settings or EngineSettings()
        self._http = http_client or httpx.AsyncClient(
            timeout=self._settings.request_timeout
        )
        self._owns_http_client = http_client is None
        self._sleep = sleep

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def _base(self, server: str | None = None) -> str:
        server = (server or self._state.get("server_url")).rstrip("/")
        if not server.startswith(("http://", "https://")):
            raise InvalidIdentifierError(f"invalid server url: {server!r}")
        return server

    def _url(
        self,
        prefix: str,
        path: str,
        params: Mapping[str, Any] | None,
        server: str | None = None,
    ) -> httpx.URL:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        # the session token only goes to the session's own server
        token = self._state.get("access_token") if server is None else ""
        if token:
            query["access_token"] = token
        try:
            return httpx.URL(f"{self._base(server)}{prefix}/{path}", params=query)
        except httpx.InvalidURL as exc:
            raise InvalidIdentifierError(str(exc)) from exc

    def client_url(
        self,
        *segments: str,
        params: Mapping[str, Any] | None = None,
        server: str | None = None,
    ) -> httpx.URL:
        """URL of a client API endpoint.

        With ``server`` the URL targets that homeserver and carries no token;
        this is how login and registration reach a server before a session
        exists there.
        """
        return self._url(
            self._settings.client_api_prefix, encode_path(*segments), params, server
        )

    def media_url(
        self, *segments: str, params: Mapping[str, Any] | None = None
    ) -> httpx.URL:
        return self._url(self._settings.media_api_prefix, encode_path(*segments), params)

    async def request(
        self,
        method: str,
        url: httpx.URL,
        *,
        json: Any = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        attempts = 0
        while True:
            try:
                response = await self._http.request(
                    method, url, json=json, content=content, headers=headers
                )
            except httpx.TimeoutException as exc:
                raise TransportError(f"{method} {url.path} timed out") from exc
            except httpx.HTTPError as exc:
                raise TransportError(f"{method} {url.path}: {exc}") from exc
            if response.is_success:
                return response
            error = error_from_response(response)
            if isinstance(error, RateLimitedError) and attempts < self._settings.max_retries:
                attempts += 1
                logger.warning(
                    "matrix.http.rate_limited",
                    method=method,
                    path=url.path,
                    retry_after=error.retry_after,
                    attempt=attempts,
                )
                await self._sleep(error.retry_after)
                continue
            logger.debug(
                "matrix.http.failed",
                method=method,
                path=url.path,
                status=error.status_code,
                errcode=error.errcode,
            )
            raise error

    @staticmethod
    def decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise PayloadError(f"response is not JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise PayloadError(f"expected a JSON object, got {type(body).__name__}")
        return body

    async def get(self, url: httpx.URL) -> dict[str, Any]:
        return self.decode(await self.request("GET", url))

    async def post(self, url: httpx.URL, body: Any = None) -> dict[str, Any]:
        return self.decode(await self.request("POST", url, json=body if body is not None else {}))

    async def put(self, url: httpx.URL, body: Any) -> dict[str, Any]:
        return self.decode(await self.request("PUT", url, json=body))

    async def upload(
        self, data: bytes, content_type: str, filename: str | None = None
    ) -> str:
        """Upload raw bytes to the media repository, returning the ``mxc://`` URI."""
        url = self.media_url("upload", params={"filename": filename})
        response = await self.request(
            "POST", url, content=data, headers={"Content-Type": content_type}
        )
        uri = self.decode(response).get("content_uri")
        if not isinstance(uri, str) or not uri:
            raise PayloadError("upload response has no content_uri")
        logger.debug("matrix.upload.done", size=len(data), content_uri=uri)
        return uri

    async def download(self, url: httpx.URL) -> bytes:
        response = await self.request("GET", url)
        return response.content

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()
