"""Tests for transport.py - URL building, error mapping and retries."""

from __future__ import annotations

import httpx
import pytest

from matrix_engine.errors import (
    AuthError,
    InvalidIdentifierError,
    MatrixHTTPError,
    PayloadError,
    RateLimitedError,
    TransportError,
)
from matrix_engine.transport import encode_path

from matrix_fixtures import (
    CLIENT,
    MATRIX_ROOM_ID,
    MATRIX_TOKEN,
    MEDIA,
    PNG_BYTES,
    FakeHomeserver,
    make_settings,
    make_state,
    make_transport,
)


class TestUrls:
    def test_encode_path_quotes_each_segment(self) -> None:
        assert encode_path("rooms", "!a:b.org", "x/y") == "rooms/%21a%3Ab.org/x%2Fy"

    def test_client_url_carries_token_and_decodes_to_room_id(self) -> None:
        transport = make_transport(FakeHomeserver())
        url = transport.client_url("rooms", MATRIX_ROOM_ID, "members")
        assert url.path == f"{CLIENT}/rooms/{MATRIX_ROOM_ID}/members"
        assert url.params["access_token"] == MATRIX_TOKEN

    def test_no_token_before_login(self) -> None:
        transport = make_transport(FakeHomeserver(), make_state(logged_in=False))
        url = transport.client_url("login")
        assert "access_token" not in url.params

    def test_none_params_are_dropped(self) -> None:
        transport = make_transport(FakeHomeserver())
        url = transport.media_url("upload", params={"filename": None, "x": 1})
        assert url.path == f"{MEDIA}/upload"
        assert "filename" not in url.params
        assert url.params["x"] == "1"

    def test_configured_prefix_is_used(self) -> None:
        settings = make_settings(client_api_prefix="/_matrix/client/r0")
        transport = make_transport(FakeHomeserver(), settings=settings)
        assert transport.client_url("sync").path == "/_matrix/client/r0/sync"

    def test_server_without_scheme_is_rejected(self) -> None:
        state = make_state()
        state.update(server_url="matrix.example.org")
        transport = make_transport(FakeHomeserver(), state)
        with pytest.raises(InvalidIdentifierError):
            transport.client_url("sync")


class TestRequests:
    @pytest.mark.anyio
    async def test_rate_limit_is_retried_after_server_delay(self) -> None:
        server = FakeHomeserver()
        server.route(
            "GET",
            f"{CLIENT}/sync",
            (429, {"errcode": "M_LIMIT_EXCEEDED", "retry_after_ms": 1500}),
            (200, {"next_batch": "s1"}),
        )
        sleeps: list[float] = []
        transport = make_transport(server, sleeps=sleeps)

        body = await transport.get(transport.client_url("sync"))

        assert body == {"next_batch": "s1"}
        assert sleeps == [1.5]
        assert len(server.requests) == 2

    @pytest.mark.anyio
    async def test_rate_limit_gives_up_after_max_retries(self) -> None:
        server = FakeHomeserver()
        server.route("GET", f"{CLIENT}/sync", (429, {"errcode": "M_LIMIT_EXCEEDED"}))
        sleeps: list[float] = []
        transport = make_transport(server, sleeps=sleeps)

        with pytest.raises(RateLimitedError) as excinfo:
            await transport.get(transport.client_url("sync"))

        assert excinfo.value.status_code == 429
        assert len(sleeps) == 2
        assert len(server.requests) == 3

    @pytest.mark.anyio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_statuses_map_to_auth_error(self, status: int) -> None:
        server = FakeHomeserver()
        server.route(
            "GET",
            f"{CLIENT}/sync",
            (status, {"errcode": "M_UNKNOWN_TOKEN", "error": "bad token"}),
        )
        transport = make_transport(server)

        with pytest.raises(AuthError) as excinfo:
            await transport.get(transport.client_url("sync"))

        assert excinfo.value.errcode == "M_UNKNOWN_TOKEN"
        assert excinfo.value.message == "bad token"

    @pytest.mark.anyio
    async def test_other_statuses_keep_errcode(self) -> None:
        server = FakeHomeserver()
        transport = make_transport(server)
        with pytest.raises(MatrixHTTPError) as excinfo:
            await transport.get(transport.client_url("nowhere"))
        assert excinfo.value.status_code == 404
        assert excinfo.value.errcode == "M_NOT_FOUND"

    @pytest.mark.anyio
    async def test_non_json_body_is_payload_error(self) -> None:
        server = FakeHomeserver()
        server.route("GET", f"{CLIENT}/sync", (200, b"<html>"))
        transport = make_transport(server)
        with pytest.raises(PayloadError):
            await transport.get(transport.client_url("sync"))

    @pytest.mark.anyio
    async def test_json_list_is_payload_error(self) -> None:
        server = FakeHomeserver()
        server.route("GET", f"{CLIENT}/sync", (200, [1, 2]))
        transport = make_transport(server)
        with pytest.raises(PayloadError):
            await transport.get(transport.client_url("sync"))

    @pytest.mark.anyio
    async def test_connection_failure_is_transport_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        server = FakeHomeserver()
        server.route("GET", f"{CLIENT}/sync", refuse)
        transport = make_transport(server)
        with pytest.raises(TransportError):
            await transport.get(transport.client_url("sync"))

    @pytest.mark.anyio
    async def test_post_without_body_sends_empty_object(self) -> None:
        server = FakeHomeserver()
        server.route("POST", f"{CLIENT}/rooms/{MATRIX_ROOM_ID}/leave", (200, {}))
        transport = make_transport(server)

        await transport.post(transport.client_url("rooms", MATRIX_ROOM_ID, "leave"))

        assert server.requests[0].content == b"{}"


class TestUpload:
    @pytest.mark.anyio
    async def test_upload_returns_content_uri(self) -> None:
        server = FakeHomeserver()
        server.route("POST", f"{MEDIA}/upload", (200, {"content_uri": "mxc://example.org/abc"}))
        transport = make_transport(server)

        uri = await transport.upload(PNG_BYTES, "image/png", "cat.png")

        assert uri == "mxc://example.org/abc"
        request = server.requests[0]
        assert request.headers["content-type"] == "image/png"
        assert request.url.params["filename"] == "cat.png"
        assert request.content == PNG_BYTES

    @pytest.mark.anyio
    async def test_upload_without_content_uri_fails(self) -> None:
        server = FakeHomeserver()
        server.route("POST", f"{MEDIA}/upload", (200, {}))
        transport = make_transport(server)
        with pytest.raises(PayloadError):
            await transport.upload(PNG_BYTES, "image/png")
