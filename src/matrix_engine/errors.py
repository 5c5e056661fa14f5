"""Error taxonomy for homeserver operations."""

from __future__ import annotations

from typing import Any


class MatrixError(Exception):
    """Base class for every error surfaced through an error response."""


class TransportError(MatrixError):
    """The request never produced an HTTP response (DNS, TLS, timeout...)."""


class PayloadError(MatrixError):
    """The server answered with a body we cannot interpret."""


class LocalIOError(MatrixError):
    """Reading or writing a local file failed."""


class InvalidIdentifierError(MatrixError, ValueError):
    """A room, user or media identifier is malformed."""


class MatrixHTTPError(MatrixError):
    def __init__(
        self,
        status_code: int,
        errcode: str = "",
        message: str = "",
        *,
        body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"{status_code} {errcode}: {message}" if errcode else f"HTTP {status_code}"
        )
        self.status_code = status_code
        self.errcode = errcode
        self.message = message
        self.body = body or {}


class AuthError(MatrixHTTPError):
    """Credentials were rejected (401/403)."""


class RateLimitedError(MatrixHTTPError):
    """Still rate limited (429) after the configured number of retries."""

    def __init__(
        self,
        retry_after: float,
        errcode: str = "M_LIMIT_EXCEEDED",
        message: str = "",
        *,
        body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(429, errcode, message or f"retry after {retry_after}", body=body)
        self.retry_after = float(retry_after)


def parse_matrix_error(response: dict[str, Any]) -> tuple[str, float | None]:
    """Parse Matrix error response for errcode and retry_after."""
    errcode = response.get("errcode", "")
    retry_after_ms = response.get("retry_after_ms")
    retry_after = retry_after_ms / 1000.0 if retry_after_ms else None
    return errcode, retry_after


def as_matrix_error(exc: BaseException) -> MatrixError:
    """Wrap a foreign exception so error responses always carry a MatrixError."""
    if isinstance(exc, MatrixError):
        return exc
    if isinstance(exc, OSError):
        wrapped: MatrixError = LocalIOError(str(exc) or exc.__class__.__name__)
    else:
        wrapped = MatrixError(f"{exc.__class__.__name__}: {exc}")
    wrapped.__cause__ = exc
    return wrapped
