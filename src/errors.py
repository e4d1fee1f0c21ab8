"""
Error taxonomy shared by the transport, the translators and the routes.

Every failure that reaches a client is a ProxyError. The kind decides the
wire ``type`` string, the HTTP status and whether the transport may retry.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Union


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    UPSTREAM_PROTOCOL = "upstream_protocol"
    CANCELED = "canceled"
    INTERNAL = "internal"


# kind -> (wire error type, default HTTP status)
_KIND_WIRE: Dict[ErrorKind, tuple] = {
    ErrorKind.INVALID_REQUEST: ("invalid_request_error", 400),
    ErrorKind.AUTHENTICATION: ("authentication_error", 401),
    ErrorKind.RATE_LIMITED: ("rate_limit_error", 429),
    ErrorKind.UPSTREAM_UNAVAILABLE: ("api_error", 502),
    ErrorKind.UPSTREAM_PROTOCOL: ("api_error", 502),
    ErrorKind.CANCELED: ("api_error", 499),
    ErrorKind.INTERNAL: ("api_error", 500),
}

RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.UPSTREAM_UNAVAILABLE})


class ProxyError(Exception):
    """Base class for all typed proxy failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        upstream_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self._status_code = status_code
        self.upstream_status = upstream_status

    @property
    def error_type(self) -> str:
        return _KIND_WIRE[self.kind][0]

    @property
    def status_code(self) -> int:
        if self._status_code is not None:
            return self._status_code
        return _KIND_WIRE[self.kind][1]

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_envelope(self) -> Dict[str, Any]:
        return create_error_envelope(self.message, self.error_type)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class InvalidRequestError(ProxyError):
    kind = ErrorKind.INVALID_REQUEST


class AuthenticationError(ProxyError):
    kind = ErrorKind.AUTHENTICATION


class RateLimitedError(ProxyError):
    kind = ErrorKind.RATE_LIMITED


class UpstreamUnavailableError(ProxyError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class UpstreamProtocolError(ProxyError):
    kind = ErrorKind.UPSTREAM_PROTOCOL


class StreamDecodeError(UpstreamProtocolError):
    """The backend event stream could not be decoded."""


class CanceledError(ProxyError):
    kind = ErrorKind.CANCELED

    def __init__(self, message: str = "request canceled", *, deadline_exceeded: bool = False) -> None:
        super().__init__(message, status_code=504 if deadline_exceeded else None)
        self.deadline_exceeded = deadline_exceeded


class InternalError(ProxyError):
    kind = ErrorKind.INTERNAL


def create_error_envelope(message: str, error_type: str = "api_error") -> Dict[str, Any]:
    """
    Create the client-protocol error envelope.

    Args:
        message: Human readable error message
        error_type: Wire error type (e.g., "api_error", "invalid_request_error")

    Returns:
        ``{"type": "error", "error": {"type": ..., "message": ...}}``
    """
    return {"type": "error", "error": {"type": error_type, "message": message}}


# Backend error "type"/"code" strings that identify a kind regardless of status.
_BACKEND_TYPE_KINDS: Dict[str, type] = {
    "invalid_request_error": InvalidRequestError,
    "invalid_request": InvalidRequestError,
    "validation_error": InvalidRequestError,
    "not_found_error": InvalidRequestError,
    "authentication_error": AuthenticationError,
    "invalid_api_key": AuthenticationError,
    "unauthorized": AuthenticationError,
    "permission_error": AuthenticationError,
    "rate_limit_error": RateLimitedError,
    "rate_limit_exceeded": RateLimitedError,
    "too_many_requests": RateLimitedError,
    "insufficient_quota": RateLimitedError,
}


def _error_class_for_status(status_code: Optional[int]) -> Optional[type]:
    if status_code is None:
        return None
    if status_code in (401, 403):
        return AuthenticationError
    if status_code == 429:
        return RateLimitedError
    if status_code in (500, 502, 503, 504):
        return UpstreamUnavailableError
    if 400 <= status_code < 500:
        return InvalidRequestError
    return None


def _extract_error_fields(body: Union[bytes, str, Dict[str, Any], None]) -> tuple:
    """Pull (type, code, message) out of an OpenAI-style error body."""
    data: Any = body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", "replace")
    if isinstance(body, str):
        try:
            data = json.loads(body) if body.strip() else None
        except json.JSONDecodeError:
            return None, None, body.strip() or None

    if not isinstance(data, dict):
        return None, None, None

    error = data.get("error", data)
    if isinstance(error, str):
        return None, None, error
    if not isinstance(error, dict):
        return None, None, None

    err_type = error.get("type")
    err_code = error.get("code")
    message = error.get("message")
    return (
        err_type if isinstance(err_type, str) else None,
        err_code if isinstance(err_code, str) else None,
        message if isinstance(message, str) else None,
    )


def map_backend_error(
    status_code: Optional[int],
    body: Union[bytes, str, Dict[str, Any], None] = None,
) -> ProxyError:
    """
    Convert a backend error (HTTP status and/or error body) into a typed error.

    The backend's own error type wins over the status code; anything that
    cannot be classified becomes an InternalError (wire type ``api_error``)
    that keeps the original message.
    """
    err_type, err_code, message = _extract_error_fields(body)
    if not message:
        message = f"upstream error: {status_code}" if status_code else "upstream error"

    error_cls = None
    for candidate in (err_type, err_code):
        if candidate and candidate in _BACKEND_TYPE_KINDS:
            error_cls = _BACKEND_TYPE_KINDS[candidate]
            break
    if error_cls is None:
        error_cls = _error_class_for_status(status_code)
    if error_cls is None:
        error_cls = InternalError

    status_override = 413 if status_code == 413 and error_cls is InvalidRequestError else None
    return error_cls(message, status_code=status_override, upstream_status=status_code)
