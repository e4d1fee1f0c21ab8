"""
Backend Client - Handles all communication with the Chat Completions backend.
Owns retries, backoff, cancellation and connection reuse for every capability.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Mapping, Optional, Tuple, Union

import httpx

from .config import ProxyConfig
from .errors import (
    CanceledError,
    InternalError,
    ProxyError,
    UpstreamProtocolError,
    UpstreamUnavailableError,
    map_backend_error,
)
from .http_retry import (
    Outcome,
    RetryConfig,
    await_or_cancel,
    classify_exception,
    classify_status,
    retry_after_seconds,
    sleep_before_retry,
)
from .sse import SSEEvent, decode_sse_stream
from .utils import join_url

logger = logging.getLogger(__name__)


# --- Request bodies ---
@dataclass(frozen=True)
class TextBody:
    text: str
    content_type: str = "text/plain; charset=utf-8"
    replayable = True

    def encode(self) -> Tuple[bytes, str]:
        return self.text.encode("utf-8"), self.content_type


@dataclass(frozen=True)
class BytesBody:
    data: bytes
    content_type: str = "application/octet-stream"
    replayable = True

    def encode(self) -> Tuple[bytes, str]:
        return self.data, self.content_type


@dataclass(frozen=True)
class StreamBody:
    """A body produced by an async byte iterator. It can be sent only once."""

    chunks: AsyncIterable[bytes]
    content_type: str = "application/octet-stream"
    replayable = False

    def encode(self) -> Tuple[AsyncIterable[bytes], str]:
        return self.chunks, self.content_type


@dataclass(frozen=True)
class JSONBody:
    value: Any
    content_type: str = "application/json"
    replayable = True

    def encode(self) -> Tuple[bytes, str]:
        return json.dumps(self.value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"), self.content_type


RequestBody = Union[TextBody, BytesBody, StreamBody, JSONBody]


@dataclass(frozen=True)
class BackendRequest:
    """A fully assembled backend call."""

    path: str
    body: Optional[RequestBody] = None
    method: str = "POST"
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def replayable(self) -> bool:
        return self.body is None or self.body.replayable


def parse_json_response(resp: httpx.Response) -> Any:
    """Decode a successful backend response body as JSON."""
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise UpstreamProtocolError(f"Backend returned invalid JSON: {e}") from e


class BackendTransport:
    """
    Issues calls to the backend endpoint.

    ``execute`` returns a successful ``httpx.Response`` (body already read);
    ``execute_stream`` yields decoded SSE events. Both raise ProxyError
    subclasses on failure.
    """

    def __init__(
        self,
        config: ProxyConfig,
        client: httpx.AsyncClient,
        *,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.retry_config = retry_config or RetryConfig(
            max_attempts=config.max_attempts,
            base_delay_s=config.backoff_base_s,
            max_delay_s=config.backoff_max_s,
        )
        self.logger = logger or logging.getLogger(__name__)

    def _build_request(self, request: BackendRequest, *, stream: bool) -> httpx.Request:
        headers = {
            "Authorization": f"Bearer {self.config.backend_api_key}",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        content = None
        if request.body is not None:
            content, content_type = request.body.encode()
            headers["Content-Type"] = content_type
        headers.update(request.headers)

        if stream:
            timeout = httpx.Timeout(
                timeout=self.config.request_timeout_s,
                connect=self.config.connect_timeout_s,
                read=self.config.stream_read_timeout_s or self.config.request_timeout_s,
            )
        else:
            timeout = httpx.Timeout(
                timeout=self.config.request_timeout_s,
                connect=self.config.connect_timeout_s,
            )
        return self.client.build_request(
            request.method,
            join_url(self.config.backend_base_url, request.path),
            content=content,
            headers=headers,
            timeout=timeout,
        )

    def _error_from_response(self, status_code: int, body: bytes) -> ProxyError:
        body_text = body.decode("utf-8", "replace") if body else ""
        self.logger.error(f"Backend returned status {status_code}: {body_text[:500]}")
        return map_backend_error(status_code, body_text)

    def _transport_error(self, exc: httpx.HTTPError) -> ProxyError:
        self.logger.error(f"Request to backend failed: {type(exc).__name__}: {exc}")
        if classify_exception(exc) is Outcome.RETRYABLE:
            return UpstreamUnavailableError(f"Upstream request failed: {exc}")
        return InternalError(f"Upstream request failed: {exc}")

    async def execute(
        self,
        request: BackendRequest,
        *,
        cancel: Optional[asyncio.Event] = None,
        deadline_s: Optional[float] = None,
    ) -> httpx.Response:
        """
        Send a non-streaming request with retry.

        Args:
            request: The assembled backend request
            cancel: Optional event; setting it aborts I/O and pending sleeps
            deadline_s: Optional overall deadline covering all attempts

        Returns:
            The successful response

        Raises:
            ProxyError: classified failure, CanceledError on cancel/deadline
        """
        if deadline_s is None:
            return await self._execute_with_retry(request, cancel)
        try:
            async with asyncio.timeout(deadline_s):
                return await self._execute_with_retry(request, cancel)
        except TimeoutError as e:
            raise CanceledError("deadline exceeded", deadline_exceeded=True) from e

    async def _execute_with_retry(
        self, request: BackendRequest, cancel: Optional[asyncio.Event]
    ) -> httpx.Response:
        cfg = self.retry_config
        max_attempts = cfg.max_attempts if request.replayable else 1

        for attempt in range(1, max_attempts + 1):
            http_request = self._build_request(request, stream=False)
            try:
                resp = await await_or_cancel(self.client.send(http_request), cancel)
            except httpx.HTTPError as e:
                if classify_exception(e) is Outcome.RETRYABLE and attempt < max_attempts:
                    await sleep_before_retry(
                        attempt=attempt,
                        config=cfg,
                        retry_after_s=None,
                        reason=f"{type(e).__name__}: {e}",
                        cancel=cancel,
                        log=self.logger,
                    )
                    continue
                raise self._transport_error(e) from e

            outcome = classify_status(resp.status_code, cfg)
            if outcome is Outcome.SUCCESS:
                return resp
            if outcome is Outcome.RETRYABLE and attempt < max_attempts:
                retry_after_s = retry_after_seconds(resp.headers)
                await resp.aclose()
                await sleep_before_retry(
                    attempt=attempt,
                    config=cfg,
                    retry_after_s=retry_after_s,
                    reason=f"status={resp.status_code}",
                    cancel=cancel,
                    log=self.logger,
                )
                continue
            raise self._error_from_response(resp.status_code, resp.content)

        raise InternalError("backend request exhausted without response")

    async def execute_stream(
        self,
        request: BackendRequest,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[SSEEvent]:
        """
        Send a streaming request and yield decoded SSE events until ``[DONE]``.

        Retries happen only before the first event reaches the caller; after
        that any failure is raised as-is.
        """
        cfg = self.retry_config
        max_attempts = cfg.max_attempts if request.replayable else 1
        started = False

        for attempt in range(1, max_attempts + 1):
            http_request = self._build_request(request, stream=True)
            try:
                resp = await await_or_cancel(self.client.send(http_request, stream=True), cancel)
                try:
                    outcome = classify_status(resp.status_code, cfg)
                    if outcome is not Outcome.SUCCESS:
                        body = await resp.aread()
                        if outcome is Outcome.RETRYABLE and attempt < max_attempts:
                            retry_after_s = retry_after_seconds(resp.headers)
                            await resp.aclose()
                            await sleep_before_retry(
                                attempt=attempt,
                                config=cfg,
                                retry_after_s=retry_after_s,
                                reason=f"status={resp.status_code}",
                                cancel=cancel,
                                log=self.logger,
                            )
                            continue
                        raise self._error_from_response(resp.status_code, body)

                    async for event in decode_sse_stream(
                        resp.aiter_bytes(),
                        max_event_bytes=self.config.max_event_bytes,
                        cancel=cancel,
                    ):
                        started = True
                        yield event
                    return
                finally:
                    await resp.aclose()
            except httpx.HTTPError as e:
                if started or classify_exception(e) is not Outcome.RETRYABLE or attempt >= max_attempts:
                    raise self._transport_error(e) from e
                await sleep_before_retry(
                    attempt=attempt,
                    config=cfg,
                    retry_after_s=None,
                    reason=f"{type(e).__name__}: {e}",
                    cancel=cancel,
                    log=self.logger,
                )

        raise InternalError("streaming request exhausted without response")

    async def aclose(self) -> None:
        await self.client.aclose()
