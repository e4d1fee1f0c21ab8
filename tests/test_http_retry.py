"""Tests for retry policy and the backend transport."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from src.backend_client import BackendRequest, JSONBody, StreamBody, TextBody, BytesBody
from src.errors import (
    CanceledError,
    InternalError,
    InvalidRequestError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from src.http_retry import (
    Outcome,
    RetryConfig,
    classify_exception,
    classify_status,
    compute_backoff_s,
    interruptible_sleep,
    retry_after_seconds,
)


def _request(payload=None) -> BackendRequest:
    return BackendRequest(path="/v1/chat/completions", body=JSONBody(payload or {"model": "m"}))


class TestClassification:
    """Tests for outcome classification."""

    @pytest.mark.parametrize("status", [200, 201, 204])
    def test_success_statuses(self, status):
        assert classify_status(status, RetryConfig(3, 1.0, 30.0)) is Outcome.SUCCESS

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert classify_status(status, RetryConfig(3, 1.0, 30.0)) is Outcome.RETRYABLE

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413, 422, 501])
    def test_fatal_statuses(self, status):
        assert classify_status(status, RetryConfig(3, 1.0, 30.0)) is Outcome.FATAL

    def test_connection_errors_are_retryable(self):
        request = httpx.Request("POST", "https://backend.test")
        assert classify_exception(httpx.ConnectError("refused", request=request)) is Outcome.RETRYABLE
        assert classify_exception(httpx.ReadTimeout("slow", request=request)) is Outcome.RETRYABLE

    def test_other_errors_are_fatal(self):
        """Should not retry errors outside the network allow-list."""
        assert classify_exception(httpx.UnsupportedProtocol("ftp")) is Outcome.FATAL
        assert classify_exception(ValueError("bug")) is Outcome.FATAL


class TestBackoff:
    """Tests for backoff computation."""

    def test_exponential_without_jitter(self):
        cfg = RetryConfig(max_attempts=5, base_delay_s=1.0, max_delay_s=30.0, jitter=False)
        assert [compute_backoff_s(n, cfg) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_maximum(self):
        cfg = RetryConfig(max_attempts=10, base_delay_s=1.0, max_delay_s=5.0, jitter=False)
        assert compute_backoff_s(8, cfg) == 5.0

    def test_jitter_stays_within_bounds(self):
        """Should never drop below the base delay nor exceed the cap."""
        cfg = RetryConfig(max_attempts=10, base_delay_s=0.5, max_delay_s=3.0)
        for attempt in range(1, 8):
            for _ in range(50):
                delay = compute_backoff_s(attempt, cfg)
                assert 0.5 <= delay <= 3.0


class TestRetryAfter:
    """Tests for Retry-After parsing."""

    def test_seconds(self):
        assert retry_after_seconds(httpx.Headers({"Retry-After": "7"})) == 7.0

    def test_missing(self):
        assert retry_after_seconds(httpx.Headers()) is None

    def test_garbage(self):
        assert retry_after_seconds(httpx.Headers({"Retry-After": "soon-ish"})) is None

    def test_http_date_in_past_is_zero(self):
        headers = httpx.Headers({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        assert retry_after_seconds(headers) == 0.0

    def test_http_date_in_future(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=120)
        headers = httpx.Headers({"Retry-After": format_datetime(when, usegmt=True)})
        assert 100.0 < retry_after_seconds(headers) <= 120.0


class TestInterruptibleSleep:
    """Tests for the cancellable sleep."""

    @pytest.mark.asyncio
    async def test_sleeps_full_duration_without_cancel(self):
        started = time.monotonic()
        await interruptible_sleep(0.02, asyncio.Event())
        assert time.monotonic() - started >= 0.015

    @pytest.mark.asyncio
    async def test_wakes_early_on_cancel(self):
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, cancel.set)
        started = time.monotonic()
        with pytest.raises(CanceledError):
            await interruptible_sleep(10.0, cancel)
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_already_canceled(self):
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(CanceledError):
            await interruptible_sleep(10.0, cancel)


class TestRequestBodies:
    """Tests for the request body variants."""

    def test_json_body(self):
        content, content_type = JSONBody({"a": "é"}).encode()
        assert content == '{"a":"é"}'.encode("utf-8")
        assert content_type == "application/json"

    def test_text_and_bytes_bodies(self):
        assert TextBody("hi").encode() == (b"hi", "text/plain; charset=utf-8")
        assert BytesBody(b"\x00\x01", "audio/wav").encode() == (b"\x00\x01", "audio/wav")

    def test_stream_body_is_not_replayable(self):
        async def chunks():
            yield b"x"

        assert not BackendRequest(path="/x", body=StreamBody(chunks())).replayable
        assert BackendRequest(path="/x", body=TextBody("x")).replayable
        assert BackendRequest(path="/x").replayable


class TestTransportExecute:
    """Tests for BackendTransport.execute."""

    @pytest.mark.asyncio
    async def test_success_sends_auth_and_json(self, make_transport):
        """Should send the bearer key, JSON body and a joined URL."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler, backend_base_url="https://backend.test/v1")
        resp = await transport.execute(_request({"model": "m"}))

        assert resp.json() == {"ok": True}
        assert seen["url"] == "https://backend.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test-0123456789"
        assert seen["content_type"] == "application/json"
        assert seen["body"] == b'{"model":"m"}'

    @pytest.mark.asyncio
    async def test_retries_503_then_succeeds(self, make_transport, record_sleeps):
        """503 on attempts 1-2 and 200 on attempt 3 should succeed within bounds."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"error": {"message": "busy"}})
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler, max_attempts=3, backoff_base_s=0.5, backoff_max_s=2.0)
        resp = await transport.execute(_request())

        assert resp.status_code == 200
        assert len(calls) == 3
        assert len(record_sleeps) == 2
        assert all(0.5 <= delay <= 2.0 for delay in record_sleeps)

    @pytest.mark.asyncio
    async def test_exhausted_retries_surface_error(self, make_transport, record_sleeps):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502, text="bad gateway")

        transport = make_transport(handler, max_attempts=3)
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await transport.execute(_request())

        assert len(calls) == 3
        assert exc_info.value.upstream_status == 502
        assert exc_info.value.error_type == "api_error"

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(self, make_transport, record_sleeps):
        """Should wait at least Retry-After, capped at the backoff maximum."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429, headers={"Retry-After": "1"}, json={"error": {"message": "slow down"}})

        transport = make_transport(handler, max_attempts=2, backoff_base_s=0.01, backoff_max_s=5.0)
        with pytest.raises(RateLimitedError):
            await transport.execute(_request())

        assert len(calls) == 2
        assert record_sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_fatal_status_is_not_retried(self, make_transport, record_sleeps):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "bad field", "type": "invalid_request_error"}})

        transport = make_transport(handler)
        with pytest.raises(InvalidRequestError) as exc_info:
            await transport.execute(_request())

        assert len(calls) == 1
        assert record_sleeps == []
        assert exc_info.value.message == "bad field"

    @pytest.mark.asyncio
    async def test_payload_too_large_is_fatal(self, make_transport, record_sleeps):
        transport = make_transport(lambda request: httpx.Response(413, text="too big"))
        with pytest.raises(InvalidRequestError) as exc_info:
            await transport.execute(_request())
        assert exc_info.value.status_code == 413
        assert record_sleeps == []

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self, make_transport, record_sleeps):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler)
        resp = await transport.execute(_request())
        assert resp.status_code == 200
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_connection_error_exhausted(self, make_transport, record_sleeps):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(handler, max_attempts=2)
        with pytest.raises(UpstreamUnavailableError):
            await transport.execute(_request())
        assert len(record_sleeps) == 1

    @pytest.mark.asyncio
    async def test_non_network_error_is_internal(self, make_transport, record_sleeps):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.UnsupportedProtocol("unsupported", request=request)

        transport = make_transport(handler)
        with pytest.raises(InternalError):
            await transport.execute(_request())
        assert record_sleeps == []

    @pytest.mark.asyncio
    async def test_stream_body_is_attempted_once(self, make_transport, record_sleeps):
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(await request.aread())
            return httpx.Response(503)

        async def chunks():
            yield b"part-1,"
            yield b"part-2"

        transport = make_transport(handler)
        with pytest.raises(UpstreamUnavailableError):
            await transport.execute(BackendRequest(path="/v1/upload", body=StreamBody(chunks())))

        assert calls == [b"part-1,part-2"]
        assert record_sleeps == []

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, make_transport):
        """Canceling during a backoff sleep should return promptly."""
        cancel = asyncio.Event()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        transport = make_transport(handler, max_attempts=3, backoff_base_s=10.0, backoff_max_s=10.0)
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        started = time.monotonic()
        with pytest.raises(CanceledError):
            await transport.execute(_request(), cancel=cancel)
        assert time.monotonic() - started < 2.0

    @pytest.mark.asyncio
    async def test_cancel_during_request(self, make_transport):
        """Canceling should abort an in-flight call."""
        cancel = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200)

        transport = make_transport(handler)
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        started = time.monotonic()
        with pytest.raises(CanceledError) as exc_info:
            await transport.execute(_request(), cancel=cancel)
        assert time.monotonic() - started < 2.0
        assert exc_info.value.status_code == 499

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, make_transport):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200)

        transport = make_transport(handler)
        with pytest.raises(CanceledError) as exc_info:
            await transport.execute(_request(), deadline_s=0.05)
        assert exc_info.value.deadline_exceeded
        assert exc_info.value.status_code == 504


class TestTransportExecuteStream:
    """Tests for BackendTransport.execute_stream."""

    @pytest.mark.asyncio
    async def test_yields_events_until_done(self, make_transport, sse):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["accept"] = request.headers["accept"]
            return httpx.Response(200, content=sse({"n": 1}, {"n": 2}))

        transport = make_transport(handler)
        events = [event async for event in transport.execute_stream(_request())]

        assert [event.data for event in events] == ['{"n": 1}', '{"n": 2}']
        assert seen["accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_retries_before_first_event(self, make_transport, record_sleeps, sse):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="warming up")
            return httpx.Response(200, content=sse({"n": 1}))

        transport = make_transport(handler)
        events = [event async for event in transport.execute_stream(_request())]

        assert len(calls) == 2
        assert len(events) == 1
        assert len(record_sleeps) == 1

    @pytest.mark.asyncio
    async def test_no_retry_after_stream_started(self, make_transport, record_sleeps):
        """A failure after bytes reached the caller must surface, not retry."""
        calls = []

        async def body():
            yield b'data: {"n": 1}\n\n'
            raise httpx.ReadError("connection reset")

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=body())

        transport = make_transport(handler)
        received = []
        with pytest.raises(UpstreamUnavailableError):
            async for event in transport.execute_stream(_request()):
                received.append(event.data)

        assert received == ['{"n": 1}']
        assert len(calls) == 1
        assert record_sleeps == []

    @pytest.mark.asyncio
    async def test_fatal_status_before_stream(self, make_transport, record_sleeps):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "bad key", "type": "authentication_error"}})

        transport = make_transport(handler)
        with pytest.raises(Exception) as exc_info:
            async for _ in transport.execute_stream(_request()):
                pass
        assert exc_info.value.error_type == "authentication_error"
        assert record_sleeps == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, make_transport):
        cancel = asyncio.Event()

        async def body():
            yield b'data: {"n": 1}\n\n'
            yield b'data: {"n": 2}\n\n'

        transport = make_transport(lambda request: httpx.Response(200, content=body()))
        received = []
        with pytest.raises(CanceledError):
            async for event in transport.execute_stream(_request(), cancel=cancel):
                received.append(event.data)
                cancel.set()
        assert received == ['{"n": 1}']

    @pytest.mark.asyncio
    async def test_cancel_while_backend_stalls(self, make_transport):
        """Cancel must abort a read that is waiting on a silent backend."""
        cancel = asyncio.Event()
        released = asyncio.Event()

        async def body():
            try:
                yield b'data: {"n": 1}\n\n'
                await asyncio.sleep(30)
                yield b'data: {"n": 2}\n\n'
            finally:
                released.set()

        transport = make_transport(lambda request: httpx.Response(200, content=body()))
        received = []
        started = None
        with pytest.raises(CanceledError):
            async for event in transport.execute_stream(_request(), cancel=cancel):
                received.append(event.data)
                started = time.monotonic()
                asyncio.get_running_loop().call_later(0.05, cancel.set)

        assert time.monotonic() - started < 1.0
        assert received == ['{"n": 1}']
        assert released.is_set()
