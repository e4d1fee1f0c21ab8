"""
Server-Sent-Events decoding for backend streams.

The decoder is fed raw bytes in arbitrary chunk sizes and produces complete
events. A ``data: [DONE]`` payload ends the stream normally.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

from .errors import CanceledError, StreamDecodeError
from .http_retry import await_or_cancel

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEEvent:
    """One decoded event record."""

    data: str
    event: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None

    @property
    def is_done(self) -> bool:
        return self.data == DONE_SENTINEL


class SSEDecoder:
    """
    Incremental SSE parser.

    Call ``feed()`` with byte chunks and ``flush()`` at end of input. Once the
    ``[DONE]`` sentinel is seen, ``done`` is set and further input is ignored.
    """

    def __init__(self, max_event_bytes: int = 1024 * 1024) -> None:
        self.max_event_bytes = max_event_bytes
        self.done = False
        self._buffer = bytearray()
        self._event_bytes = 0
        self._data_lines: List[str] = []
        self._event: Optional[str] = None
        self._id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, chunk: bytes) -> List[SSEEvent]:
        if self.done:
            return []
        self._buffer.extend(chunk)
        events: List[SSEEvent] = []
        while not self.done:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            event = self._process_line(raw_line)
            if event is not None:
                events.append(event)
        if not self.done and self._event_bytes + len(self._buffer) > self.max_event_bytes:
            raise StreamDecodeError(f"SSE event exceeds {self.max_event_bytes} bytes")
        return events

    def flush(self) -> List[SSEEvent]:
        """Dispatch whatever is pending at end of input."""
        if self.done:
            return []
        events: List[SSEEvent] = []
        if self._buffer:
            raw_line = bytes(self._buffer)
            self._buffer.clear()
            event = self._process_line(raw_line)
            if event is not None:
                events.append(event)
        if not self.done:
            event = self._dispatch()
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, raw_line: bytes) -> Optional[SSEEvent]:
        if raw_line.endswith(b"\r"):
            raw_line = raw_line[:-1]
        if not raw_line:
            return self._dispatch()

        self._event_bytes += len(raw_line) + 1
        if self._event_bytes > self.max_event_bytes:
            raise StreamDecodeError(f"SSE event exceeds {self.max_event_bytes} bytes")

        try:
            line = raw_line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StreamDecodeError(f"SSE stream is not valid UTF-8: {e}") from e

        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if not sep:
            raise StreamDecodeError(f"malformed SSE line: {line[:80]!r}")
        if value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data_lines.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            self._id = value
        elif name == "retry":
            try:
                self._retry = int(value)
            except ValueError as e:
                raise StreamDecodeError(f"invalid SSE retry value: {value!r}") from e
        else:
            logger.debug(f"Ignoring unknown SSE field: {name}")
        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        has_fields = self._data_lines or self._event is not None
        event = None
        if has_fields:
            event = SSEEvent(
                data="\n".join(self._data_lines),
                event=self._event,
                id=self._id,
                retry=self._retry,
            )
            if event.is_done:
                self.done = True
        self._data_lines = []
        self._event = None
        self._id = None
        self._retry = None
        self._event_bytes = 0
        return event


async def decode_sse_stream(
    chunks: AsyncIterable[bytes],
    *,
    max_event_bytes: int = 1024 * 1024,
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[SSEEvent]:
    """
    Decode an async byte stream into SSE events, stopping at ``[DONE]``.

    The ``[DONE]`` event itself is not yielded. Raises StreamDecodeError on
    malformed input and CanceledError when ``cancel`` is set.
    """
    decoder = SSEDecoder(max_event_bytes=max_event_bytes)
    iterator = aiter(chunks)
    while True:
        # a stalled read must not outlive cancel
        chunk = await await_or_cancel(anext(iterator, None), cancel, "stream canceled")
        if chunk is None:
            break
        if cancel is not None and cancel.is_set():
            raise CanceledError("stream canceled")
        for event in decoder.feed(chunk):
            if event.is_done:
                return
            yield event
        if decoder.done:
            return
    for event in decoder.flush():
        if event.is_done:
            return
        yield event
