"""
Streaming transformer - turns Chat Completions chunks into the Anthropic
streaming event lifecycle.

A successful stream is always::

    message_start, content_block_start, ping,
    content_block_delta*,
    content_block_stop, message_delta, message_stop

An errored stream ends with a single ``error`` event and nothing after it.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from ...errors import ProxyError, UpstreamProtocolError
from ...schemas.anthropic import (
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    ErrorDetail,
    ErrorEvent,
    MessageDelta,
    MessageDeltaEvent,
    MessagesResponse,
    MessageStartEvent,
    MessageStopEvent,
    PingEvent,
    TextBlock,
    TextDelta,
    Usage,
)
from ...schemas.openai import ChatCompletionChunk, CompletionUsage
from ...utils import generate_message_id
from .anthropic import map_stop_reason, map_usage


class StreamState(str, Enum):
    NOT_STARTED = "not_started"
    SESSION_OPEN = "session_open"
    BLOCK_OPEN = "block_open"
    BLOCK_CLOSED = "block_closed"
    SESSION_CLOSED = "session_closed"
    ERRORED = "errored"


def format_sse_event(event: BaseModel) -> str:
    """Format a stream event as an SSE frame named after its ``type``."""
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"


def parse_stream_chunk(data: Union[str, Dict[str, Any]]) -> ChatCompletionChunk:
    """Validate one backend chunk (JSON text or decoded dict)."""
    try:
        if isinstance(data, str):
            return ChatCompletionChunk.model_validate_json(data)
        return ChatCompletionChunk.model_validate(data)
    except ValidationError as e:
        raise UpstreamProtocolError(
            f"backend stream chunk does not match the chunk schema: {e.error_count()} error(s)"
        ) from e


class AnthropicStreamProcessor:
    """
    Per-stream state machine. Create one per streaming request; never share.

    Every method returns the (possibly empty) list of events to send, in
    order. Once the session is closed or errored all further input is ignored.
    """

    def __init__(
        self,
        model: str,
        *,
        message_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.model = model
        self.message_id = message_id or generate_message_id()
        self.logger = logger or logging.getLogger(__name__)
        self.state = StreamState.NOT_STARTED
        self.block_index = 0
        self.usage: Optional[CompletionUsage] = None
        self.stop_reason: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self.state in (StreamState.SESSION_CLOSED, StreamState.ERRORED)

    def start(self) -> List[BaseModel]:
        """Open the session. A no-op after the first call."""
        if self.state is not StreamState.NOT_STARTED:
            return []

        self.state = StreamState.SESSION_OPEN
        self.logger.debug(f"Stream {self.message_id} started for model {self.model}")
        return [
            MessageStartEvent(
                message=MessagesResponse(
                    id=self.message_id,
                    content=[],
                    model=self.model,
                    stop_reason=None,
                    usage=Usage(input_tokens=0, output_tokens=0),
                )
            ),
            ContentBlockStartEvent(index=self.block_index, content_block=TextBlock(text="")),
            PingEvent(),
        ]

    def process_chunk(self, chunk: Union[ChatCompletionChunk, Dict[str, Any], str]) -> List[BaseModel]:
        """
        Consume one backend chunk.

        Non-empty delta text is forwarded verbatim; a finish reason closes
        the block and the session.

        Raises:
            UpstreamProtocolError: if the chunk does not parse
        """
        if self.closed:
            self.logger.debug(f"Stream {self.message_id} ignoring chunk after close")
            return []
        if not isinstance(chunk, ChatCompletionChunk):
            chunk = parse_stream_chunk(chunk)

        events = self.start()
        if chunk.usage is not None:
            self.usage = chunk.usage
        if not chunk.choices:
            return events

        choice = chunk.choices[0]
        text = choice.delta.content
        if text:
            events.append(ContentBlockDeltaEvent(index=self.block_index, delta=TextDelta(text=text)))
            self.state = StreamState.BLOCK_OPEN

        if choice.finish_reason:
            events.extend(self._close(choice.finish_reason))
        return events

    def finish(self) -> List[BaseModel]:
        """
        End of input. If no finish reason was seen the stream is completed
        as a normal ``end_turn`` so the session is never left open.
        """
        if self.closed:
            return []
        events = self.start()
        self.logger.debug(f"Stream {self.message_id} ended without a finish reason")
        events.extend(self._close(None))
        return events

    def error(self, exc: Union[ProxyError, Exception, str]) -> List[BaseModel]:
        """Emit exactly one error event and stop the stream."""
        if self.closed:
            return []
        self.state = StreamState.ERRORED

        if isinstance(exc, ProxyError):
            detail = ErrorDetail(type=exc.error_type, message=exc.message)
        else:
            detail = ErrorDetail(type="api_error", message=str(exc))
        self.logger.error(f"Stream {self.message_id} failed: {detail.type}: {detail.message}")
        return [ErrorEvent(error=detail)]

    def _close(self, finish_reason: Optional[str]) -> List[BaseModel]:
        self.stop_reason = map_stop_reason(finish_reason)
        usage = map_usage(self.usage)

        self.state = StreamState.BLOCK_CLOSED
        events: List[BaseModel] = [ContentBlockStopEvent(index=self.block_index)]
        events.append(MessageDeltaEvent(delta=MessageDelta(stop_reason=self.stop_reason), usage=usage))
        events.append(MessageStopEvent())
        self.state = StreamState.SESSION_CLOSED

        self.logger.info(
            f"Stream {self.message_id} completed: stop_reason={self.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return events
