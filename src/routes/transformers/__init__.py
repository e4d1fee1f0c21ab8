"""Transformers for converting between API formats."""

from .anthropic import (
    STOP_REASON_MAP,
    anthropic_request_to_openai,
    map_stop_reason,
    map_usage,
    openai_response_to_anthropic,
    validate_anthropic_request,
)
from .stream import (
    AnthropicStreamProcessor,
    StreamState,
    format_sse_event,
    parse_stream_chunk,
)

__all__ = [
    # Request / response
    "STOP_REASON_MAP",
    "anthropic_request_to_openai",
    "map_stop_reason",
    "map_usage",
    "openai_response_to_anthropic",
    "validate_anthropic_request",
    # Streaming
    "AnthropicStreamProcessor",
    "StreamState",
    "format_sse_event",
    "parse_stream_chunk",
]
