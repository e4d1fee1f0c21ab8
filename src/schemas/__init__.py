"""Pydantic schemas for API requests and responses."""

from .anthropic import MessagesRequest as AnthropicMessagesRequest
from .anthropic import MessagesResponse as AnthropicMessagesResponse
from .openai import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
)

__all__ = [
    "AnthropicMessagesRequest",
    "AnthropicMessagesResponse",
    "ChatCompletionChunk",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
]
