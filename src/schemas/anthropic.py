"""
Pydantic schemas for Anthropic/Claude API format.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ImageSource(BaseModel):
    """Image source for Anthropic image content."""

    type: str  # "base64" or "url"
    media_type: Optional[str] = None  # e.g., "image/jpeg", "image/png"
    data: Optional[str] = None  # base64 encoded data
    url: Optional[str] = None  # URL for url type


class ContentBlock(BaseModel):
    """
    Request content block.

    Block-level rules (non-empty text, image needs a source) are checked by
    the request translator so errors can name the message and block index.
    """

    type: str
    text: Optional[str] = None
    source: Optional[ImageSource] = None
    image_url: Optional[str] = None  # legacy form

    class Config:
        extra = "allow"


class Message(BaseModel):
    """A single message in an Anthropic conversation."""

    role: str  # "user" or "assistant"
    content: Union[str, List[ContentBlock]]


class SystemBlock(BaseModel):
    type: str = "text"
    text: str


class Metadata(BaseModel):
    user_id: Optional[str] = None


class MessagesRequest(BaseModel):
    """Request body for Anthropic /v1/messages endpoint."""

    model: str
    messages: List[Message]
    max_tokens: int
    system: Optional[Union[str, List[SystemBlock]]] = None
    metadata: Optional[Metadata] = None
    stop_sequences: Optional[List[str]] = None
    stream: Optional[bool] = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None

    class Config:
        extra = "allow"


# Response content
class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    source: ImageSource


ResponseContentBlock = Annotated[Union[TextBlock, ImageBlock], Field(discriminator="type")]


class Usage(BaseModel):
    """Token usage statistics for Anthropic response."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)


class MessagesResponse(BaseModel):
    """Response message from Anthropic API."""

    id: str
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    content: List[ResponseContentBlock]
    model: str
    stop_reason: Optional[str] = None  # "end_turn", "max_tokens", "stop_sequence", "tool_use"
    stop_sequence: Optional[str] = None
    usage: Usage


# Streaming event types
class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class MessageDelta(BaseModel):
    stop_reason: Optional[str] = None
    stop_sequence: Optional[str] = None


class MessageStartEvent(BaseModel):
    """Message start event in streaming."""

    type: Literal["message_start"] = "message_start"
    message: MessagesResponse


class ContentBlockStartEvent(BaseModel):
    """Content block start event in streaming."""

    type: Literal["content_block_start"] = "content_block_start"
    index: int
    content_block: TextBlock


class ContentBlockDeltaEvent(BaseModel):
    """Content block delta event in streaming."""

    type: Literal["content_block_delta"] = "content_block_delta"
    index: int
    delta: TextDelta


class ContentBlockStopEvent(BaseModel):
    """Content block stop event in streaming."""

    type: Literal["content_block_stop"] = "content_block_stop"
    index: int


class MessageDeltaEvent(BaseModel):
    """Message delta event in streaming."""

    type: Literal["message_delta"] = "message_delta"
    delta: MessageDelta
    usage: Usage


class MessageStopEvent(BaseModel):
    """Message stop event in streaming."""

    type: Literal["message_stop"] = "message_stop"


class PingEvent(BaseModel):
    """Ping event for keeping connection alive."""

    type: Literal["ping"] = "ping"


class ErrorDetail(BaseModel):
    type: str
    message: str


class ErrorEvent(BaseModel):
    """Error response from Anthropic API, also sent inline in streams."""

    type: Literal["error"] = "error"
    error: ErrorDetail


StreamEvent = Annotated[
    Union[
        MessageStartEvent,
        ContentBlockStartEvent,
        ContentBlockDeltaEvent,
        ContentBlockStopEvent,
        MessageDeltaEvent,
        MessageStopEvent,
        PingEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]
