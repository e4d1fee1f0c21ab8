"""
Pydantic schemas for OpenAI API format.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel


class ChatMessage(BaseModel):
    """Chat message."""

    role: str
    content: Optional[Union[str, List[Dict[str, Any]]]] = None

    class Config:
        extra = "allow"


class ChatCompletionRequest(BaseModel):
    """
    Chat completion request.

    Fields the backend protocol does not name (``top_k`` and friends) ride in
    the extra-fields bag and are serialized at the top level.
    """

    model: str
    messages: List[ChatMessage]
    stream: bool = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[Union[str, List[str]]] = None
    user: Optional[str] = None

    class Config:
        extra = "allow"

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CompletionUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionChoice(BaseModel):
    """Chat completion choice."""

    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class ChatCompletionResponse(BaseModel):
    """Chat completion response."""

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ChatCompletionChoice] = []
    usage: Optional[CompletionUsage] = None

    class Config:
        extra = "allow"


class StreamDelta(BaseModel):
    """Streaming delta."""

    role: Optional[str] = None
    content: Optional[str] = None

    class Config:
        extra = "allow"


class StreamChoice(BaseModel):
    """Streaming choice."""

    index: int = 0
    delta: StreamDelta = StreamDelta()
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    """One incremental unit of a streaming chat completion."""

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[StreamChoice] = []
    usage: Optional[CompletionUsage] = None

    class Config:
        extra = "allow"
