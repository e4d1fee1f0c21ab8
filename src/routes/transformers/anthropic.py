"""
Anthropic Format Transformers - Handles conversion between the Anthropic
Messages API and the OpenAI Chat Completions API.

Both directions are pure functions: they never touch the network and report
problems by raising typed errors.
"""

import math
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ...config import MAX_TOKENS_CEILING
from ...errors import InvalidRequestError, UpstreamProtocolError, map_backend_error
from ...models import ModelAliasTable
from ...schemas.anthropic import (
    ContentBlock,
    ImageBlock,
    ImageSource,
    MessagesRequest,
    MessagesResponse,
    TextBlock,
    Usage,
)
from ...schemas.openai import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    CompletionUsage,
)
from ...utils import generate_message_id

VALID_ROLES = ("user", "assistant")
DEFAULT_STOP_REASON = "end_turn"

# Backend finish_reason -> Anthropic stop_reason
STOP_REASON_MAP: Dict[str, str] = {
    "stop": "end_turn",
    "length": "max_tokens",
    "content_filter": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
}


def map_stop_reason(finish_reason: Optional[str]) -> str:
    """Map a backend finish reason to an Anthropic stop reason."""
    if not finish_reason:
        return DEFAULT_STOP_REASON
    return STOP_REASON_MAP.get(finish_reason, DEFAULT_STOP_REASON)


def map_usage(usage: Optional[CompletionUsage]) -> Usage:
    """Map backend token counts to Anthropic usage; missing counts are 0."""
    if usage is None:
        return Usage(input_tokens=0, output_tokens=0)
    return Usage(
        input_tokens=max(0, usage.prompt_tokens),
        output_tokens=max(0, usage.completion_tokens),
    )


# --- Validation ---
def _check_unit_interval(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if math.isnan(value) or value < 0 or value > 1:
        raise InvalidRequestError(f"{name} must be between 0 and 1")


def _content_blocks(content: Union[str, List[ContentBlock]]) -> List[ContentBlock]:
    if isinstance(content, str):
        return [ContentBlock(type="text", text=content)]
    return list(content)


def _validate_block(block: ContentBlock, msg_index: int, block_index: int) -> None:
    if block.type == "text":
        if not block.text:
            raise InvalidRequestError(
                f"text content cannot be empty at message {msg_index}, content {block_index}"
            )
    elif block.type == "image":
        if not block.image_url and block.source is None:
            raise InvalidRequestError(
                f"image content must have either image_url or source at message {msg_index}, content {block_index}"
            )
    else:
        raise InvalidRequestError(
            f"unsupported content type: {block.type} at message {msg_index}, content {block_index}"
        )


def validate_anthropic_request(request: MessagesRequest) -> None:
    """
    Check the request against the Messages API constraints.

    Raises:
        InvalidRequestError: naming the first violation found
    """
    if not request.model:
        raise InvalidRequestError("model is required")
    if request.max_tokens <= 0:
        raise InvalidRequestError("max_tokens must be positive")
    if request.max_tokens > MAX_TOKENS_CEILING:
        raise InvalidRequestError(f"max_tokens cannot exceed {MAX_TOKENS_CEILING}")
    if not request.messages:
        raise InvalidRequestError("messages cannot be empty")
    _check_unit_interval("temperature", request.temperature)
    _check_unit_interval("top_p", request.top_p)
    if request.top_k is not None and request.top_k < 0:
        raise InvalidRequestError("top_k must be non-negative")

    for i, message in enumerate(request.messages):
        if message.role not in VALID_ROLES:
            raise InvalidRequestError(f"invalid role at message {i}: {message.role}")
        blocks = _content_blocks(message.content)
        if not blocks:
            raise InvalidRequestError(f"message {i} content cannot be empty")
        for j, block in enumerate(blocks):
            _validate_block(block, i, j)


# --- Request: Anthropic -> OpenAI ---
def _image_url(block: ContentBlock, msg_index: int, block_index: int) -> str:
    if block.source is None:
        return block.image_url or ""

    source = block.source
    if source.type == "base64":
        if not source.data:
            raise InvalidRequestError(
                f"image source data cannot be empty at message {msg_index}, content {block_index}"
            )
        media_type = source.media_type or "image/png"
        return f"data:{media_type};base64,{source.data}"
    if source.type == "url":
        if not source.url:
            raise InvalidRequestError(
                f"image source url cannot be empty at message {msg_index}, content {block_index}"
            )
        return source.url
    raise InvalidRequestError(
        f"unsupported image source type: {source.type} at message {msg_index}, content {block_index}"
    )


def _convert_content(
    content: Union[str, List[ContentBlock]], msg_index: int
) -> Union[str, List[Dict[str, Any]]]:
    """Map content blocks element-wise; a lone text block collapses to a string."""
    blocks = _content_blocks(content)
    if len(blocks) == 1 and blocks[0].type == "text":
        return blocks[0].text or ""

    parts: List[Dict[str, Any]] = []
    for j, block in enumerate(blocks):
        if block.type == "text":
            parts.append({"type": "text", "text": block.text})
        elif block.type == "image":
            parts.append({"type": "image_url", "image_url": {"url": _image_url(block, msg_index, j)}})
    return parts


def _system_text(system: Any) -> str:
    if system is None:
        return ""
    if isinstance(system, str):
        return system
    return "\n".join(block.text for block in system if block.text)


def anthropic_request_to_openai(
    request: MessagesRequest, aliases: ModelAliasTable
) -> ChatCompletionRequest:
    """
    Transform an Anthropic Messages request into a Chat Completions request.

    Args:
        request: Anthropic format request
        aliases: Table used to resolve the requested model name

    Returns:
        OpenAI format request

    Raises:
        InvalidRequestError: if the request violates the Messages API rules
    """
    validate_anthropic_request(request)

    messages: List[ChatMessage] = []
    system_text = _system_text(request.system)
    if system_text:
        messages.append(ChatMessage(role="system", content=system_text))

    for i, message in enumerate(request.messages):
        messages.append(ChatMessage(role=message.role, content=_convert_content(message.content, i)))

    # Client-only knobs travel in the extra-fields bag
    extra: Dict[str, Any] = {}
    if request.top_k is not None:
        extra["top_k"] = request.top_k

    user_id = request.metadata.user_id if request.metadata else None

    return ChatCompletionRequest(
        model=aliases.resolve(request.model),
        messages=messages,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
        top_p=request.top_p,
        stop=list(request.stop_sequences) if request.stop_sequences else None,
        stream=bool(request.stream),
        user=user_id or None,
        **extra,
    )


# --- Response: OpenAI -> Anthropic ---
def _parse_data_uri(url: str) -> Optional[ImageSource]:
    """Turn an image ``data:`` URI into a base64 image source."""
    if not url.startswith("data:"):
        return None
    try:
        header, data = url.split(",", 1)
    except ValueError:
        return None
    media_type = header[len("data:") :].split(";", 1)[0]
    if not media_type.startswith("image/") or ";base64" not in header:
        return None
    return ImageSource(type="base64", media_type=media_type, data=data)


def _image_block(part: Dict[str, Any]) -> Optional[ImageBlock]:
    image_url = part.get("image_url")
    url = image_url.get("url") if isinstance(image_url, dict) else image_url
    if not isinstance(url, str) or not url:
        return None
    source = _parse_data_uri(url) or ImageSource(type="url", url=url)
    return ImageBlock(source=source)


def _convert_response_content(content: Any) -> List[Union[TextBlock, ImageBlock]]:
    blocks: List[Union[TextBlock, ImageBlock]] = []

    if isinstance(content, str):
        if content:
            blocks.append(TextBlock(text=content))
    elif isinstance(content, list):
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text":
                text = part.get("text")
                if isinstance(text, str) and text:
                    blocks.append(TextBlock(text=text))
            elif part.get("type") == "image_url":
                image = _image_block(part)
                if image is not None:
                    blocks.append(image)

    if not blocks:
        blocks.append(TextBlock(text=""))
    return blocks


def openai_response_to_anthropic(
    response: Union[ChatCompletionResponse, Dict[str, Any]], requested_model: str
) -> MessagesResponse:
    """
    Transform a Chat Completions response to Anthropic Messages format.

    Args:
        response: Backend response (parsed model or raw JSON dict)
        requested_model: Model name as the client sent it

    Returns:
        Anthropic format response with at least one content block

    Raises:
        UpstreamProtocolError: zero choices or a body that does not parse
        ProxyError: the body carries a backend ``error`` object
    """
    if not isinstance(response, ChatCompletionResponse):
        if not isinstance(response, dict):
            raise UpstreamProtocolError("backend response is not a JSON object")
        if response.get("error"):
            raise map_backend_error(None, response)
        try:
            response = ChatCompletionResponse.model_validate(response)
        except ValidationError as e:
            raise UpstreamProtocolError(
                f"backend response does not match the chat completion schema: {e.error_count()} error(s)"
            ) from e

    if not response.choices:
        raise UpstreamProtocolError("no choices in backend response")

    choice = response.choices[0]
    return MessagesResponse(
        id=response.id or generate_message_id(),
        content=_convert_response_content(choice.message.content),
        model=requested_model,
        stop_reason=map_stop_reason(choice.finish_reason),
        stop_sequence=None,
        usage=map_usage(response.usage),
    )
