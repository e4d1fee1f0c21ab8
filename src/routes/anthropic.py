"""
Anthropic Messages API Routes - Serves /v1/messages on top of a Chat
Completions backend.
"""

import asyncio
import logging
from contextlib import aclosing, suppress
from typing import AsyncGenerator, List, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from ..auth import authenticate_user
from ..backend_client import BackendTransport
from ..config import STREAMING_RESPONSE_HEADERS, ProxyConfig
from ..errors import InternalError, InvalidRequestError, ProxyError
from ..schemas.anthropic import MessagesRequest
from ..schemas.openai import ChatCompletionRequest
from ..services.chat import create_chat_completion, stream_chat_completion
from .transformers import (
    AnthropicStreamProcessor,
    anthropic_request_to_openai,
    format_sse_event,
    openai_response_to_anthropic,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _error_response(error: ProxyError) -> JSONResponse:
    """Create a JSON error response from a typed error."""
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request body"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


async def _read_messages_request(request: Request, max_size: int) -> MessagesRequest:
    """
    Read and parse the request body, enforcing content type and size.

    Raises:
        InvalidRequestError: wrong content type, oversize body (413) or
            a body that does not match the Messages schema
    """
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        raise InvalidRequestError("content-type must be application/json")

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_size:
        raise InvalidRequestError("request body too large", status_code=413)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_size:
            raise InvalidRequestError("request body too large", status_code=413)

    try:
        return MessagesRequest.model_validate_json(bytes(body))
    except ValidationError as e:
        raise InvalidRequestError(f"failed to parse request: {_validation_message(e)}") from e


async def _emit(queue: asyncio.Queue, events: List[BaseModel]) -> None:
    for event in events:
        await queue.put(format_sse_event(event))


async def _pump_events(
    transport: BackendTransport,
    openai_request: ChatCompletionRequest,
    processor: AnthropicStreamProcessor,
    queue: asyncio.Queue,
    cancel: asyncio.Event,
) -> None:
    """
    Read the backend stream, run it through the processor and feed the
    formatted frames into ``queue``. Puts ``None`` when done.
    """
    try:
        async with aclosing(stream_chat_completion(transport, openai_request, cancel=cancel)) as chunks:
            async for chunk in chunks:
                await _emit(queue, processor.process_chunk(chunk))
                if processor.closed:
                    break
        await _emit(queue, processor.finish())
    except ProxyError as e:
        await _emit(queue, processor.error(e))
    except Exception as e:
        logger.error(f"Unexpected stream failure: {type(e).__name__}: {e}")
        await _emit(queue, processor.error(InternalError(f"stream failed: {e}")))
    await queue.put(None)


async def _stream_messages_response(
    transport: BackendTransport,
    openai_request: ChatCompletionRequest,
    model: str,
    queue_size: int,
) -> AsyncGenerator[str, None]:
    """
    Generate Anthropic formatted streaming response.

    Args:
        transport: Backend transport
        openai_request: Translated backend request
        model: Model name as the client sent it
        queue_size: Capacity of the frame queue between pump and client

    Yields:
        SSE formatted strings with Anthropic events
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
    cancel = asyncio.Event()
    processor = AnthropicStreamProcessor(model, logger=logger)
    pump = asyncio.create_task(_pump_events(transport, openai_request, processor, queue, cancel))

    logger.info(f"Starting Anthropic stream: {processor.message_id}")
    try:
        while True:
            frame = await queue.get()
            if frame is None:
                break
            yield frame
    finally:
        if not pump.done():
            logger.info(f"Client went away, canceling stream: {processor.message_id}")
            cancel.set()
            pump.cancel()
            with suppress(asyncio.CancelledError):
                await pump


@router.post(
    "/v1/messages",
    response_model=None,
    tags=["Anthropic Compatible"],
    summary="Create message (Anthropic format)",
    description="""
Create a message using the Anthropic Messages API format.

Requests are translated to the Chat Completions format and sent to the
configured backend. Model aliases such as `sonnet` or `claude-3.5-haiku` are
resolved to the backend model id.

**Streaming:** Set `stream: true` for SSE streaming with Anthropic events.
""",
)
async def anthropic_messages(
    request: Request,
    username: str = Depends(authenticate_user),
) -> Union[JSONResponse, StreamingResponse]:
    """Anthropic Messages API endpoint."""
    config: ProxyConfig = request.app.state.config
    transport: BackendTransport = request.app.state.transport

    try:
        claude_request = await _read_messages_request(request, config.max_request_size)
        openai_request = anthropic_request_to_openai(claude_request, request.app.state.model_aliases)
    except ProxyError as e:
        logger.warning(f"Rejected request: {e.message}")
        return _error_response(e)

    logger.info(
        f"Anthropic API: model={claude_request.model} -> {openai_request.model}, "
        f"stream={bool(claude_request.stream)}, user={username}"
    )

    if claude_request.stream:
        return StreamingResponse(
            _stream_messages_response(
                transport, openai_request, claude_request.model, config.stream_queue_size
            ),
            media_type="text/event-stream",
            headers=STREAMING_RESPONSE_HEADERS,
        )

    try:
        data = await create_chat_completion(
            transport, openai_request, deadline_s=config.request_timeout_s
        )
        response = openai_response_to_anthropic(data, claude_request.model)
    except ProxyError as e:
        logger.error(f"Request failed: {e.error_type}: {e.message}")
        return _error_response(e)

    logger.info(f"Processed Anthropic response for model: {claude_request.model}")
    return JSONResponse(content=response.model_dump())
