"""
Chat completion calls against the backend.
"""

import asyncio
import json
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Optional

from ..backend_client import BackendRequest, BackendTransport, JSONBody, parse_json_response
from ..errors import UpstreamProtocolError, map_backend_error
from ..schemas.openai import ChatCompletionRequest

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


async def create_chat_completion(
    transport: BackendTransport,
    request: ChatCompletionRequest,
    *,
    cancel: Optional[asyncio.Event] = None,
    deadline_s: Optional[float] = None,
) -> Dict[str, Any]:
    """Send a non-streaming chat completion and return the decoded JSON body."""
    payload = request.to_payload()
    payload["stream"] = False
    resp = await transport.execute(
        BackendRequest(path=CHAT_COMPLETIONS_PATH, body=JSONBody(payload)),
        cancel=cancel,
        deadline_s=deadline_s,
    )
    return parse_json_response(resp)


async def stream_chat_completion(
    transport: BackendTransport,
    request: ChatCompletionRequest,
    *,
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Send a streaming chat completion and yield each decoded chunk dict.

    Raises:
        UpstreamProtocolError: a data payload is not a JSON object
        ProxyError: the backend sent an ``error`` object mid-stream
    """
    payload = request.to_payload()
    payload["stream"] = True
    events = transport.execute_stream(
        BackendRequest(path=CHAT_COMPLETIONS_PATH, body=JSONBody(payload)),
        cancel=cancel,
    )
    async with aclosing(events):
        async for event in events:
            if not event.data:
                continue
            try:
                chunk = json.loads(event.data)
            except json.JSONDecodeError as e:
                raise UpstreamProtocolError(f"backend stream chunk is not valid JSON: {e}") from e
            if not isinstance(chunk, dict):
                raise UpstreamProtocolError("backend stream chunk is not a JSON object")
            if chunk.get("error"):
                raise map_backend_error(None, chunk)
            yield chunk
