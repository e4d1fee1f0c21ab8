"""
Embedding calls against the backend.
"""

import asyncio
from typing import Any, Dict, List, Optional, Union

from ..backend_client import BackendRequest, BackendTransport, JSONBody, parse_json_response
from ..errors import InvalidRequestError

EMBEDDINGS_PATH = "/v1/embeddings"

EmbeddingInput = Union[str, List[str], List[int]]


async def create_embeddings(
    transport: BackendTransport,
    model: str,
    input: EmbeddingInput,
    *,
    encoding_format: Optional[str] = None,
    dimensions: Optional[int] = None,
    user: Optional[str] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """
    Create embeddings for a string, a list of strings or a token list.

    Raises:
        InvalidRequestError: if the model or input is empty
    """
    if not model:
        raise InvalidRequestError("model is required")
    if not input:
        raise InvalidRequestError("input cannot be empty")
    if isinstance(input, list) and any(isinstance(item, str) and not item for item in input):
        raise InvalidRequestError("input cannot contain empty strings")

    payload: Dict[str, Any] = {"model": model, "input": input}
    if encoding_format is not None:
        payload["encoding_format"] = encoding_format
    if dimensions is not None:
        payload["dimensions"] = dimensions
    if user is not None:
        payload["user"] = user

    resp = await transport.execute(
        BackendRequest(path=EMBEDDINGS_PATH, body=JSONBody(payload)), cancel=cancel
    )
    return parse_json_response(resp)
