"""
Image generation calls against the backend.
"""

import asyncio
from typing import Any, Dict, Optional

from ..backend_client import BackendRequest, BackendTransport, JSONBody, parse_json_response
from ..errors import InvalidRequestError

IMAGE_GENERATIONS_PATH = "/v1/images/generations"


async def generate_image(
    transport: BackendTransport,
    prompt: str,
    *,
    model: Optional[str] = None,
    n: Optional[int] = None,
    size: Optional[str] = None,
    quality: Optional[str] = None,
    style: Optional[str] = None,
    response_format: Optional[str] = None,
    user: Optional[str] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """Generate images from a text prompt."""
    if not prompt:
        raise InvalidRequestError("prompt is required")
    if n is not None and n <= 0:
        raise InvalidRequestError("n must be positive")

    payload: Dict[str, Any] = {"prompt": prompt}
    optional = {
        "model": model,
        "n": n,
        "size": size,
        "quality": quality,
        "style": style,
        "response_format": response_format,
        "user": user,
    }
    payload.update({key: value for key, value in optional.items() if value is not None})

    resp = await transport.execute(
        BackendRequest(path=IMAGE_GENERATIONS_PATH, body=JSONBody(payload)), cancel=cancel
    )
    return parse_json_response(resp)
