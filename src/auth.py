"""
Inbound authentication for the proxy.
Checks the optional proxy key sent by clients; the backend key is never
accepted from clients.
"""

import hmac
import logging
from typing import Optional

from fastapi import Request

from .config import ProxyConfig
from .errors import AuthenticationError

logger = logging.getLogger(__name__)


def _extract_client_key(request: Request) -> Optional[str]:
    api_key = request.headers.get("x-api-key", "")
    if api_key:
        return api_key

    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def authenticate_user(request: Request) -> str:
    """
    Authenticate the caller against ``PROXY_AUTH_KEY``.

    Args:
        request: FastAPI request object

    Returns:
        Identifier of the authenticated caller

    Raises:
        AuthenticationError: If a key is configured and the request lacks it
    """
    config: ProxyConfig = request.app.state.config
    if not config.auth_key:
        return "anonymous"

    client_key = _extract_client_key(request)
    if client_key is None:
        logger.debug(f"Rejected request without credentials: {request.url.path}")
        raise AuthenticationError("missing API key; send x-api-key or Authorization: Bearer")

    if not hmac.compare_digest(client_key.encode("utf-8"), config.auth_key.encode("utf-8")):
        logger.warning(f"Rejected request with invalid API key: {request.url.path}")
        raise AuthenticationError("invalid API key")

    return "api_key_user"
