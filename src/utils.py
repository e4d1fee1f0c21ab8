"""
Utility functions for the proxy.
"""

import platform
import uuid

from .config import APP_NAME, APP_VERSION


def get_user_agent() -> str:
    """Generate the User-Agent string sent to the backend."""
    system = platform.system()
    arch = platform.machine()
    return f"{APP_NAME}/{APP_VERSION} ({system}; {arch})"


def generate_message_id() -> str:
    """Generate a client-protocol message id (``msg_`` + 24 hex chars)."""
    return f"msg_{uuid.uuid4().hex[:24]}"


def join_url(base_url: str, path: str) -> str:
    """
    Join a backend base URL and an API path.

    A ``/v1`` prefix on the path is dropped when the base URL already ends
    with ``/v1`` so both ``https://host`` and ``https://host/v1`` work.
    """
    cleaned_base = base_url.rstrip("/")
    cleaned_path = path if path.startswith("/") else f"/{path}"
    if cleaned_base.endswith("/v1"):
        if cleaned_path.startswith("/v1/"):
            cleaned_path = cleaned_path[3:]
        elif cleaned_path == "/v1":
            cleaned_path = ""
    return f"{cleaned_base}{cleaned_path}"
