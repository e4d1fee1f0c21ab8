"""API route handlers."""

from .anthropic import router as anthropic_router

__all__ = [
    "anthropic_router",
]
