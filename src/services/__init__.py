"""Thin request builders for each backend capability."""

from .audio import create_speech, create_transcription, create_translation
from .chat import create_chat_completion, stream_chat_completion
from .embeddings import create_embeddings
from .images import generate_image

__all__ = [
    "create_chat_completion",
    "stream_chat_completion",
    "create_embeddings",
    "generate_image",
    "create_speech",
    "create_transcription",
    "create_translation",
]
