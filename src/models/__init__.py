"""Claude model aliases and resolution helpers."""

from .claude import DEFAULT_MODEL_ALIASES
from .helpers import ModelAliasTable

__all__ = [
    "DEFAULT_MODEL_ALIASES",
    "ModelAliasTable",
]
