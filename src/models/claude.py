"""
Claude model aliases and their canonical backend model ids.
"""

from typing import Dict

# Canonical ids
CLAUDE_3_OPUS = "claude-3-opus-20240229"
CLAUDE_3_SONNET = "claude-3-sonnet-20240229"
CLAUDE_3_HAIKU = "claude-3-haiku-20240307"
CLAUDE_3_5_SONNET = "claude-3-5-sonnet-20241022"
CLAUDE_3_5_HAIKU = "claude-3-5-haiku-20241022"

DEFAULT_MODEL_ALIASES: Dict[str, str] = {
    # Dated ids map to themselves
    CLAUDE_3_OPUS: CLAUDE_3_OPUS,
    CLAUDE_3_SONNET: CLAUDE_3_SONNET,
    CLAUDE_3_HAIKU: CLAUDE_3_HAIKU,
    CLAUDE_3_5_SONNET: CLAUDE_3_5_SONNET,
    CLAUDE_3_5_HAIKU: CLAUDE_3_5_HAIKU,
    # Family names
    "claude-3-opus": CLAUDE_3_OPUS,
    "claude-3-sonnet": CLAUDE_3_SONNET,
    "claude-3-haiku": CLAUDE_3_HAIKU,
    "claude-3.5-sonnet": CLAUDE_3_5_SONNET,
    "claude-3.5-haiku": CLAUDE_3_5_HAIKU,
    # Short names
    "opus": CLAUDE_3_OPUS,
    "sonnet": CLAUDE_3_SONNET,
    "haiku": CLAUDE_3_HAIKU,
}
