"""Reply generation."""

from wabot.agent.context import PromptBuilder
from wabot.agent.generator import (
    MediaItem,
    ReplyFormatError,
    ReplyGenerationError,
    ReplyGenerator,
    ReplyPayload,
)

__all__ = [
    "MediaItem",
    "PromptBuilder",
    "ReplyFormatError",
    "ReplyGenerationError",
    "ReplyGenerator",
    "ReplyPayload",
]
