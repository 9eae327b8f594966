"""Structured reply generation on top of an LLM provider."""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from wabot.agent.context import PromptBuilder
from wabot.providers.base import LLMProvider

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class ReplyGenerationError(RuntimeError):
    """The provider failed to produce a reply."""


class ReplyFormatError(ReplyGenerationError):
    """The provider answered, but nothing usable could be extracted."""


@dataclass
class MediaItem:
    """An image to deliver: a remote URL or inline bytes, with an optional caption."""

    url: str = ""
    data: bytes | None = None
    caption: str = ""

    @property
    def is_remote(self) -> bool:
        return self.data is None and self.url.lower().startswith(("http://", "https://"))


@dataclass
class ReplyPayload:
    """What the model wants sent for one turn."""

    text: str = ""
    media: list[MediaItem] = field(default_factory=list)
    order: dict[str, Any] | None = None


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def _load_json_object(text: str) -> dict[str, Any] | None:
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end and (start, end) != (0, len(text) - 1):
        candidates.append(text[start:end + 1])
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _parse_media(raw: Any) -> list[MediaItem]:
    if not isinstance(raw, list):
        return []
    items: list[MediaItem] = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            items.append(MediaItem(url=entry.strip()))
        elif isinstance(entry, dict):
            url = str(entry.get("url", "") or "").strip()
            if url:
                items.append(MediaItem(url=url, caption=str(entry.get("caption", "") or "").strip()))
    return items


def parse_reply(raw: str | None) -> ReplyPayload:
    """
    Parse model output into a ReplyPayload.

    JSON objects (optionally wrapped in a code fence) are read as
    `{"text", "media", "order"}`; anything else is taken as plain text.

    Raises:
        ReplyFormatError: when the output carries no reply text (media alone
            is not a reply).
    """
    text = _strip_fences(raw or "")
    if not text:
        raise ReplyFormatError("empty reply")

    data = _load_json_object(text)
    if data is None:
        return ReplyPayload(text=text)

    payload = ReplyPayload(
        text=str(data.get("text", "") or "").strip(),
        media=_parse_media(data.get("media")),
        order=data.get("order") if isinstance(data.get("order"), dict) else None,
    )
    if not payload.text:
        raise ReplyFormatError("reply JSON has no text")
    return payload


class ReplyGenerator:
    """Turns a combined customer message into a ReplyPayload."""

    def __init__(
        self,
        provider: LLMProvider,
        prompts: PromptBuilder,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.4,
    ):
        self.provider = provider
        self.prompts = prompts
        self.model = model or provider.get_default_model()
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(self, combined_text: str, contact_key: str, history_text: str = "") -> ReplyPayload:
        messages = self.prompts.build_messages(combined_text, contact_key, history_text)
        response = await self.provider.chat(
            messages=messages,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if response.is_error:
            raise ReplyGenerationError(response.content or "provider error")

        payload = parse_reply(response.content)
        logger.debug(
            f"Reply for {contact_key}: {len(payload.text)} chars, "
            f"{len(payload.media)} media, order={'yes' if payload.order else 'no'}"
        )
        return payload
