"""Plain-language narration of agent activity using Claude Haiku.

Narration is best effort: whenever the model can't be reached (no API key,
API error, empty response) the caller gets the original text back.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from datetime import datetime

from anthropic import AsyncAnthropic

from .timeutils import seconds_since, utc_now

logger = logging.getLogger(__name__)

DEFAULT_NARRATION_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_LANGUAGE = "nl"
MAX_TOKENS = 100

PROMPTS = {
    "nl": (
        "Je bent een narrator voor een dashboard dat toont wat AI agents aan het doen zijn. "
        "Je publiek is niet-technisch en wil begrijpen wat er gebeurt. Vertaal deze technische "
        "actie naar een korte, vriendelijke Nederlandse zin (max 20 woorden) die uitlegt wat de "
        "agent doet. Geen technisch jargon.\n\n"
        'Actie: "{text}"'
    ),
    "en": (
        "You are a narrator for a dashboard showing what AI agents are doing. Your audience is "
        "non-technical and wants to understand what's happening. Translate this technical action "
        "into a short, friendly English sentence (max 20 words) explaining what the agent is "
        "doing. No technical jargon.\n\n"
        'Action: "{text}"'
    ),
}


def build_prompt(text: str, language: str = DEFAULT_LANGUAGE) -> str:
    """Prompt for ``language``; unknown languages use the Dutch prompt."""
    template = PROMPTS.get(language, PROMPTS[DEFAULT_LANGUAGE])
    return template.format(text=text)


class NarrationCache:
    """TTL cache of narrations keyed by (text, language).

    Expired entries are removed when they are looked up.
    """

    def __init__(self, ttl_seconds: float = 30 * 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[str, float]] = {}

    def get(self, text: str, language: str) -> str | None:
        key = (text, language)
        entry = self._entries.get(key)
        if entry is None:
            return None
        narration, stored_at = entry
        age = self._clock() - stored_at
        if age >= self.ttl_seconds:
            logger.debug(f"Narration cache expired (age: {int(age)}s), removing")
            del self._entries[key]
            return None
        return narration

    def put(self, text: str, language: str, narration: str) -> None:
        self._entries[(text, language)] = (narration, self._clock())

    def __len__(self) -> int:
        return len(self._entries)


class Narrator:
    """Translates technical agent actions into short friendly sentences.

    Attributes:
        model: Claude model used for narration.
        cache: Narrations already produced.
        window_seconds: Content older than this is returned as-is.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_NARRATION_MODEL,
        ttl_seconds: float = 30 * 60,
        window_seconds: float = 10 * 60,
        cache: NarrationCache | None = None,
    ):
        """Initialize the Narrator.

        Args:
            api_key: Anthropic API key. If None, uses ANTHROPIC_API_KEY env var.
            model: Claude model to use. Defaults to Haiku 4.5.
            ttl_seconds: Lifetime of cached narrations.
            window_seconds: Maximum age of content worth narrating.
            cache: Cache to use instead of a new one.
        """
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.model = model
        self.window_seconds = window_seconds
        self.cache = cache or NarrationCache(ttl_seconds)
        self._client: AsyncAnthropic | None = None

        if not self.api_key:
            logger.info("ANTHROPIC_API_KEY not set - narration returns original text")

    @property
    def key_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    def is_recent(self, timestamp: str | None, now: datetime | None = None) -> bool:
        """Whether content stamped ``timestamp`` is recent enough to narrate.

        Missing or unparseable timestamps count as recent.
        """
        if not timestamp:
            return True
        elapsed = seconds_since(timestamp, now or utc_now())
        return elapsed is None or elapsed <= self.window_seconds

    async def narrate(
        self,
        text: str,
        language: str = DEFAULT_LANGUAGE,
        timestamp: str | None = None,
    ) -> str:
        """Narrate ``text``, falling back to the text itself. Never raises."""
        if not text:
            return text
        if not self.is_recent(timestamp):
            logger.debug("Skipping narration for old content")
            return text

        cached = self.cache.get(text, language)
        if cached is not None:
            return cached

        if not self.api_key:
            return text

        try:
            message = await self._get_client().messages.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                messages=[{"role": "user", "content": build_prompt(text, language)}],
            )
            narration = message.content[0].text if message.content else None
        except Exception as e:
            logger.warning(f"Narration failed: {type(e).__name__} - {e}")
            return text

        if not narration:
            return text

        self.cache.put(text, language, narration)
        logger.debug(f"Cached narration (cache size: {len(self.cache)})")
        return narration
