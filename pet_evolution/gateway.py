"""Generator gateway — the only path from the engine to the LLM.

Wraps an LLM callable with a response cache, a request budget and a
per-call timeout. `generate()` never raises: on any failure, timeout or an
exhausted budget it returns the channel's canned fallback payload (see
pet_evolution.fallbacks), which is shaped like a real reply and tagged
`"source": "fallback"`.

The gateway is a plain object injected into the pipeline and trait engine.
Whoever owns it also owns the budget window and calls `reset_budget()` on
their own schedule.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pet_evolution.config import GenerateOptions, GeneratorSettings
from pet_evolution.fallbacks import fallback_payload
from pet_evolution.llm import LLM, LLMError

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, float, int]


class GeneratorGateway:
    def __init__(self, llm: LLM, settings: GeneratorSettings | None = None) -> None:
        self._llm = llm
        self._settings = settings or GeneratorSettings()
        self._cache: dict[CacheKey, str] = {}
        self._request_count = 0
        self._fallback_count = 0

    @property
    def settings(self) -> GeneratorSettings:
        return self._settings

    @property
    def request_count(self) -> int:
        return self._request_count

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @property
    def budget_exhausted(self) -> bool:
        return self._request_count >= self._settings.max_requests

    def options(self, channel: str) -> GenerateOptions:
        return self._settings.options(channel)

    def _cache_key(self, prompt: str, options: GenerateOptions) -> CacheKey:
        prefix = prompt[: self._settings.cache_prefix_length]
        return (options.channel, prefix, options.temperature, options.max_tokens)

    def _fallback(self, channel: str) -> str:
        self._fallback_count += 1
        return fallback_payload(channel)

    async def generate(self, prompt: str, options: GenerateOptions) -> str:
        """Return generated text for `prompt`, or the channel fallback payload."""
        channel = options.channel
        key = self._cache_key(prompt, options)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("gateway cache hit channel=%s", channel)
            return cached

        if self.budget_exhausted:
            logger.warning(
                "Request budget exhausted (%d/%d) — fallback for channel=%s",
                self._request_count, self._settings.max_requests, channel,
            )
            return self._fallback(channel)

        self._request_count += 1
        try:
            text = await asyncio.wait_for(
                self._llm(channel, prompt, options),
                timeout=self._settings.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Generator timed out after %ss — fallback for channel=%s",
                self._settings.timeout, channel,
            )
            return self._fallback(channel)
        except LLMError as e:
            logger.warning("Generator failed for channel=%s: %s", channel, e)
            return self._fallback(channel)
        except Exception:
            logger.warning(
                "Unexpected generator error for channel=%s", channel, exc_info=True
            )
            return self._fallback(channel)

        if not isinstance(text, str) or not text.strip():
            logger.warning("Generator returned empty text — fallback for channel=%s", channel)
            return self._fallback(channel)

        self._cache[key] = text
        return text

    def reset_budget(self) -> None:
        self._request_count = 0

    def clear_cache(self) -> None:
        self._cache.clear()

    def status(self) -> dict[str, Any]:
        return {
            "request_count": self._request_count,
            "max_requests": self._settings.max_requests,
            "budget_exhausted": self.budget_exhausted,
            "cache_size": len(self._cache),
            "fallback_count": self._fallback_count,
        }
