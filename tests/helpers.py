"""Generator test doubles shared by the test modules."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from pet_evolution.config import GenerateOptions
from pet_evolution.llm import LLMError


def as_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload)


class StubLLM:
    """Deterministic LLM stand-in for tests.

    Provide a dict mapping channel → list of responses (in call order).
    A channel with nothing left queued fails like an unreachable backend
    (LLMError), so the gateway serves its fallback for it.
    """

    def __init__(self, responses: dict[str, list[str]] | None = None) -> None:
        self._queues: dict[str, list[str]] = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, channel: str, prompt: str, options: GenerateOptions) -> str:
        self.calls.append((channel, prompt))
        queue = self._queues.get(channel)
        if not queue:
            raise LLMError(f"StubLLM: no response queued for channel={channel!r}")
        return queue.pop(0)

    @property
    def channels(self) -> list[str]:
        return [channel for channel, _ in self.calls]

    def prompt(self, channel: str, index: int = 0) -> str:
        return [p for c, p in self.calls if c == channel][index]

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed — catches missing LLM calls."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(f"StubLLM: unused responses remain: {leftover}")


class FailingLLM:
    """Always fails: raises `error`, or sleeps past any timeout when `hang` is set."""

    def __init__(self, error: Exception | None = None, hang: bool = False) -> None:
        self._error = error or LLMError("backend unavailable")
        self._hang = hang
        self.calls: list[str] = []

    async def __call__(self, channel: str, prompt: str, options: GenerateOptions) -> str:
        self.calls.append(channel)
        if self._hang:
            await asyncio.sleep(3600)
        raise self._error
