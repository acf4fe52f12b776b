"""Text-generation backends reachable by the generator gateway.

Anything the gateway wraps must be an async callable of the form

    async def __call__(self, channel: str, prompt: str, options: GenerateOptions) -> str: ...

where `channel` names the calling part of the engine ("perception", "core",
"execution", "evolution", "numerical"). HttpLLM uses it to choose a system
message for chat backends; EchoLLM ignores it.

    HttpLLM   — talks to a KoboldCpp or OpenAI-compatible server over httpx.
    EchoLLM   — hands the prompt straight back, so every stage degrades to
                 its canned default. Handy for checking the wiring offline.

Build an HttpLLM from ConnectionSettings with llm_from_settings(). Test
modules bring their own doubles (tests/helpers.py).
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

from pet_evolution.config import ConnectionSettings, GenerateOptions

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, channel: str, prompt: str, options: GenerateOptions) -> str: ...


ProviderFormat = Literal["koboldcpp", "openai"]

SYSTEM_PROMPTS: dict[str, str] = {
    "perception": (
        "You are the perception system of a virtual pet. Analyse situations "
        "and answer with strict JSON only."
    ),
    "core": (
        "You are the core personality of a virtual pet. Decide how it feels "
        "and leans, and answer with strict JSON only."
    ),
    "execution": (
        "You are the behavior system of a virtual pet. Turn instructions into "
        "concrete actions and stat changes, answering with strict JSON only."
    ),
    "evolution": (
        "You are an evolution designer for a creature-raising game. Propose "
        "balanced evolutions as strict JSON."
    ),
    "numerical": (
        "You are the numbers agent of a creature-raising game. Convert "
        "evolution descriptions into exact game values. Output JSON only, "
        "no other text."
    ),
}


class HttpLLM:
    """One POST per call against a KoboldCpp or OpenAI-compatible server.

    KoboldCpp: /api/v1/generate, text read from results[0].text.
    OpenAI: /v1/chat/completions with a per-channel system message, text
    read from choices[0].message.content. Connection, HTTP status, timeout
    and body-shape problems all surface as LLMError.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(
        self, channel: str, prompt: str, options: GenerateOptions
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict = {
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPTS.get(channel, SYSTEM_PROMPTS["perception"])},
                    {"role": "user", "content": prompt},
                ],
                "temperature": options.temperature,
                "max_tokens": options.max_tokens,
                "stream": False,
            }
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        return url, {
            "prompt": prompt,
            "temperature": options.temperature,
            "max_length": options.max_tokens,
        }

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "message" not in choices[0] or "content" not in choices[0]["message"]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["message"]["content"]

        # koboldcpp
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(self, channel: str, prompt: str, options: GenerateOptions) -> str:
        url, body = self._build_request(channel, prompt, options)
        logger.debug("llm call channel=%s url=%s prompt_len=%d", channel, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response channel=%s len=%d", channel, len(text))
        return text


def llm_from_settings(connection: ConnectionSettings, timeout: float = 120.0) -> HttpLLM:
    return HttpLLM(
        provider_url=connection.provider_url,
        api_key=connection.api_key,
        provider_format=connection.provider_format,
        model=connection.model,
        timeout=timeout,
    )


class EchoLLM:
    """Offline stand-in: the reply is the prompt itself, never valid JSON."""

    async def __call__(self, channel: str, prompt: str, options: GenerateOptions) -> str:
        logger.debug("EchoLLM channel=%s prompt_len=%d", channel, len(prompt))
        return prompt


class LLMError(RuntimeError):
    """The backend was unreachable or answered with something unusable."""
