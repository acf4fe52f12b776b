"""Tests for pet_evolution.llm — HttpLLM and EchoLLM."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from pet_evolution.config import ConnectionSettings, GenerateOptions
from pet_evolution.llm import SYSTEM_PROMPTS, EchoLLM, HttpLLM, LLMError, llm_from_settings

OPTIONS = GenerateOptions(temperature=0.6, max_tokens=1200, channel="execution")


# ---------------------------------------------------------------------------
# EchoLLM
# ---------------------------------------------------------------------------

class TestEchoLLM:
    async def test_returns_prompt_unchanged(self) -> None:
        llm = EchoLLM()
        result = await llm("perception", "hello world", OPTIONS)
        assert result == "hello world"

    async def test_channel_ignored(self) -> None:
        llm = EchoLLM()
        assert await llm("perception", "x", OPTIONS) == await llm("core", "x", OPTIONS)


# ---------------------------------------------------------------------------
# HttpLLM: KoboldCpp format
# ---------------------------------------------------------------------------

def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


class TestHttpLLMKoboldCpp:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:5001", api_key="")

    async def test_happy_path(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": '{"situationType": "battle"}'}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("perception", "Read the situation.", OPTIONS)
        assert result == '{"situationType": "battle"}'

    async def test_posts_to_correct_url(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("perception", "prompt", OPTIONS)
        url = mock_post.call_args[0][0]
        assert url == "http://localhost:5001/api/v1/generate"

    async def test_sends_prompt_and_options_in_body(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("execution", "my prompt", OPTIONS)
        sent_body = mock_post.call_args.kwargs["json"]
        assert sent_body == {"prompt": "my prompt", "temperature": 0.6, "max_length": 1200}

    async def test_bearer_token_sent_when_api_key_set(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001", api_key="secret")
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("perception", "prompt", OPTIONS)
        headers = mock_post.call_args.kwargs["headers"]
        assert headers.get("Authorization") == "Bearer secret"

    async def test_no_auth_header_when_no_api_key(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("perception", "prompt", OPTIONS)
        headers = mock_post.call_args.kwargs["headers"]
        assert "Authorization" not in headers

    async def test_trailing_slash_stripped_from_url(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001/")
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("perception", "prompt", OPTIONS)
        url = mock_post.call_args[0][0]
        assert url == "http://localhost:5001/api/v1/generate"

    async def test_connect_error_raises_llm_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Cannot connect"):
                await llm("perception", "prompt", OPTIONS)

    async def test_timeout_raises_llm_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="timed out"):
                await llm("perception", "prompt", OPTIONS)

    async def test_http_error_raises_llm_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=503))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="HTTP 503"):
                await llm("perception", "prompt", OPTIONS)

    async def test_non_json_body_raises_llm_error(self, llm: HttpLLM) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(LLMError, match="non-JSON"):
                await llm("perception", "prompt", OPTIONS)

    async def test_malformed_response_raises_llm_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm("perception", "prompt", OPTIONS)


# ---------------------------------------------------------------------------
# HttpLLM: OpenAI format
# ---------------------------------------------------------------------------

def _chat_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestHttpLLMOpenAI:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(
            provider_url="http://localhost:8080",
            provider_format="openai",
            model="mistral-7b",
        )

    async def test_posts_to_correct_url(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("core", "prompt", OPTIONS)
        url = mock_post.call_args[0][0]
        assert url == "http://localhost:8080/v1/chat/completions"

    async def test_sends_model_and_channel_system_prompt(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("core", "prompt", OPTIONS)
        sent_body = mock_post.call_args.kwargs["json"]
        assert sent_body["model"] == "mistral-7b"
        assert sent_body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPTS["core"]}
        assert sent_body["messages"][1] == {"role": "user", "content": "prompt"}
        assert sent_body["max_tokens"] == 1200
        assert sent_body["stream"] is False

    async def test_happy_path(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat_body('{"traits": []}')))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("numerical", "prompt", OPTIONS)
        assert result == '{"traits": []}'

    async def test_malformed_response_raises_llm_error(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "kobold format accidentally"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm("core", "prompt", OPTIONS)


def test_llm_from_settings_uses_connection_fields() -> None:
    llm = llm_from_settings(ConnectionSettings(
        provider_url="http://gpu:9000/", api_key="k", provider_format="openai", model="m",
    ))
    url, body = llm._build_request("core", "p", OPTIONS)
    assert url == "http://gpu:9000/v1/chat/completions"
    assert body["model"] == "m"
    assert llm._headers()["Authorization"] == "Bearer k"
