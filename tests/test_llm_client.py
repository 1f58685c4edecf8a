"""Tests for the chat-completion providers, retry wrapper, key rotation and search client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from cardforge.errors import OrchestrationFatalError
from cardforge.llm.client import GeminiChatClient, OllamaChatClient, create_chat_client
from cardforge.llm.resilient_client import call_with_retries, classify_error
from cardforge.schemas.agent_schemas import LLMConfig
from cardforge.utils.auth import KeyRotator
from cardforge.utils.search_client import TavilySearchClient

from fakes import make_settings


def _status_error(code):
    request = httpx.Request("POST", "http://test")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


class TestClassifyError:

    def test_http_status(self):
        assert classify_error(_status_error(429)) == "rate_limit"
        assert classify_error(_status_error(503)) == "overload"
        assert classify_error(_status_error(400)) is None

    def test_provider_messages(self):
        assert classify_error(RuntimeError("429 RESOURCE_EXHAUSTED")) == "rate_limit"
        assert classify_error(RuntimeError("503 UNAVAILABLE")) == "overload"
        assert classify_error(ValueError("bad prompt")) is None


class TestCallWithRetries:

    @patch("cardforge.llm.resilient_client.asyncio.sleep", new_callable=AsyncMock)
    def test_retries_then_succeeds(self, mock_sleep):
        call = AsyncMock(side_effect=[_status_error(503), _status_error(429), "ok"])
        rotate = AsyncMock()
        result = asyncio.run(call_with_retries(call, "test", on_rate_limit=rotate,
                                               max_retries=5, base_delay=1))
        assert result == "ok"
        assert call.await_count == 3
        rotate.assert_awaited_once()
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]

    @patch("cardforge.llm.resilient_client.asyncio.sleep", new_callable=AsyncMock)
    def test_exhaustion_is_fatal(self, mock_sleep):
        call = AsyncMock(side_effect=_status_error(503))
        with pytest.raises(OrchestrationFatalError, match="exhausted all 3 retries"):
            asyncio.run(call_with_retries(call, "test", max_retries=3, base_delay=1))
        assert call.await_count == 3

    def test_other_errors_propagate(self):
        call = AsyncMock(side_effect=ValueError("bad prompt"))
        with pytest.raises(ValueError):
            asyncio.run(call_with_retries(call, "test", max_retries=3, base_delay=0))
        assert call.await_count == 1


class TestOllamaChatClient:

    def test_posts_chat_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": '{"action": "ask_user"}'}})

        client = OllamaChatClient(transport=httpx.MockTransport(handler))
        config = LLMConfig(llm_type="ollama", model_name="llama3", base_url="http://ollama:11434/",
                           temperature=0.2, max_tokens=512)
        text = asyncio.run(client.complete("system text", "human text", config))

        assert text == '{"action": "ask_user"}'
        assert seen["url"] == "http://ollama:11434/api/chat"
        assert seen["body"]["model"] == "llama3"
        assert seen["body"]["stream"] is False
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "human text"},
        ]
        assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 512}

    def test_client_error_propagates(self):
        client = OllamaChatClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(client.complete("s", "h", LLMConfig(llm_type="ollama", model_name="x")))


class TestGeminiChatClient:

    @patch("cardforge.llm.client.genai.Client")
    def test_uses_caller_key(self, mock_client_cls):
        response = MagicMock()
        response.text = '{"action": "complete_task"}'
        mock_client_cls.return_value.aio.models.generate_content = AsyncMock(return_value=response)

        client = GeminiChatClient(rotator=KeyRotator(make_settings(), keys=["pool-key"]))
        config = LLMConfig(model_name="gemini-test", api_key="caller-key", temperature=0.3)
        text = asyncio.run(client.complete("system", "human", config))

        assert text == '{"action": "complete_task"}'
        assert mock_client_cls.call_args.kwargs["api_key"] == "caller-key"
        call = mock_client_cls.return_value.aio.models.generate_content.await_args
        assert call.kwargs["model"] == "gemini-test"
        assert call.kwargs["contents"] == "human"
        assert call.kwargs["config"].system_instruction == "system"

    @patch("cardforge.llm.resilient_client.asyncio.sleep", new_callable=AsyncMock)
    @patch("cardforge.llm.client.genai.Client")
    def test_rate_limit_rotates_pool_key(self, mock_client_cls, mock_sleep):
        response = MagicMock()
        response.text = "ok"
        mock_client_cls.return_value.aio.models.generate_content = AsyncMock(
            side_effect=[RuntimeError("429 RESOURCE_EXHAUSTED"), response]
        )

        rotator = KeyRotator(make_settings(key_cooldown_seconds=60), keys=["key-a", "key-b"])
        client = GeminiChatClient(rotator=rotator)
        text = asyncio.run(client.complete("s", "h", LLMConfig(model_name="gemini-test")))

        assert text == "ok"
        keys = [c.kwargs["api_key"] for c in mock_client_cls.call_args_list]
        assert keys == ["key-a", "key-b"]

    def test_factory_picks_provider(self):
        assert isinstance(create_chat_client(LLMConfig(llm_type="ollama", model_name="x")), OllamaChatClient)
        assert isinstance(create_chat_client(LLMConfig(model_name="x")), GeminiChatClient)


class TestKeyRotator:

    def test_round_robin(self):
        rotator = KeyRotator(make_settings(key_cooldown_seconds=60), keys=["a", "b"])

        async def take(n):
            return [await rotator.get_next_key() for _ in range(n)]

        assert asyncio.run(take(3)) == ["a", "b", "a"]

    def test_exhausted_key_skipped(self):
        rotator = KeyRotator(make_settings(key_cooldown_seconds=60), keys=["a", "b"])
        rotator.mark_exhausted("a")

        async def take(n):
            return [await rotator.get_next_key() for _ in range(n)]

        assert asyncio.run(take(2)) == ["b", "b"]

    def test_pool_comes_from_settings(self):
        rotator = KeyRotator(make_settings(google_api_keys="k1, k2,", google_api_key="single"))
        assert len(rotator) == 2

        async def take(n):
            return [await rotator.get_next_key() for _ in range(n)]

        assert asyncio.run(take(2)) == ["k1", "k2"]

    def test_cooldown_read_from_settings(self):
        rotator = KeyRotator(make_settings(key_cooldown_seconds=0), keys=["a", "b"])
        rotator.mark_exhausted("a")
        assert rotator.remaining_cooldown("a") == 0.0

        slow = KeyRotator(make_settings(key_cooldown_seconds=60), keys=["a"])
        slow.mark_exhausted("a")
        assert 59 < slow.remaining_cooldown("a") <= 60

    def test_no_keys(self):
        with pytest.raises(ValueError):
            KeyRotator(make_settings())
        with pytest.raises(ValueError):
            KeyRotator(make_settings(google_api_key="x"), keys=[])


class TestTavilySearchClient:

    def test_search_request_and_hits(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": [
                {"title": "Noir", "content": "Rain.", "url": "https://a.example", "score": 0.8},
                {"title": "No score", "content": "x", "url": "https://b.example"},
            ]})

        client = TavilySearchClient("tvly-key", max_results=4, transport=httpx.MockTransport(handler))
        hits = asyncio.run(client.search("noir films"))

        assert seen["auth"] == "Bearer tvly-key"
        assert seen["body"]["query"] == "noir films"
        assert seen["body"]["max_results"] == 4
        assert [h.title for h in hits] == ["Noir", "No score"]
        assert hits[1].score is None

    def test_http_error_raises(self):
        client = TavilySearchClient("k", transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(client.search("noir"))
