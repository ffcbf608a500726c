"""Unit tests for the model client against a mocked HTTP transport."""

import json

import httpx
import pytest

from bookbatch.core.exceptions import ModelCallError
from bookbatch.core.llm.endpoint_pool import EndpointPool
from bookbatch.core.llm.model_client import (
    MODE_BEST_EFFORT,
    MODE_RAW_TEXT,
    MODE_VALID,
    VERDICT_AMBIGUOUS,
    VERDICT_NOT_TRANSLATED,
    VERDICT_TRANSLATED,
    ModelClient,
    parse_verdict,
)


def chat_response(content):
    return httpx.Response(200, json={
        "choices": [{"message": {"content": content}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    })


def translations(*items, summary="Ann greets someone."):
    return json.dumps({"translations": list(items), "context_summary": summary})


class ScriptedServer:
    """Answers each request with the next scripted reply and records the payloads."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request):
        self.requests.append((request.url.host, json.loads(request.content)))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, httpx.Response):
            return reply
        return chat_response(reply)


@pytest.fixture
def pool():
    return EndpointPool()


def make_client(pool, server, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    return ModelClient(pool, transport=httpx.MockTransport(server), **kwargs)


class TestTranslate:
    """Test translate calls."""

    @pytest.mark.asyncio
    async def test_valid_answer(self, pool, endpoint_config):
        server = ScriptedServer(translations("[[p_1]]Salut Ann[[/p_1]]"))
        client = make_client(pool, server)
        try:
            result = await client.translate(endpoint_config, "[[p_1]]Hello Ann[[/p_1]]",
                                            previous_summary="Ann arrives.", target_language="French")
        finally:
            await client.close()
            await pool.close()

        assert result.is_ok()
        assert result.value.translated_text == "[[p_1]]Salut Ann[[/p_1]]"
        assert result.value.context_summary == "Ann greets someone."
        assert result.value.mode == MODE_VALID
        assert result.value.raw_response["attempts"] == 1

        _, payload = server.requests[0]
        assert payload["model"] == "test-model"
        assert payload["response_format"]["type"] == "json_schema"
        user_prompt = payload["messages"][-1]["content"]
        assert "Ann arrives." in user_prompt
        assert "French" in user_prompt

    @pytest.mark.asyncio
    async def test_missing_tag_triggers_correction(self, pool, endpoint_config):
        server = ScriptedServer(
            translations("[[p_1]]Salut"),
            translations("[[p_1]]Salut[[/p_1]]"),
        )
        client = make_client(pool, server)
        try:
            result = await client.translate(endpoint_config, "[[p_1]]Hello[[/p_1]]")
        finally:
            await client.close()
            await pool.close()

        assert result.value.translated_text == "[[p_1]]Salut[[/p_1]]"
        assert result.value.mode == MODE_VALID
        assert len(server.requests) == 2

        _, correction = server.requests[1]
        assert "Placeholder [[/p_1]] is missing or malformed" in correction["messages"][-1]["content"]
        # The invalid exchange is replayed before the correction
        assert correction["messages"][-2]["role"] == "assistant"

    @pytest.mark.asyncio
    async def test_wrong_item_count_is_corrected(self, pool, endpoint_config):
        server = ScriptedServer(translations("a", "b"), translations("Salut"))
        client = make_client(pool, server)
        try:
            result = await client.translate(endpoint_config, "Hello")
        finally:
            await client.close()
            await pool.close()

        assert result.value.translations == ["Salut"]
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_best_effort_after_corrections_exhausted(self, pool, endpoint_config):
        server = ScriptedServer(json.dumps({"translation": "[[p_1]]Salut"}))
        client = make_client(pool, server, max_corrections=2)
        try:
            result = await client.translate(endpoint_config, "[[p_1]]Hello[[/p_1]]",
                                            previous_summary="Earlier.")
        finally:
            await client.close()
            await pool.close()

        assert len(server.requests) == 3
        assert result.is_ok()
        assert result.value.mode == MODE_BEST_EFFORT
        assert result.value.translated_text == "[[p_1]]Salut"
        assert result.value.context_summary == "Earlier."

    @pytest.mark.asyncio
    async def test_raw_text_is_last_resort(self, pool, endpoint_config):
        server = ScriptedServer("```\n[[p_1]]Salut tout le monde[[/p_1]]\n```")
        client = make_client(pool, server, max_corrections=0)
        try:
            result = await client.translate(endpoint_config, "[[p_1]]Hello all[[/p_1]]")
        finally:
            await client.close()
            await pool.close()

        assert result.value.mode == MODE_RAW_TEXT
        assert result.value.translated_text == "[[p_1]]Salut tout le monde[[/p_1]]"

    @pytest.mark.asyncio
    async def test_failed_endpoint_is_reported_and_skipped(self, pool, endpoint_config):
        def server(request):
            if request.url.host == "llm-a":
                return httpx.Response(503, text="overloaded")
            return chat_response(translations("Salut"))

        client = ModelClient(pool, retry_delay=0, max_attempts=2, transport=httpx.MockTransport(server))
        try:
            result = await client.translate(endpoint_config, "Hello")
            records = await pool.snapshot()
        finally:
            await client.close()
            await pool.close()

        assert result.value.translated_text == "Salut"
        assert result.value.raw_response["endpoint"].startswith("http://llm-b:8080")
        failed = records["http://llm-a:8080/v1/chat/completions"]
        assert failed.last_failure_at is not None

    @pytest.mark.asyncio
    async def test_all_endpoints_down_is_err(self, pool, endpoint_config):
        def server(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ModelClient(pool, retry_delay=0, max_attempts=2, transport=httpx.MockTransport(server))
        try:
            result = await client.translate(endpoint_config, "Hello")
        finally:
            await client.close()
            await pool.close()

        assert result.is_err()
        assert isinstance(result.error, ModelCallError)


class TestClassify:
    """Test validation calls."""

    @pytest.mark.asyncio
    async def test_json_verdict(self, pool, endpoint_config):
        server = ScriptedServer(json.dumps({"verdict": "not_translated"}))
        client = make_client(pool, server)
        try:
            result = await client.classify(endpoint_config, "Hello", "Hello")
        finally:
            await client.close()
            await pool.close()

        assert result.value == VERDICT_NOT_TRANSLATED
        _, payload = server.requests[0]
        assert payload["response_format"]["json_schema"]["schema"]["required"] == ["verdict"]

    @pytest.mark.asyncio
    async def test_target_language_is_used_in_prompt(self, pool, endpoint_config):
        """The project's language wins over the client default."""
        server = ScriptedServer(json.dumps({"verdict": "translated"}))
        client = make_client(pool, server, target_language="Korean")
        try:
            await client.classify(endpoint_config, "Hello", "Bonjour", target_language="French")
        finally:
            await client.close()
            await pool.close()

        _, payload = server.requests[0]
        system_prompt = " ".join(message["content"] for message in payload["messages"]
                                 if message["role"] == "system")
        assert "real French translation" in system_prompt
        assert "Korean" not in system_prompt

    @pytest.mark.parametrize("content,verdict", [
        ('{"verdict": "translated"}', VERDICT_TRANSLATED),
        ("The text is not translated.", VERDICT_NOT_TRANSLATED),
        ("Hard to say, ambiguous.", VERDICT_AMBIGUOUS),
        ("It was translated.", VERDICT_TRANSLATED),
        ("???", VERDICT_AMBIGUOUS),
    ])
    def test_parse_verdict(self, content, verdict):
        assert parse_verdict(content) == verdict
