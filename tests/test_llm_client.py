"""Tests for the Ollama JSON-mode client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from wealthdesk.llm.client import LLMResponseError, OllamaClient, parse_json_object
from wealthdesk.schemas.events import EventType


def _client(handler) -> OllamaClient:
    return OllamaClient(base_url="http://ollama.test", model="qwen3:test", transport=httpx.MockTransport(handler))


def _reply(content: str) -> httpx.Response:
    return httpx.Response(200, json={"message": {"content": content}, "prompt_eval_count": 40, "eval_count": 12})


class TestParseJsonObject:
    def test_plain(self):
        assert parse_json_object('{"ages": [40, 99]}') == {"ages": [40, 99]}

    def test_fenced_with_prose(self):
        text = 'Here you go:\n```json\n{"ages": [61], "rationale": "horizon"}\n```'
        assert parse_json_object(text) == {"ages": [61], "rationale": "horizon"}

    @pytest.mark.parametrize("text", ["no json here", "{not: valid}", "[1, 2]"])
    def test_rejected(self, text):
        with pytest.raises(LLMResponseError):
            parse_json_object(text)


class TestChatJson:
    @pytest.mark.asyncio()
    async def test_request_shape_and_result(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return _reply('{"ages": [40, 99]}')

        client = _client(handler)
        with patch("wealthdesk.llm.client.emit", new_callable=AsyncMock) as mock_emit:
            result = await client.chat_json("Pick ages", '{"AVAILABLE": [40, 99]}')
        await client.close()

        assert result == {"ages": [40, 99]}
        body = seen[0]
        assert body["model"] == "qwen3:test"
        assert body["format"] == "json"
        assert body["think"] is False
        assert body["stream"] is False
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

        types = [c.args[0].event_type for c in mock_emit.call_args_list]
        assert types == [EventType.LLM_REQUEST, EventType.LLM_RESPONSE]

    @pytest.mark.asyncio()
    async def test_http_error_propagates(self):
        client = _client(lambda request: httpx.Response(500, text="model crashed"))

        with patch("wealthdesk.llm.client.emit", new_callable=AsyncMock) as mock_emit:
            with pytest.raises(httpx.HTTPStatusError):
                await client.chat_json("Pick ages", "{}")
        await client.close()

        assert mock_emit.call_args_list[-1].args[0].event_type == EventType.LLM_ERROR

    @pytest.mark.asyncio()
    async def test_non_json_reply(self):
        client = _client(lambda request: _reply("I think age 40 is best."))

        with patch("wealthdesk.llm.client.emit", new_callable=AsyncMock):
            with pytest.raises(LLMResponseError):
                await client.chat_json("Pick ages", "{}")
        await client.close()
