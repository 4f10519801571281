"""Tests for the arbitration client and reply parsing."""

import json
from typing import Any, Dict, List

import httpx
import pytest

from prstack.config.models import LLMConfig
from prstack.errors import ParseError
from prstack.llm import LLMError, OpenRouterClient
from prstack.llm.parser import extract_json, extract_json_object


class TestExtractJson:
    def test_bare_json(self) -> None:
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_block(self) -> None:
        assert extract_json('Sure!\n```json\n{"a": [1, 2]}\n```\nDone.') == {"a": [1, 2]}

    def test_embedded_in_prose(self) -> None:
        assert extract_json('The answer is {"ok": true} as requested') == {"ok": True}

    def test_ansi_codes_stripped(self) -> None:
        assert extract_json('\x1b[32m{"a": 1}\x1b[0m') == {"a": 1}

    def test_empty_raises(self) -> None:
        with pytest.raises(ParseError):
            extract_json("   ")

    def test_no_json_raises_with_raw(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            extract_json("no braces here")
        assert exc_info.value.raw == "no braces here"

    def test_object_required(self) -> None:
        with pytest.raises(ParseError):
            extract_json_object("[1, 2, 3]")


def mock_client(status: int, payload: Any, seen: List[Dict[str, Any]]) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"url": str(request.url), "headers": dict(request.headers),
                     "body": json.loads(request.content)})
        return httpx.Response(status, json=payload)
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestOpenRouterClient:
    def test_complete_posts_chat_request(self) -> None:
        seen: List[Dict[str, Any]] = []
        payload = {"choices": [{"message": {"content": '{"assignments": []}'}}]}
        client = OpenRouterClient(LLMConfig(api_key="sk-test", model="m/x"), mock_client(200, payload, seen))
        assert client.complete("sys", "usr") == '{"assignments": []}'
        request = seen[0]
        assert request["url"] == "https://openrouter.ai/api/v1/chat/completions"
        assert request["headers"]["authorization"] == "Bearer sk-test"
        assert request["body"]["model"] == "m/x"
        assert [m["role"] for m in request["body"]["messages"]] == ["system", "user"]

    def test_missing_key_raises_without_request(self) -> None:
        seen: List[Dict[str, Any]] = []
        client = OpenRouterClient(LLMConfig(), mock_client(200, {}, seen))
        with pytest.raises(LLMError):
            client.complete("sys", "usr")
        assert seen == []

    def test_http_error_is_not_retried(self) -> None:
        seen: List[Dict[str, Any]] = []
        client = OpenRouterClient(LLMConfig(api_key="k"), mock_client(503, {"error": "busy"}, seen))
        with pytest.raises(LLMError):
            client.complete("sys", "usr")
        assert len(seen) == 1

    def test_bad_shape_raises(self) -> None:
        client = OpenRouterClient(LLMConfig(api_key="k"), mock_client(200, {"choices": []}, []))
        with pytest.raises(LLMError):
            client.complete("sys", "usr")
