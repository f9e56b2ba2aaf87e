"""
Tests for JSON extraction from model output and the Ollama-backed summarizer.
"""

import time
from unittest.mock import patch

import ollama
import pytest

from semantic_recall.learning.summarizer import OllamaSummarizer, parse_json_response


class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"summary": "ok"}') == {"summary": "ok"}

    def test_code_fenced_json(self):
        raw = '```json\n{"topics": ["jazz"]}\n```'
        assert parse_json_response(raw) == {"topics": ["jazz"]}

    def test_json_inside_prose(self):
        raw = 'Here is the result:\n[{"preferenceKey": "music"}]\nHope that helps.'
        assert parse_json_response(raw) == [{"preferenceKey": "music"}]

    def test_already_parsed_values_pass_through(self):
        assert parse_json_response({"a": 1}) == {"a": 1}

    @pytest.mark.parametrize("raw", [None, "", "   ", "no json here", "{broken"])
    def test_unusable_output(self, raw):
        assert parse_json_response(raw) is None


@pytest.fixture
def client():
    with patch("semantic_recall.learning.summarizer.ollama.Client") as client_cls:
        yield client_cls.return_value


@pytest.mark.asyncio
async def test_complete_json_sends_json_mode_chat(client):
    client.chat.return_value = {"message": {"content": '{"summary": "Planning a Lisbon trip"}'}}
    summarizer = OllamaSummarizer(model_name="llama3.1:8b", host="http://localhost:11434", timeout=5.0)

    result = await summarizer.complete_json("system prompt", "user: hello")

    assert result == {"summary": "Planning a Lisbon trip"}
    kwargs = client.chat.call_args.kwargs
    assert kwargs["model"] == "llama3.1:8b"
    assert kwargs["format"] == "json"
    assert kwargs["options"] == {"temperature": 0.3}
    assert kwargs["messages"] == [
        {"role": "system", "content": "system prompt"},
        {"role": "user", "content": "user: hello"}
    ]


@pytest.mark.asyncio
async def test_response_error_yields_none(client):
    client.chat.side_effect = ollama.ResponseError("model not found")
    summarizer = OllamaSummarizer(timeout=5.0)

    assert await summarizer.complete_json("system", "user") is None


@pytest.mark.asyncio
async def test_connection_failure_yields_none(client):
    client.chat.side_effect = ConnectionError("connection refused")
    summarizer = OllamaSummarizer(timeout=5.0)

    assert await summarizer.complete_json("system", "user") is None


@pytest.mark.asyncio
async def test_non_json_reply_yields_none(client):
    client.chat.return_value = {"message": {"content": "Sorry, I cannot help with that."}}
    summarizer = OllamaSummarizer(timeout=5.0)

    assert await summarizer.complete_json("system", "user") is None


@pytest.mark.asyncio
async def test_slow_model_times_out(client):
    summarizer = OllamaSummarizer(timeout=0.05)

    def slow_chat(system_prompt, user_prompt):
        time.sleep(0.5)
        return "{}"

    with patch.object(summarizer, "_chat", slow_chat):
        assert await summarizer.complete_json("system", "user") is None
