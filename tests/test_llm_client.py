"""Tests for the completion-service clients (no network)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from chunkpress.cli_display import token_tracker
from chunkpress.llm.base import ApiError, JsonError, LLMClient, RequestError
from chunkpress.llm.openai_client import OpenAIClient


class ScriptedClient(LLMClient):
    """Returns or raises the scripted outcomes in order."""

    def __init__(self, outcomes, **kwargs):
        super().__init__(**kwargs)
        self.outcomes = list(outcomes)
        self.calls = 0

    def _generate(self, system_prompt, prompt):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("chunkpress.llm.base.time.sleep") as sleep:
        yield sleep


class TestRetries:
    def test_success_first_try(self, no_sleep):
        client = ScriptedClient(["ok"])
        assert client.generate_response("sys", "hi") == "ok"
        assert client.calls == 1
        no_sleep.assert_not_called()

    def test_retries_then_succeeds(self, no_sleep):
        client = ScriptedClient([RequestError("boom", 500), "ok"],
                                max_retries=3, retry_delay=0.5)
        assert client.generate_response("sys", "hi") == "ok"
        assert client.calls == 2
        no_sleep.assert_called_once_with(0.5)

    def test_gives_up_after_retries(self, no_sleep):
        errors = [RequestError(f"e{i}", 502) for i in range(3)]
        client = ScriptedClient(errors, max_retries=2)

        with pytest.raises(RequestError, match="e2"):
            client.generate_response("sys", "hi")
        assert client.calls == 3
        assert no_sleep.call_count == 2

    def test_zero_retries_is_single_attempt(self):
        client = ScriptedClient([ApiError("nope")], max_retries=0)
        with pytest.raises(ApiError):
            client.generate_response("sys", "hi")
        assert client.calls == 1

    def test_auth_failure_not_retried(self, no_sleep):
        client = ScriptedClient([RequestError("denied", 401), "ok"])
        with pytest.raises(RequestError):
            client.generate_response("sys", "hi")
        assert client.calls == 1
        no_sleep.assert_not_called()

    def test_blank_response_retried(self):
        client = ScriptedClient(["   ", "ok"])
        assert client.generate_response("sys", "hi") == "ok"


def _response(status=200, body=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = str(body)
    if json_error:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = body
    return resp


def _client(**kwargs):
    return OpenAIClient("https://api.example.com/", "test-model", "sk-x",
                        max_retries=0, **kwargs)


class TestOpenAIClient:
    def test_posts_chat_completion(self):
        token_tracker.reset()
        body = {
            "choices": [{"message": {"content": "<response>hi</response>"}}],
            "usage": {"prompt_tokens": 11, "completion_tokens": 4},
        }
        with patch("chunkpress.llm.openai_client.requests.post",
                   return_value=_response(body=body)) as post:
            text = _client().generate_response("sys", "user")

        assert text == "<response>hi</response>"
        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        headers = post.call_args.kwargs["headers"]
        assert url == "https://api.example.com/chat/completions"
        assert payload["model"] == "test-model"
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        assert "response_format" not in payload
        assert headers["Authorization"] == "Bearer sk-x"
        assert token_tracker.total_tokens == 15

    def test_json_mode_requests_json_object(self):
        body = {"choices": [{"message": {"content": "{}"}}]}
        with patch("chunkpress.llm.openai_client.requests.post",
                   return_value=_response(body=body)) as post:
            _client(json_mode=True).generate_response("sys", "user")
        payload = post.call_args.kwargs["json"]
        assert payload["response_format"] == {"type": "json_object"}

    def test_http_error(self):
        with patch("chunkpress.llm.openai_client.requests.post",
                   return_value=_response(status=500, body="down")):
            with pytest.raises(RequestError) as info:
                _client().generate_response("sys", "user")
        assert info.value.status_code == 500

    def test_transport_error(self):
        with patch("chunkpress.llm.openai_client.requests.post",
                   side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(RequestError):
                _client().generate_response("sys", "user")

    def test_body_not_json(self):
        with patch("chunkpress.llm.openai_client.requests.post",
                   return_value=_response(json_error=True)):
            with pytest.raises(JsonError):
                _client().generate_response("sys", "user")

    def test_missing_choices(self):
        with patch("chunkpress.llm.openai_client.requests.post",
                   return_value=_response(body={"choices": []})):
            with pytest.raises(JsonError):
                _client().generate_response("sys", "user")

    def test_error_object(self):
        body = {"error": {"message": "quota exceeded"}}
        with patch("chunkpress.llm.openai_client.requests.post",
                   return_value=_response(body=body)):
            with pytest.raises(ApiError):
                _client().generate_response("sys", "user")
