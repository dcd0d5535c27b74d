import os
import sys

import pytest
import requests

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.llm_client import LLMClient, LLMClientError
from utils.llm_json import extract_json, strip_code_fences


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text
        self.content = b"{}" if payload is not None else b""

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class DummySession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _reply(content):
    return DummyResponse(payload={"choices": [{"message": {"content": content}}]})


def _client(session, **kwargs):
    sleeps = []
    client = LLMClient(
        base_url="localhost:11434",
        model="test-model",
        session=session,
        sleep=sleeps.append,
        max_retries=kwargs.pop("max_retries", 2),
        backoff_seconds=kwargs.pop("backoff_seconds", 0.5),
        **kwargs,
    )
    return client, sleeps


def test_complete_posts_chat_payload():
    session = DummySession([_reply("  {\"assignments\": []}  ")])
    client, _ = _client(session, api_key="secret")

    text = client.complete([{"role": "user", "content": "hi"}], temperature=0.1)

    assert text == '{"assignments": []}'
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "http://localhost:11434/v1/chat/completions"
    assert kwargs["json"]["model"] == "test-model"
    assert kwargs["json"]["temperature"] == 0.1
    assert kwargs["json"]["stream"] is False
    assert kwargs["headers"]["Authorization"] == "Bearer secret"


def test_complete_retries_server_errors_with_backoff():
    session = DummySession(
        [
            DummyResponse(status_code=503, text="busy"),
            requests.ConnectionError("refused"),
            _reply("ok"),
        ]
    )
    client, sleeps = _client(session)
    assert client.complete([{"role": "user", "content": "hi"}]) == "ok"
    assert sleeps == [0.5, 1.0]
    assert len(session.calls) == 3


def test_complete_gives_up_after_retry_budget():
    session = DummySession([requests.Timeout("slow")] * 3)
    client, sleeps = _client(session)
    with pytest.raises(LLMClientError):
        client.complete([{"role": "user", "content": "hi"}])
    assert len(session.calls) == 3
    assert len(sleeps) == 2


def test_client_errors_are_not_retried():
    session = DummySession([DummyResponse(status_code=400, text="bad request")])
    client, sleeps = _client(session)
    with pytest.raises(LLMClientError) as excinfo:
        client.complete([{"role": "user", "content": "hi"}])
    assert excinfo.value.status_code == 400
    assert sleeps == []


def test_extract_json_variants():
    assert strip_code_fences("```json\n{\"a\": 1}\n```") == '{"a": 1}'
    assert extract_json("Here you go: {\"a\": 1} thanks") == {"a": 1}
    assert extract_json("") == {}
    with pytest.raises(ValueError):
        extract_json("no json here")
