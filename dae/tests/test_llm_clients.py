"""Tests for LLM client backends (no network)."""

import pytest

from dae.core.llm_clients import (
    GeminiClient,
    LLMAPIError,
    MockLLMClient,
    OllamaClient,
    OpenAICompatibleClient,
    create_client,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


class FakeSession:
    """Records posts and replays a single canned response."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers or {}, "json": json})
        return self.response


# ── Mock client ──────────────────────────────────────────────────────────────


def test_mock_client_deterministic():
    client = MockLLMClient()
    r1 = client.complete("Hello")
    r2 = client.complete("Hello")
    assert r1 == r2
    assert isinstance(r1, str)
    assert len(r1.split()) >= 5


def test_mock_client_context_changes_reply():
    client = MockLLMClient()
    r1 = client.complete("Hello")
    r2 = client.complete("Hello", messages=[{"role": "user", "content": "earlier"}])
    assert r1 != r2


def test_mock_client_scripted_replies_and_log():
    client = MockLLMClient(replies=["first", "second"])
    assert client.complete("a", system_prompt="sys") == "first"
    assert client.complete("b") == "second"
    assert client.complete("c") != "second"
    assert len(client.call_log) == 3
    assert client.call_log[0]["system_prompt"] == "sys"
    assert client.call_log[1]["prompt"] == "b"


# ── HTTP backends ────────────────────────────────────────────────────────────


def test_openai_request_shape():
    session = FakeSession(FakeResponse(payload={
        "choices": [{"message": {"content": "answer"}}],
    }))
    client = OpenAICompatibleClient("sk-secret-key", model="gpt-4o", session=session)

    reply = client.complete(
        "now", system_prompt="SYS",
        messages=[{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}],
        max_tokens=99,
    )

    assert reply == "answer"
    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-secret-key"
    assert "sk-secret-key" not in call["url"]
    body = call["json"]
    assert body["max_tokens"] == 99
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
    assert body["messages"][-1]["content"] == "now"


def test_grok_endpoint():
    session = FakeSession(FakeResponse(payload={"choices": []}))
    client = OpenAICompatibleClient("k" * 10, model="grok-3", provider="grok", session=session)
    assert client.complete("x") == ""
    assert session.calls[0]["url"] == "https://api.x.ai/v1/chat/completions"


def test_unknown_chat_provider():
    with pytest.raises(ValueError):
        OpenAICompatibleClient("k", provider="nope")


def test_error_body_redacts_key():
    session = FakeSession(FakeResponse(401, text="bad key sk-secret-key rejected"))
    client = OpenAICompatibleClient("sk-secret-key", session=session)

    with pytest.raises(LLMAPIError) as excinfo:
        client.complete("x")

    assert excinfo.value.status == 401
    assert "sk-secret-key" not in str(excinfo.value)
    assert "[REDACTED]" in str(excinfo.value)


def test_gemini_key_in_header_not_url():
    session = FakeSession(FakeResponse(payload={
        "candidates": [{"content": {"parts": [{"text": "gemini says"}]}}],
    }))
    client = GeminiClient("gm-key-123", session=session)

    reply = client.complete("hi", messages=[{"role": "assistant", "content": "before"}])

    assert reply == "gemini says"
    call = session.calls[0]
    assert "gm-key-123" not in call["url"]
    assert call["headers"]["x-goog-api-key"] == "gm-key-123"
    assert [c["role"] for c in call["json"]["contents"]] == ["model", "user"]


def test_ollama_chat():
    session = FakeSession(FakeResponse(payload={"message": {"content": "local"}}))
    client = OllamaClient(model="llama2", session=session)
    assert client.complete("hi", system_prompt="s") == "local"
    assert session.calls[0]["url"] == "http://localhost:11434/api/chat"
    assert session.calls[0]["json"]["stream"] is False


def test_ollama_unexpected_body_is_empty_reply():
    client = OllamaClient(session=FakeSession(FakeResponse(payload={})))
    assert client.complete("hi") == ""

    client = OllamaClient(session=FakeSession(FakeResponse(payload={"message": None})))
    assert client.complete("hi") == ""


# ── Factory ──────────────────────────────────────────────────────────────────


def test_create_client_providers():
    assert isinstance(create_client("mock"), MockLLMClient)
    assert isinstance(create_client("OpenAI", "k"), OpenAICompatibleClient)
    assert create_client("grok", "k").provider == "grok"
    assert create_client("gemini", "k").model == "gemini-2.0-flash"
    assert isinstance(create_client("ollama"), OllamaClient)


def test_create_client_model_override():
    assert create_client("openai", "k", model="gpt-4o-mini").model == "gpt-4o-mini"


def test_create_client_unknown():
    with pytest.raises(ValueError):
        create_client("nonexistent")
