# ═══════════════════════════════════════════════════════════════════════════════
# LLM CLIENT INTERFACES
# Pluggable text-generation backends
# ═══════════════════════════════════════════════════════════════════════════════

"""
The engine never talks to a model directly. The bridge hands a system prompt
(carrying the composed memory context) and a bounded conversation window to
whichever backend is configured.

ABC for the contract, concrete clients for the popular providers, and a mock
client for testing without API keys.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np
import requests

from dae.core.config import DEFAULT_MODELS


DEFAULT_MAX_TOKENS = 2000


class LLMAPIError(Exception):
    """Non-2xx response from a backend. Secrets are redacted from the message."""

    def __init__(self, provider: str, status: int, body: str, secrets: Optional[List[str]] = None):
        safe = body
        for secret in secrets or []:
            if secret:
                safe = safe.replace(secret, "[REDACTED]")
        self.provider = provider
        self.status = status
        super().__init__(f"{provider} API {status}: {safe[:200]}")


def _build_messages(prompt: str, messages: Optional[List[Dict[str, str]]]) -> List[Dict[str, str]]:
    """History + current prompt as a role/content list."""
    out = [{"role": m["role"], "content": m["content"]} for m in (messages or [])]
    out.append({"role": "user", "content": prompt})
    return out


class LLMClient(ABC):
    """Abstract LLM client interface."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        """
        Generate completion.

        Args:
            prompt: The current user message.
            system_prompt: System-level instructions (carries memory context).
            temperature: Sampling temperature.
            max_tokens: Maximum tokens in the response.
            messages: Optional conversation window as a list of
                {"role": "user"|"assistant", "content": "..."} dicts.
                prompt is appended as the final user message.
        """


class ClaudeClient(LLMClient):
    """
    Anthropic Claude client.

    Requires: pip install anthropic
    """

    def __init__(self, api_key: Optional[str] = None, model: str = "claude-sonnet-4-20250514"):
        try:
            from anthropic import Anthropic, APIError
        except ImportError as exc:
            raise ImportError(
                "anthropic package required: pip install anthropic"
            ) from exc

        self.client = Anthropic(api_key=api_key)
        self.model = model
        self._api_error = APIError

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=_build_messages(prompt, messages),
            )
        except self._api_error as e:
            raise LLMAPIError("claude", getattr(e, "status_code", 0) or 0, str(e)) from e
        if not response.content:
            return ""
        return response.content[0].text


class OpenAICompatibleClient(LLMClient):
    """
    Chat-completions backends (OpenAI, xAI Grok).

    The key travels in the Authorization header only, never in the URL.
    """

    ENDPOINTS = {
        "openai": "https://api.openai.com/v1/chat/completions",
        "grok": "https://api.x.ai/v1/chat/completions",
    }

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        provider: str = "openai",
        endpoint: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 120,
    ):
        if endpoint is None and provider not in self.ENDPOINTS:
            raise ValueError(f"Unknown chat-completions provider: {provider}")
        self.api_key = api_key
        self.model = model
        self.provider = provider
        self.endpoint = endpoint or self.ENDPOINTS[provider]
        self.session = session or requests.Session()
        self.timeout = timeout

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        chat_messages = []
        if system_prompt:
            chat_messages.append({"role": "system", "content": system_prompt})
        chat_messages.extend(_build_messages(prompt, messages))

        response = self.session.post(
            self.endpoint,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={
                "model": self.model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": chat_messages,
            },
            timeout=self.timeout,
        )
        if not response.ok:
            raise LLMAPIError(self.provider, response.status_code, response.text, [self.api_key])

        choices = response.json().get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class GeminiClient(LLMClient):
    """Google Gemini generateContent backend."""

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        session: Optional[requests.Session] = None,
        timeout: float = 120,
    ):
        self.api_key = api_key
        self.model = model
        self.session = session or requests.Session()
        self.timeout = timeout

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in _build_messages(prompt, messages)
        ]
        response = self.session.post(
            f"{self.BASE_URL}/{self.model}:generateContent",
            headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key},
            json={
                "system_instruction": {"parts": [{"text": system_prompt}]},
                "contents": contents,
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_tokens,
                },
            },
            timeout=self.timeout,
        )
        if not response.ok:
            raise LLMAPIError("gemini", response.status_code, response.text, [self.api_key])

        candidates = response.json().get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return parts[0].get("text", "") if parts else ""


class OllamaClient(LLMClient):
    """
    Local Ollama client.

    Requires: Ollama running at base_url.
    """

    def __init__(
        self,
        model: str = "llama2",
        base_url: str = "http://localhost:11434",
        session: Optional[requests.Session] = None,
        timeout: float = 120,
    ):
        self.model = model
        self.base_url = base_url
        self.session = session or requests.Session()
        self.timeout = timeout

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        chat_messages = []
        if system_prompt:
            chat_messages.append({"role": "system", "content": system_prompt})
        chat_messages.extend(_build_messages(prompt, messages))

        response = self.session.post(
            f"{self.base_url}/api/chat",
            json={
                "model": self.model,
                "messages": chat_messages,
                "stream": False,
                "options": {
                    "temperature": temperature,
                    "num_predict": max_tokens,
                },
            },
            timeout=self.timeout,
        )
        if not response.ok:
            raise LLMAPIError("ollama", response.status_code, response.text)
        message = response.json().get("message") or {}
        return message.get("content") or ""


class MockLLMClient(LLMClient):
    """
    Mock LLM client for testing without API keys.

    - complete() returns scripted replies in order when given, otherwise a
      deterministic response derived from the input hash.
    - All calls are recorded for test inspection.
    """

    def __init__(self, replies: Optional[List[str]] = None):
        self.replies = list(replies or [])
        self.call_log: list = []

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        self.call_log.append({
            "method": "complete",
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": messages,
        })

        if self.replies:
            return self.replies.pop(0)

        # Deterministic response based on prompt + conversation context
        hash_input = prompt
        if messages:
            hash_input = '|'.join(m['content'] for m in messages) + '|' + prompt
        seed = int(hashlib.sha256(hash_input.encode()).hexdigest()[:8], 16)
        word_count = max(5, min(max_tokens // 10, 50))
        rng = np.random.RandomState(seed % (2**31))

        words = [
            "The", "memory", "suggests", "that", "this", "thread",
            "could", "connect", "well", "given", "the", "earlier", "context",
            "and", "available", "evidence", "from", "multiple", "sources",
            "indicating", "a", "recurring", "pattern", "worth", "noting",
        ]
        return " ".join(words[rng.randint(len(words))] for _ in range(word_count))


# ── Factory ──────────────────────────────────────────────────────────────────


def create_client(
    provider: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> LLMClient:
    """Backend for a provider name. model=None uses the provider default."""
    provider = provider.lower()
    model = model or DEFAULT_MODELS.get(provider)

    if provider == "mock":
        return MockLLMClient()
    if provider == "claude":
        return ClaudeClient(api_key=api_key, model=model)
    if provider in OpenAICompatibleClient.ENDPOINTS:
        return OpenAICompatibleClient(api_key=api_key or "", model=model, provider=provider)
    if provider == "gemini":
        return GeminiClient(api_key=api_key or "", model=model)
    if provider == "ollama":
        return OllamaClient(model=model)
    raise ValueError(f"Unknown LLM provider: {provider}")
