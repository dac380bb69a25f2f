"""
LLM Provider Variants
----------------------
Each supported backend is one small class that knows two things:

  build_request(prompt, ...)  -> ProviderRequest(url, headers, body)
  parse_response(json_body)   -> (text content, total token count)

The gateway owns transport, timeout and retry; providers never touch the
network.  Adding a backend means adding one decorated class here -- nothing
else in the gateway changes.  There is no generic parser: a
response that does not match the provider's documented shape is a
ProviderResponseError.

The `mock` variant never reaches the network; the gateway short-circuits it
and answers from the keyword table in mock_responses.py.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from ragchat.errors import ConfigurationError, ProviderResponseError
from ragchat.generation.mock_responses import generate_mock_response


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any] = field(default_factory=dict)


PROVIDERS: dict[str, type["LLMProvider"]] = {}


def register_provider(cls: type["LLMProvider"]) -> type["LLMProvider"]:
    PROVIDERS[cls.name] = cls
    return cls


def get_provider(name: str) -> "LLMProvider":
    try:
        return PROVIDERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unsupported provider: {name!r}. Available: {sorted(PROVIDERS)}"
        ) from None


def _tokens(value: Any) -> int:
    """Token counts default to 0 when absent or not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


class LLMProvider:
    """Base class for a provider variant."""

    name: ClassVar[str] = ""
    default_model: ClassVar[str] = ""
    requires_credential: ClassVar[bool] = True
    is_mock: ClassVar[bool] = False

    def build_request(
        self,
        prompt: str,
        *,
        model: str,
        api_key: str,
        temperature: float,
        max_tokens: int,
    ) -> ProviderRequest:
        raise NotImplementedError

    def parse_response(self, data: dict[str, Any]) -> tuple[str, int]:
        try:
            return self._parse(data)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderResponseError(
                f"Unexpected {self.name} response shape: {exc!r}"
            ) from exc

    def _parse(self, data: dict[str, Any]) -> tuple[str, int]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (OpenAI, Mistral)
# ---------------------------------------------------------------------------

class _ChatCompletionsProvider(LLMProvider):
    endpoint: ClassVar[str] = ""

    def build_request(self, prompt, *, model, api_key, temperature, max_tokens) -> ProviderRequest:
        return ProviderRequest(
            url=self.endpoint,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            body={
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )

    def _parse(self, data):
        message = data["choices"][0]["message"]
        content = message.get("content") or ""
        tokens = _tokens((data.get("usage") or {}).get("total_tokens"))
        return content, tokens


@register_provider
class OpenAIProvider(_ChatCompletionsProvider):
    name = "openai"
    default_model = "gpt-3.5-turbo"
    endpoint = "https://api.openai.com/v1/chat/completions"


@register_provider
class MistralProvider(_ChatCompletionsProvider):
    name = "mistral"
    default_model = "mistral-tiny"
    endpoint = "https://api.mistral.ai/v1/chat/completions"


# ---------------------------------------------------------------------------
# Google Gemini
# ---------------------------------------------------------------------------

@register_provider
class GeminiProvider(LLMProvider):
    name = "gemini"
    default_model = "gemini-1.0-pro"
    base_url: ClassVar[str] = "https://generativelanguage.googleapis.com/v1beta/models"

    def build_request(self, prompt, *, model, api_key, temperature, max_tokens) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/{model}:generateContent?key={api_key}",
            headers={"Content-Type": "application/json"},
            body={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_tokens,
                },
            },
        )

    def _parse(self, data):
        parts = data["candidates"][0]["content"]["parts"]
        content = (parts[0].get("text") if parts else "") or ""
        tokens = _tokens((data.get("usageMetadata") or {}).get("totalTokenCount"))
        return content, tokens


# ---------------------------------------------------------------------------
# Anthropic Claude (Messages API)
# ---------------------------------------------------------------------------

@register_provider
class ClaudeProvider(LLMProvider):
    name = "claude"
    default_model = "claude-3-haiku-20240307"
    endpoint: ClassVar[str] = "https://api.anthropic.com/v1/messages"
    api_version: ClassVar[str] = "2023-06-01"

    def build_request(self, prompt, *, model, api_key, temperature, max_tokens) -> ProviderRequest:
        return ProviderRequest(
            url=self.endpoint,
            headers={
                "x-api-key": api_key,
                "Content-Type": "application/json",
                "anthropic-version": self.api_version,
            },
            body={
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

    def _parse(self, data):
        blocks = data["content"]
        content = (blocks[0].get("text") if blocks else "") or ""
        # Anthropic usage: input_tokens / output_tokens, each may be absent
        usage = data.get("usage") or {}
        tokens = _tokens(usage.get("input_tokens")) + _tokens(usage.get("output_tokens"))
        return content, tokens


# ---------------------------------------------------------------------------
# Mock (no network)
# ---------------------------------------------------------------------------

@register_provider
class MockProvider(LLMProvider):
    name = "mock"
    default_model = "mock-model"
    requires_credential = False
    is_mock = True

    def respond(self, prompt: str) -> str:
        return generate_mock_response(prompt)
