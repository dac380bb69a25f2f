"""Unit tests for LLMGateway: transport, retry, quota, fallback."""

import asyncio

import httpx
import pytest

from ragchat.config import LLMSettings
from ragchat.errors import (
    ConfigurationError,
    ExhaustedRetries,
    MissingCredential,
    ProviderResponseError,
    QuotaExceeded,
)
from ragchat.generation.gateway import LLMGateway
from ragchat.generation.prompts import FALLBACK_RESPONSE
from tests.conftest import openai_ok


class TestCall:
    """Tests for a single gateway call."""

    async def test_success_updates_usage(self, make_gateway) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=openai_ok("Answer", 42))

        gateway = make_gateway(handler)
        result = await gateway.call("prompt text")

        assert result.content == "Answer"
        assert result.tokens_used == 42
        assert result.provider == "openai"
        assert result.model == "gpt-3.5-turbo"
        assert not result.fallback
        assert seen[0].headers["Authorization"] == "Bearer sk-test"
        assert gateway.get_usage_stats()["total_tokens_used"] == 42
        assert gateway.get_usage_stats()["request_count"] == 1

    async def test_missing_key_raises_before_any_request(self, make_gateway) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=openai_ok())

        gateway = make_gateway(handler, api_keys={})

        with pytest.raises(MissingCredential):
            await gateway.call("prompt")
        assert calls == []

    async def test_retries_with_exponential_backoff(self, make_gateway, fake_sleep) -> None:
        """Two 500s then success: waits 1s then 2s, three attempts total."""
        responses = [
            httpx.Response(500, json={"error": {"message": "boom"}}),
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json=openai_ok("Finally", 7)),
        ]

        def handler(request):
            return responses.pop(0)

        gateway = make_gateway(handler)
        result = await gateway.call("prompt")

        assert result.content == "Finally"
        assert fake_sleep.calls == [1.0, 2.0]
        assert gateway.request_count == 1

    async def test_exhausted_retries(self, make_gateway, fake_sleep) -> None:
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(500, json={"error": {"message": "still down"}})

        gateway = make_gateway(handler)

        with pytest.raises(ExhaustedRetries) as exc_info:
            await gateway.call("prompt")

        assert len(attempts) == 3
        assert exc_info.value.attempts == 3
        assert "still down" in str(exc_info.value)
        assert fake_sleep.calls == [1.0, 2.0]
        assert gateway.request_count == 0

    async def test_quota_is_retried_then_flagged(self, make_gateway, fake_sleep) -> None:
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(429, json={"error": {"message": "Rate limit"}})

        gateway = make_gateway(handler)

        with pytest.raises(ExhaustedRetries) as exc_info:
            await gateway.call("prompt")

        assert len(attempts) == 3
        assert fake_sleep.calls == [1.0, 2.0]
        assert exc_info.value.quota_exceeded
        assert isinstance(exc_info.value.last_error, QuotaExceeded)
        assert exc_info.value.last_error.status_code == 429

    async def test_quota_recovers_on_retry(self, make_gateway, fake_sleep) -> None:
        responses = [
            httpx.Response(429, json={"error": {"message": "Rate limit"}}),
            httpx.Response(200, json=openai_ok("Recovered", 9)),
        ]

        result = await make_gateway(lambda request: responses.pop(0)).call("prompt")

        assert result.content == "Recovered"
        assert fake_sleep.calls == [1.0]

    async def test_quota_message_detected_without_429(self, make_gateway, fake_sleep) -> None:
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "You exceeded your current quota"}})

        with pytest.raises(ExhaustedRetries) as exc_info:
            await make_gateway(handler).call("prompt")

        assert exc_info.value.quota_exceeded
        assert exc_info.value.last_error.status_code == 403

    async def test_network_error_is_retried(self, make_gateway, fake_sleep) -> None:
        state = {"n": 0}

        def handler(request):
            state["n"] += 1
            if state["n"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=openai_ok())

        result = await make_gateway(handler).call("prompt")

        assert result.tokens_used == 42
        assert fake_sleep.calls == [1.0]

    async def test_malformed_body_is_a_response_error(self, make_gateway) -> None:
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(ProviderResponseError):
            await make_gateway(handler).call("prompt")

    async def test_timeout_cancels_and_retries(self, fake_sleep) -> None:
        """A provider slower than timeout_ms counts as a transient failure."""

        class SlowTransport(httpx.AsyncBaseTransport):
            def __init__(self) -> None:
                self.calls = 0

            async def handle_async_request(self, request):
                self.calls += 1
                await asyncio.sleep(1)
                return httpx.Response(200, json=openai_ok())

        transport = SlowTransport()
        gateway = LLMGateway(
            LLMSettings(provider="openai", api_keys={"openai": "k"}, timeout_ms=10, max_retries=2),
            transport=transport,
            sleep=fake_sleep,
        )

        with pytest.raises(ExhaustedRetries, match="Request timeout"):
            await gateway.call("prompt")
        assert transport.calls == 2


class TestFallbackAndMock:
    """Tests for the never-raising paths."""

    async def test_fallback_on_exhausted_retries(self, make_gateway) -> None:
        gateway = make_gateway(lambda request: httpx.Response(500))

        result = await gateway.call_with_fallback("prompt")

        assert result.fallback
        assert result.content == FALLBACK_RESPONSE
        assert result.provider == "fallback"
        assert result.model == "fallback-response"
        assert result.tokens_used == 0
        assert not result.quota_exceeded
        assert gateway.get_usage_stats()["total_tokens_used"] == 0

    async def test_fallback_flags_quota(self, make_gateway) -> None:
        gateway = make_gateway(lambda request: httpx.Response(429))

        result = await gateway.call_with_fallback("prompt")

        assert result.fallback
        assert result.quota_exceeded

    async def test_fallback_on_missing_key(self, make_gateway) -> None:
        result = await make_gateway(None, api_keys={}).call_with_fallback("prompt")

        assert result.fallback

    async def test_mock_provider_skips_transport(self, make_gateway, fake_sleep) -> None:
        gateway = make_gateway(None, provider="mock", api_keys={}, mock_delay_ms=500)

        result = await gateway.call("hello")

        assert result.provider == "mock"
        assert result.model == "mock-model"
        assert result.tokens_used == 0
        assert result.content.startswith("Hello!")
        assert fake_sleep.calls == [0.5]
        assert gateway.current_api_key == "mock-key"
        assert gateway.request_count == 0


class TestConfiguration:
    """Tests for runtime reconfiguration and diagnostics."""

    def test_update_config_switches_provider_and_clamps(self, make_gateway) -> None:
        gateway = make_gateway(None)

        gateway.update_config(provider="claude", temperature=5.0, api_key="ck")

        assert gateway.provider_name == "claude"
        assert gateway.current_model == "claude-3-haiku-20240307"
        assert gateway.temperature == 2.0
        assert gateway.current_api_key == "ck"

    def test_update_config_rejects_unknown_provider(self, make_gateway) -> None:
        with pytest.raises(ConfigurationError):
            make_gateway(None).update_config(provider="nope")

    def test_reset_usage_stats(self, make_gateway) -> None:
        gateway = make_gateway(None)
        gateway.total_tokens_used, gateway.request_count = 100, 4

        assert gateway.get_usage_stats()["average_tokens_per_request"] == 25
        gateway.reset_usage_stats()
        assert gateway.get_usage_stats()["request_count"] == 0

    async def test_connection_without_key(self, make_gateway) -> None:
        result = await make_gateway(None, api_keys={}).test_connection()

        assert result == {"success": False, "message": "No API key provided", "provider": "openai"}

    async def test_connection_reports_quota(self, make_gateway) -> None:
        result = await make_gateway(lambda request: httpx.Response(429)).test_connection()

        assert not result["success"]
        assert result["quota_exceeded"]

    async def test_connection_success(self, make_gateway) -> None:
        gateway = make_gateway(lambda request: httpx.Response(200, json=openai_ok("Connection successful")))

        result = await gateway.test_connection()

        assert result["success"]
        assert result["response"] == "Connection successful"
