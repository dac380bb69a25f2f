"""
LLM Gateway
------------
Provider-agnostic entry point for text generation:

    prompt
      |
      v
    credential check  (MissingCredential, before any network attempt)
      |
      v
    attempt 1 .. max_retries        (tenacity AsyncRetrying, sequential)
      |   provider.build_request -> httpx POST (cancelled after timeout)
      |   non-2xx / network error / timeout -> TransientProviderError
      |   wait retry_delay * 2^(k-1) before attempt k+1
      v
    provider.parse_response -> LLMResult(content, tokens_used, ...)

429 responses and bodies mentioning "quota" raise QuotaExceeded, a
TransientProviderError, so they are retried like any other non-2xx.  When
every attempt fails the call raises ExhaustedRetries wrapping the last error;
its `quota_exceeded` flag tells a spent quota apart from an outage.

`call_with_fallback()` never raises: any failure becomes a fixed apologetic
answer flagged fallback=True, so the orchestrator always has something to
show.  The `mock` provider bypasses transport and retries entirely.

Usage counters only move on a genuine provider success (never for mock or
fallback results).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx
from langsmith import traceable
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ragchat.config import LLMSettings
from ragchat.errors import (
    ConfigurationError,
    ExhaustedRetries,
    MissingCredential,
    ProviderResponseError,
    QuotaExceeded,
    TransientProviderError,
)
from ragchat.generation.prompts import CONNECTION_TEST_PROMPT, FALLBACK_RESPONSE
from ragchat.generation.providers import PROVIDERS, LLMProvider, get_provider
from ragchat.utils.helpers import isoformat, utc_now

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class LLMResult:
    """Outcome of one gateway call (provider-agnostic)."""

    content: str
    tokens_used: int
    model: str
    provider: str
    timestamp: str
    fallback: bool = False
    quota_exceeded: bool = False

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "tokens_used": self.tokens_used,
            "model": self.model,
            "provider": self.provider,
            "timestamp": self.timestamp,
            "fallback": self.fallback,
            "quota_exceeded": self.quota_exceeded,
        }


class LLMGateway:
    """
    Sends prompts to the active provider with timeout, retry and fallback.

    Args:
        settings:  LLM section of the service settings.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        sleep:     Coroutine used for backoff and the mock delay.
    """

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        settings = settings or LLMSettings()
        self._provider: LLMProvider = get_provider(settings.provider)
        self.api_keys: dict[str, str] = dict(settings.api_keys)
        self.models: dict[str, str] = dict(settings.models)
        self.temperature = settings.temperature
        self.max_tokens = settings.max_tokens
        self.timeout_ms = settings.timeout_ms
        self.max_retries = settings.max_retries
        self.retry_delay_ms = settings.retry_delay_ms
        self.mock_delay_ms = settings.mock_delay_ms

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._sleep = sleep

        self.total_tokens_used: int = 0
        self.request_count: int = 0

    # --- Provider selection ---------------------------------------------------

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    @property
    def provider_name(self) -> str:
        return self._provider.name

    @property
    def is_mock(self) -> bool:
        return self._provider.is_mock

    @property
    def current_model(self) -> str:
        return self.models.get(self.provider_name) or self._provider.default_model

    @property
    def current_api_key(self) -> str:
        if not self._provider.requires_credential:
            return "mock-key"
        return self.api_keys.get(self.provider_name, "")

    def update_config(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
    ) -> None:
        """Change settings at runtime. model/api_key apply to the (new) active provider."""
        if provider is not None:
            self._provider = get_provider(provider)
        if model:
            self.models[self.provider_name] = model
        if temperature is not None:
            self.temperature = max(0.0, min(2.0, float(temperature)))
        if max_tokens is not None:
            if max_tokens < 1:
                raise ConfigurationError(f"max_tokens must be >= 1 (got {max_tokens})")
            self.max_tokens = int(max_tokens)
        if api_key:
            self.api_keys[self.provider_name] = api_key
        logger.info(
            f"[LLMGateway] Configuration updated | provider={self.provider_name} "
            f"model={self.current_model} temperature={self.temperature}"
        )

    # --- Transport ------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self.timeout_ms / 1000),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason_phrase or response.text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        return response.reason_phrase or str(body)[:200]

    async def _attempt(self, provider: LLMProvider, prompt: str, api_key: str) -> LLMResult:
        """One POST to the provider. Raises TransientProviderError on retryable failure."""
        request = provider.build_request(
            prompt,
            model=self.current_model,
            api_key=api_key,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        client = self._get_client()

        try:
            response = await asyncio.wait_for(
                client.post(request.url, headers=request.headers, json=request.body),
                timeout=self.timeout_ms / 1000,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise TransientProviderError("Request timeout") from exc
        except httpx.HTTPError as exc:
            raise TransientProviderError(f"Network error: {exc}") from exc

        if not response.is_success:
            message = f"API Error: {response.status_code} - {self._error_detail(response)}"
            if response.status_code == 429 or "quota" in message.lower():
                raise QuotaExceeded(message, response.status_code)
            raise TransientProviderError(message, response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderResponseError(f"{provider.name} returned non-JSON body") from exc

        content, tokens = provider.parse_response(data)
        self.total_tokens_used += tokens
        self.request_count += 1

        return LLMResult(
            content=content,
            tokens_used=tokens,
            model=self.current_model,
            provider=provider.name,
            timestamp=isoformat(utc_now()),
        )

    # --- Public API -----------------------------------------------------------

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"[LLMGateway] Attempt {retry_state.attempt_number} failed: {exc} | "
            f"retrying in {delay * 1000:.0f}ms"
        )

    @traceable(name="llm_call", run_type="llm")
    async def call(self, prompt: str) -> LLMResult:
        """
        Send the prompt to the active provider.

        Raises:
            MissingCredential: no API key for the active provider.
            ProviderResponseError: response body did not match the provider shape.
            ExhaustedRetries: every attempt failed with a transient error
                (`quota_exceeded` is set when the last one was a 429/quota answer).
        """
        provider = self._provider

        if provider.is_mock:
            await self._sleep(self.mock_delay_ms / 1000)
            logger.debug("[LLMGateway] Using mock response")
            return LLMResult(
                content=provider.respond(prompt),
                tokens_used=0,
                model=self.current_model,
                provider=provider.name,
                timestamp=isoformat(utc_now()),
            )

        api_key = self.current_api_key
        if not api_key:
            raise MissingCredential(provider.name)

        logger.info(f"[LLMGateway] Calling LLM API ({provider.name}/{self.current_model})...")

        attempt_number = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=self.retry_delay_ms / 1000, exp_base=2),
                retry=retry_if_exception_type(TransientProviderError),
                sleep=self._sleep,
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    result = await self._attempt(provider, prompt, api_key)
        except TransientProviderError as exc:
            logger.error(f"[LLMGateway] Attempt {attempt_number} failed: {exc}")
            raise ExhaustedRetries(attempt_number, exc) from exc

        logger.info(f"[LLMGateway] Done | {result.tokens_used} tokens | attempt {attempt_number}")
        return result

    async def call_with_fallback(self, prompt: str) -> LLMResult:
        """Like call(), but any failure becomes the fixed fallback answer."""
        try:
            return await self.call(prompt)
        except Exception as exc:
            quota = isinstance(exc, ExhaustedRetries) and exc.quota_exceeded
            logger.error(f"[LLMGateway] Using fallback response due to error: {exc}")
            return LLMResult(
                content=FALLBACK_RESPONSE,
                tokens_used=0,
                model="fallback-response",
                provider="fallback",
                timestamp=isoformat(utc_now()),
                fallback=True,
                quota_exceeded=quota,
            )

    async def test_connection(self) -> dict:
        """Probe the active provider; never raises."""
        if not self.current_api_key:
            return {
                "success": False,
                "message": "No API key provided",
                "provider": self.provider_name,
            }
        try:
            result = await self.call(CONNECTION_TEST_PROMPT)
        except ExhaustedRetries as exc:
            if exc.quota_exceeded:
                return {
                    "success": False,
                    "message": "API quota exceeded. System will use fallback responses.",
                    "provider": self.provider_name,
                    "quota_exceeded": True,
                }
            return {
                "success": False,
                "message": str(exc),
                "provider": self.provider_name,
                "error": str(exc),
            }
        except Exception as exc:
            return {
                "success": False,
                "message": str(exc),
                "provider": self.provider_name,
                "error": str(exc),
            }
        return {
            "success": True,
            "message": "Connection successful",
            "provider": self.provider_name,
            "model": self.current_model,
            "response": result.content[:100],
        }

    # --- Usage ----------------------------------------------------------------

    def get_usage_stats(self) -> dict:
        return {
            "total_tokens_used": self.total_tokens_used,
            "request_count": self.request_count,
            "average_tokens_per_request": (
                round(self.total_tokens_used / self.request_count) if self.request_count else 0
            ),
            "provider": self.provider_name,
            "model": self.current_model,
            "temperature": self.temperature,
            "available_providers": sorted(PROVIDERS),
        }

    def reset_usage_stats(self) -> None:
        self.total_tokens_used = 0
        self.request_count = 0
        logger.info("[LLMGateway] Usage statistics reset")
