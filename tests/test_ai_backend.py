"""Tests for AI backends, the per-merchant client cache and the circuit breaker."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY
from unittest.mock import AsyncMock, MagicMock, patch

from toolbridge.adapters.ai_backend import (
    AIBackend,
    AIClientCache,
    GeminiCompletionClient,
    OpenAICompletionClient,
    build_ai_client,
)
from toolbridge.adapters.template_store import InMemoryTemplateStore
from toolbridge.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from toolbridge.infra.config import config
from toolbridge.infra.error_handler import (
    APIError,
    AuthError,
    ErrorCategory,
    NetworkError,
    RateLimitError,
    wrap_llm_error,
)
from toolbridge.models.template import AIConfig
from toolbridge.services.response_normalizer import NormalizationContext, ResponseNormalizer


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class TestBuildAIClient:
    """Test backend selection from merchant config and environment defaults."""

    def test_merchant_config_wins(self, monkeypatch):
        monkeypatch.setattr(config, "AI_NORMALIZATION_ENABLED", True)
        ai_config = AIConfig(merchant_id="m-1", provider="openai", api_key="sk-merchant", model="gpt-4o")

        backend = build_ai_client(ai_config)

        assert isinstance(backend, OpenAICompletionClient)
        assert backend.api_key == "sk-merchant"
        assert backend.model == "gpt-4o"

    def test_env_reference_resolved(self, monkeypatch):
        monkeypatch.setattr(config, "AI_NORMALIZATION_ENABLED", True)
        monkeypatch.setenv("GLOW_GEMINI_KEY", "g-secret")
        ai_config = AIConfig(merchant_id="m-1", provider="gemini", api_key="env://GLOW_GEMINI_KEY")

        backend = build_ai_client(ai_config)

        assert isinstance(backend, GeminiCompletionClient)
        assert backend.api_key == "g-secret"
        assert backend.model == config.GEMINI_MODEL

    def test_inactive_config_falls_back_to_default(self, monkeypatch):
        monkeypatch.setattr(config, "AI_NORMALIZATION_ENABLED", True)
        monkeypatch.setattr(config, "DEFAULT_AI_PROVIDER", "gemini")
        monkeypatch.setattr(config, "GEMINI_API_KEY", "default-key")
        ai_config = AIConfig(merchant_id="m-1", provider="openai", api_key="sk", is_active=False)

        backend = build_ai_client(ai_config)

        assert isinstance(backend, GeminiCompletionClient)
        assert backend.api_key == "default-key"

    def test_no_usable_backend(self, monkeypatch):
        monkeypatch.setattr(config, "AI_NORMALIZATION_ENABLED", True)
        monkeypatch.setattr(config, "DEFAULT_AI_PROVIDER", "gemini")
        monkeypatch.setattr(config, "GEMINI_API_KEY", None)

        assert build_ai_client(AIConfig(merchant_id="m-1", provider="claude", api_key="x")) is None

    def test_disabled(self, monkeypatch):
        monkeypatch.setattr(config, "AI_NORMALIZATION_ENABLED", False)

        assert build_ai_client(AIConfig(merchant_id="m-1", provider="openai", api_key="sk")) is None


class TestAIClientCache:
    """Test lazy per-merchant client caching."""

    def test_built_once(self):
        store = InMemoryTemplateStore(ai_configs=[{"merchantId": "m-1", "provider": "openai", "apiKey": "sk"}])
        factory = MagicMock(return_value=None)
        cache = AIClientCache(store, factory=factory)

        assert cache.get("m-1") is None
        assert cache.get("m-1") is None

        factory.assert_called_once()
        assert factory.call_args[0][0].provider == "openai"

    def test_invalidate_rebuilds(self):
        factory = MagicMock(return_value=None)
        cache = AIClientCache(InMemoryTemplateStore(), factory=factory)
        cache.get("m-1")

        assert cache.invalidate("m-1") is True
        assert cache.invalidate("m-1") is False

        cache.get("m-1")
        assert factory.call_count == 2

    def test_clear(self):
        factory = MagicMock(return_value=None)
        cache = AIClientCache(InMemoryTemplateStore(), factory=factory)
        cache.get("m-1")
        cache.get("m-2")

        cache.clear()

        assert cache.invalidate("m-1") is False


class TestGeminiCompletionClient:
    """Test the Gemini REST backend."""

    @pytest.mark.asyncio
    async def test_complete(self, http_client_mock):
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()
        mock_response.json.return_value = {
            "candidates": [{"content": {"parts": [{"text": '{"products": '}, {"text": "[]}"}]}}]
        }
        mock_client_class, client = http_client_mock(response=mock_response)
        with patch("httpx.AsyncClient", mock_client_class):
            text = await GeminiCompletionClient("g-key", "gemini-2.5-pro").complete("normalize this")

        assert text == '{"products": []}'
        url = client.post.call_args[0][0]
        assert url.endswith("/models/gemini-2.5-pro:generateContent")
        assert client.post.call_args[1]["headers"]["x-goog-api-key"] == "g-key"

    @pytest.mark.asyncio
    async def test_empty_candidates_raise(self, http_client_mock):
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()
        mock_response.json.return_value = {"candidates": []}
        mock_client_class, _ = http_client_mock(response=mock_response)
        with patch("httpx.AsyncClient", mock_client_class):
            with pytest.raises(NetworkError):
                await GeminiCompletionClient("g-key", "gemini-2.5-pro").complete("normalize this")


class TestOpenAICompletionClient:
    """Test the OpenAI SDK backend."""

    @pytest.mark.asyncio
    async def test_complete(self):
        backend = OpenAICompletionClient("sk", "gpt-4o-mini", temperature=0.2, max_output_tokens=512)
        message = MagicMock()
        message.content = '{"products": []}'
        response = MagicMock()
        response.choices = [MagicMock(message=message)]
        backend._client = MagicMock()
        backend._client.chat.completions.create = AsyncMock(return_value=response)

        assert await backend.complete("prompt") == '{"products": []}'

        kwargs = backend._client.chat.completions.create.call_args[1]
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 512
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]


class TestCircuitBreaker:
    """Test breaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test-open", failure_threshold=2, recovery_timeout=60, clock=clock)
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call_async(failing)

        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call_async(failing)
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_then_closed(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test-recover", failure_threshold=1, recovery_timeout=60, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call_async(AsyncMock(side_effect=RuntimeError("boom")))

        clock.advance(61)
        ok = AsyncMock(return_value="ok")

        assert await breaker.call_async(ok) == "ok"
        assert breaker.state is CircuitState.HALF_OPEN
        assert await breaker.call_async(ok) == "ok"
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test-reopen", failure_threshold=1, recovery_timeout=60, clock=clock)
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await breaker.call_async(failing)

        clock.advance(61)
        with pytest.raises(RuntimeError):
            await breaker.call_async(failing)

        assert breaker.state is CircuitState.OPEN


class TestErrorWrapping:
    """Test AI error wrapping into categorized errors."""

    def test_rate_limit(self):
        error = Exception("Too Many Requests")
        error.response = MagicMock(status_code=429)

        wrapped = wrap_llm_error(error, "openai")

        assert isinstance(wrapped, RateLimitError)
        assert wrapped.category is ErrorCategory.RATE_LIMIT

    def test_auth(self):
        error = Exception("bad key")
        error.status_code = 401

        assert isinstance(wrap_llm_error(error, "gemini"), AuthError)

    def test_server_error(self):
        error = Exception("upstream")
        error.status_code = 503

        wrapped = wrap_llm_error(error, "gemini")

        assert isinstance(wrapped, APIError)
        assert wrapped.upstream_status == 503
        assert str(wrapped) == "gemini server error (503)"

    def test_unknown_defaults_to_network(self):
        assert isinstance(wrap_llm_error(ValueError("weird"), "openai"), NetworkError)


class HangingBackend(AIBackend):
    provider = "hanging"

    async def _complete(self, prompt):
        await asyncio.sleep(5)
        return "[]"


class RateLimitedBackend(AIBackend):
    provider = "limited"

    async def _complete(self, prompt):
        error = Exception("quota")
        error.status_code = 429
        raise error


def ai_calls(provider, model, status):
    return REGISTRY.get_sample_value(
        "ai_backend_calls_total", {"provider": provider, "model": model, "status": status}
    ) or 0


class TestCompletionAccounting:
    """Test that completions feed the breaker and the call metrics."""

    @pytest.mark.asyncio
    async def test_normalization_timeout_counts_as_failure(self):
        breaker = CircuitBreaker("test-hanging", failure_threshold=2, recovery_timeout=60)
        backend = HangingBackend("key", "slow-model")
        cache = AIClientCache(InMemoryTemplateStore(), factory=lambda ai_config: backend)
        normalizer = ResponseNormalizer(cache, ai_timeout=0.05, default_currency="₹")
        context = NormalizationContext(merchant_id="m-1", merchant_name="Glow")
        raw = {"success": True, "data": {"items": [{"name": "Red Lipstick", "price": 499}]}}

        with patch("toolbridge.adapters.ai_backend.get_circuit_breaker", return_value=breaker):
            for _ in range(2):
                result = await normalizer.normalize("search", raw, context)
                assert result.source == "heuristic"
                assert any("timed out" in reason for reason in result.degraded)

        assert breaker.state is CircuitState.OPEN
        assert ai_calls("hanging", "slow-model", "timeout") == 2
        assert ai_calls("hanging", "slow-model", "success") == 0

    @pytest.mark.asyncio
    async def test_open_breaker_skips_backend(self):
        breaker = CircuitBreaker("test-skip", failure_threshold=1, recovery_timeout=60)
        backend = HangingBackend("key", "skip-model")

        with patch("toolbridge.adapters.ai_backend.get_circuit_breaker", return_value=breaker):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(backend.complete("prompt"), timeout=0.05)
            with pytest.raises(NetworkError):
                await asyncio.wait_for(backend.complete("prompt"), timeout=1)

        assert ai_calls("hanging", "skip-model", "network") == 1

    @pytest.mark.asyncio
    async def test_error_category_labels_metric(self):
        breaker = CircuitBreaker("test-limited", failure_threshold=5, recovery_timeout=60)
        backend = RateLimitedBackend("key", "limited-model")

        with patch("toolbridge.adapters.ai_backend.get_circuit_breaker", return_value=breaker):
            with pytest.raises(RateLimitError):
                await backend.complete("prompt")

        assert ai_calls("limited", "limited-model", "rate_limit") == 1
        assert breaker.failure_count == 1
