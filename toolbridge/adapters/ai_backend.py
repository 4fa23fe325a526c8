"""AI completion backends used for response normalization."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

import httpx
from openai import AsyncOpenAI

from toolbridge.adapters.template_store import TemplateStore
from toolbridge.infra.circuit_breaker import get_circuit_breaker
from toolbridge.infra.config import config
from toolbridge.infra.error_handler import wrap_llm_error
from toolbridge.infra.metrics import ai_call_duration, ai_calls_total
from toolbridge.infra.secrets import get_secret
from toolbridge.infra.timeout import LLM_CALL_TIMEOUT
from toolbridge.models.template import AIConfig

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class AIBackend(ABC):
    """Anything that can turn a prompt into text."""

    provider: str = ""

    def __init__(self, api_key: str, model: str, temperature: float = 0.1, max_output_tokens: int = 4096):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def complete(self, prompt: str) -> str:
        """Run one completion behind the provider's circuit breaker, with metrics."""
        breaker = get_circuit_breaker(self.provider)
        start = time.time()
        status = "success"
        try:
            return await breaker.call_async(self._complete, prompt)
        except asyncio.CancelledError:
            status = "timeout"
            raise
        except Exception as e:
            wrapped = wrap_llm_error(e, self.provider)
            status = wrapped.category.value
            raise wrapped from e
        finally:
            ai_calls_total.labels(provider=self.provider, model=self.model, status=status).inc()
            ai_call_duration.labels(provider=self.provider, model=self.model).observe(time.time() - start)

    @abstractmethod
    async def _complete(self, prompt: str) -> str:
        ...


class OpenAICompletionClient(AIBackend):
    """Chat completions through the OpenAI SDK."""

    provider = "openai"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=LLM_CALL_TIMEOUT)
        return self._client

    async def _complete(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=self.max_output_tokens,
        )
        if not response.choices:
            raise ValueError("No response from OpenAI")
        return response.choices[0].message.content or ""


class GeminiCompletionClient(AIBackend):
    """``generateContent`` over the Gemini REST API."""

    provider = "gemini"

    async def _complete(self, prompt: str) -> str:
        url = f"{GEMINI_API_BASE}/models/{self.model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

        async with httpx.AsyncClient(timeout=LLM_CALL_TIMEOUT) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            result = response.json()

        if not result.get("candidates"):
            raise ValueError("No response from Gemini")

        parts = result["candidates"][0].get("content", {}).get("parts", [])
        return "".join(part["text"] for part in parts if isinstance(part, dict) and "text" in part)


_BACKENDS = {
    "openai": OpenAICompletionClient,
    "gemini": GeminiCompletionClient,
}


def _default_settings() -> Optional[Dict[str, str]]:
    provider = (config.DEFAULT_AI_PROVIDER or "").lower()
    if provider == "openai" and config.OPENAI_API_KEY:
        return {"provider": "openai", "api_key": config.OPENAI_API_KEY, "model": config.OPENAI_MODEL}
    if provider == "gemini" and config.GEMINI_API_KEY:
        return {"provider": "gemini", "api_key": config.GEMINI_API_KEY, "model": config.GEMINI_MODEL}
    return None


def build_ai_client(ai_config: Optional[AIConfig]) -> Optional[AIBackend]:
    """
    Build the backend for a merchant.

    The merchant's active configuration wins; otherwise the service default
    from the environment is used. Returns None when neither is usable.
    """
    if not config.AI_NORMALIZATION_ENABLED:
        return None

    if ai_config is not None and ai_config.is_active:
        backend_cls = _BACKENDS.get(ai_config.provider.lower())
        api_key = get_secret(ai_config.api_key)
        if backend_cls is None:
            logger.warning(
                "Unsupported AI provider in merchant configuration",
                extra={"merchant_id": ai_config.merchant_id, "provider": ai_config.provider},
            )
        elif api_key:
            default_model = config.OPENAI_MODEL if backend_cls is OpenAICompletionClient else config.GEMINI_MODEL
            return backend_cls(
                api_key,
                ai_config.model or default_model,
                temperature=ai_config.temperature,
                max_output_tokens=ai_config.max_output_tokens,
            )

    defaults = _default_settings()
    if defaults is None:
        return None
    return _BACKENDS[defaults["provider"]](defaults["api_key"], defaults["model"])


class AIClientCache:
    """
    Per-merchant AI backend clients, built lazily on first use.

    A merchant without any usable configuration is cached as ``None`` so the
    store is not queried on every call. Whoever changes a merchant's AI
    configuration must call ``invalidate``.
    """

    def __init__(
        self,
        store: TemplateStore,
        factory: Callable[[Optional[AIConfig]], Optional[AIBackend]] = build_ai_client,
    ):
        self._store = store
        self._factory = factory
        self._clients: Dict[str, Optional[AIBackend]] = {}

    def get(self, merchant_id: str) -> Optional[AIBackend]:
        if merchant_id not in self._clients:
            ai_config = self._store.get_ai_config(merchant_id)
            self._clients[merchant_id] = self._factory(ai_config)
            logger.debug(
                "AI client resolved",
                extra={
                    "merchant_id": merchant_id,
                    "provider": getattr(self._clients[merchant_id], "provider", None),
                },
            )
        return self._clients[merchant_id]

    def invalidate(self, merchant_id: str) -> bool:
        """Drop the cached client; returns whether one was cached."""
        if merchant_id not in self._clients:
            return False
        del self._clients[merchant_id]
        logger.info("AI client invalidated", extra={"merchant_id": merchant_id})
        return True

    def clear(self) -> None:
        self._clients.clear()
