"""Pytest configuration and fixtures."""

import pytest
import os
from dotenv import load_dotenv
from unittest.mock import AsyncMock, MagicMock

# Load test environment variables
load_dotenv()

# Set test environment
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DEFAULT_CURRENCY_SYMBOL", "₹")

from toolbridge.adapters.ai_backend import AIBackend
from toolbridge.adapters.template_store import InMemoryTemplateStore


class FakeAIBackend(AIBackend):
    """Backend returning canned replies, recording every prompt."""

    provider = "fake"

    def __init__(self, reply="", error=None):
        super().__init__(api_key="test-key", model="fake-model")
        self.reply = reply
        self.error = error
        self.prompts = []

    async def complete(self, prompt: str) -> str:
        return await self._complete(prompt)

    async def _complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def merchant_data():
    return {
        "id": "m-1",
        "name": "Glow Cosmetics",
        "slug": "glow-cosmetics",
        "displayName": "Glow",
    }


@pytest.fixture
def search_template_data():
    return {
        "id": "t-search",
        "merchantId": "m-1",
        "toolType": "search",
        "method": "POST",
        "url": "https://api.glow.example/search",
        "body": {"q": "{{search_query}}", "limit": 10},
        "credentialId": "c-1",
    }


@pytest.fixture
def credential_data():
    return {
        "id": "c-1",
        "merchantId": "m-1",
        "authType": "bearer",
        "secret": "merchant-token",
    }


@pytest.fixture
def store(merchant_data, search_template_data, credential_data):
    """In-memory store with one merchant, one search tool and its credential."""
    return InMemoryTemplateStore(
        merchants=[merchant_data, {"id": "m-empty", "name": "Empty Shop", "slug": "empty-shop"}],
        templates=[search_template_data],
        credentials=[credential_data],
    )


@pytest.fixture
def http_client_mock():
    """
    Factory patching target for ``httpx.AsyncClient``.

    Returns ``(client_class_mock, client_mock)``; the client's ``request`` and
    ``post`` coroutines return ``response`` or raise ``side_effect``.
    """
    def build(response=None, side_effect=None):
        mock_client = AsyncMock()
        mock_client.request = AsyncMock(return_value=response, side_effect=side_effect)
        mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_class = MagicMock(return_value=mock_client)
        return mock_client_class, mock_client

    return build


@pytest.fixture
def fake_ai_backend():
    return FakeAIBackend
