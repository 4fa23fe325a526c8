"""API tests for the MCP servers router and health endpoints."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from toolbridge.adapters.ai_backend import AIClientCache
from toolbridge.api.dependencies import get_ai_client_cache, get_protocol_server, get_template_store
from toolbridge.main import app
from toolbridge.models.tool import ToolCallResult
from toolbridge.services.mcp_protocol import MCPProtocolServer
from toolbridge.services.response_normalizer import ResponseNormalizer
from toolbridge.services.tool_call_service import ToolCallService

SEARCH_DATA = {"products": [{"title": "Red Lipstick", "price": {"effective": {"min": 499}, "marked": {"min": 699}}}]}


@pytest.fixture
def executor():
    mock = AsyncMock()
    mock.execute = AsyncMock(return_value=ToolCallResult.ok(SEARCH_DATA))
    return mock


@pytest.fixture
def ai_clients(store):
    return AIClientCache(store, factory=lambda ai_config: None)


@pytest.fixture
def client(store, executor, ai_clients):
    normalizer = ResponseNormalizer(ai_clients, default_currency="₹")
    server = MCPProtocolServer(store, ToolCallService(store, executor=executor, normalizer=normalizer))

    app.dependency_overrides[get_protocol_server] = lambda: server
    app.dependency_overrides[get_ai_client_cache] = lambda: ai_clients
    app.dependency_overrides[get_template_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestDiscovery:
    """Test server and tool discovery endpoints."""

    def test_list_servers(self, client):
        response = client.get("/api/mcp/servers")

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert {s["merchantSlug"] for s in body["servers"]} == {"glow-cosmetics", "empty-shop"}

    def test_server_info(self, client):
        response = client.get("/api/mcp/merchants/m-1/info")

        assert response.status_code == 200
        server = response.json()["server"]
        assert server["name"] == "Glow MCP Server"
        assert server["endpoints"]["rpc"] == "/api/mcp/merchants/m-1/rpc"

    def test_list_tools(self, client):
        response = client.get("/api/mcp/merchants/m-1/tools")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["merchant"] == {"id": "m-1", "name": "Glow Cosmetics", "slug": "glow-cosmetics"}
        assert body["count"] == 1
        assert body["tools"][0]["name"] == "search"
        assert "search_query" in body["tools"][0]["inputSchema"]["properties"]

    def test_list_tools_unknown_merchant(self, client):
        response = client.get("/api/mcp/merchants/missing/tools")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Merchant not found"}

    def test_info_unknown_merchant(self, client):
        assert client.get("/api/mcp/merchants/missing/info").status_code == 404


class TestToolCall:
    """Test the direct tool call endpoint."""

    def test_call_tool(self, client, executor):
        response = client.post("/api/mcp/merchants/m-1/tools/search", json={"args": {"search_query": "lipstick"}})

        assert response.status_code == 200
        body = response.json()
        assert body["jsonrpc"] == "2.0"
        result = body["result"]
        assert result["success"] is True
        assert result["status"] == 200
        assert result["data"] == SEARCH_DATA
        product = result["normalized"]["products"][0]
        assert product == {
            "id": "item-1",
            "name": "Red Lipstick",
            "price": 499,
            "originalPrice": 699,
            "currency": "₹",
            "discount": "29% off",
        }
        assert executor.execute.call_args[0][0].body == {"q": "lipstick", "limit": 10}

    def test_call_tool_without_body_args(self, client, executor):
        response = client.post("/api/mcp/merchants/m-1/tools/search", json={})

        assert response.status_code == 200
        assert executor.execute.call_args[0][0].body == {"q": "{{search_query}}", "limit": 10}

    def test_unknown_tool(self, client):
        response = client.post("/api/mcp/merchants/m-1/tools/checkout", json={"args": {}})

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["success"] is False
        assert result["status"] == 404
        assert result["error"] == "Tool 'checkout' not found for merchant"
        assert result["normalized"] is None


class TestJsonRpc:
    """Test the JSON-RPC endpoint."""

    def test_tools_list(self, client):
        response = client.post(
            "/api/mcp/merchants/m-1/rpc",
            json={"jsonrpc": "2.0", "method": "tools/list", "id": 1},
        )

        assert response.status_code == 200
        assert response.json()["result"]["tools"][0]["name"] == "search"

    def test_tools_call(self, client):
        response = client.post(
            "/api/mcp/merchants/m-1/rpc",
            json={
                "jsonrpc": "2.0",
                "method": "tools/call",
                "params": {"name": "search", "arguments": {"search_query": "lipstick"}},
                "id": "call-1",
            },
        )

        body = response.json()
        assert body["id"] == "call-1"
        assert body["result"]["isError"] is False
        assert body["result"]["structuredContent"]["products"][0]["name"] == "Red Lipstick"

    def test_method_not_found_is_http_200(self, client):
        response = client.post("/api/mcp/merchants/m-1/rpc", json={"jsonrpc": "2.0", "method": "nope", "id": 2})

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    def test_parse_error(self, client):
        response = client.post(
            "/api/mcp/merchants/m-1/rpc",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32700

    def test_notification_accepted(self, client):
        response = client.post(
            "/api/mcp/merchants/m-1/rpc",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
        )

        assert response.status_code == 202


class TestStream:
    """Test the event stream endpoint."""

    def test_unknown_merchant_404(self, client):
        response = client.get("/api/mcp/merchants/missing/stream")

        assert response.status_code == 404
        assert response.json()["error"] == "Merchant not found"


class TestAIConfigInvalidation:
    """Test AI client cache invalidation."""

    def test_invalidate_cached_client(self, client, ai_clients):
        ai_clients.get("m-1")

        response = client.post("/api/mcp/merchants/m-1/ai-config/invalidate")

        assert response.status_code == 200
        assert response.json() == {"merchant_id": "m-1", "invalidated": True}

    def test_invalidate_without_cached_client(self, client):
        response = client.post("/api/mcp/merchants/m-1/ai-config/invalidate")

        assert response.json()["invalidated"] is False


class TestHealth:
    """Test health endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Request-ID" in response.headers

    def test_ready_with_in_memory_store(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_not_ready(self, client):
        failing = MagicMock()
        failing.ping.side_effect = RuntimeError("db down")
        app.dependency_overrides[get_template_store] = lambda: failing

        response = client.get("/health/ready")

        assert response.status_code == 503

    def test_metrics(self, client):
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
