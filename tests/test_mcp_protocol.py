"""Tests for the MCP JSON-RPC protocol server."""

import json

import pytest
from unittest.mock import AsyncMock

from toolbridge.adapters.ai_backend import AIClientCache
from toolbridge.models.tool import ToolCallResult
from toolbridge.services.mcp_protocol import MCPProtocolServer
from toolbridge.services.response_normalizer import ResponseNormalizer
from toolbridge.services.tool_call_service import ToolCallService

SEARCH_DATA = {"items": [{"name": "Red Lipstick", "price": 499}], "total": 30}


@pytest.fixture
def executor():
    mock = AsyncMock()
    mock.execute = AsyncMock(return_value=ToolCallResult.ok(SEARCH_DATA))
    return mock


@pytest.fixture
def server(store, executor):
    normalizer = ResponseNormalizer(AIClientCache(store, factory=lambda ai_config: None), default_currency="₹")
    return MCPProtocolServer(store, ToolCallService(store, executor=executor, normalizer=normalizer))


def rpc(method, params=None, request_id=1):
    request = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        request["params"] = params
    return request


class TestInitialize:
    """Test the initialize method."""

    @pytest.mark.asyncio
    async def test_initialize(self, server):
        response = await server.handle("m-1", rpc("initialize", request_id="init-1"))

        assert response["jsonrpc"] == "2.0"
        assert response["id"] == "init-1"
        result = response["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert result["capabilities"] == {
            "tools": {"listChanged": True},
            "prompts": {"listChanged": False},
            "resources": {"subscribe": False, "listChanged": False},
        }
        info = result["serverInfo"]
        assert info["name"] == "Glow MCP Server"
        assert info["version"] == "1.0.0"
        assert info["description"] == "Dynamic MCP server for Glow Cosmetics"
        assert info["metadata"] == {"merchantId": "m-1", "merchantSlug": "glow-cosmetics", "toolsCount": 1}

    @pytest.mark.asyncio
    async def test_unknown_merchant_is_internal_error(self, server):
        response = await server.handle("missing", rpc("initialize", request_id=7))

        assert response["error"] == {"code": -32603, "message": "Merchant not found"}
        assert response["id"] == 7


class TestToolsList:
    """Test the tools/list method."""

    @pytest.mark.asyncio
    async def test_tools_list(self, server):
        response = await server.handle("m-1", rpc("tools/list"))

        tools = response["result"]["tools"]
        assert len(tools) == 1
        assert set(tools[0]) == {"name", "description", "inputSchema"}
        assert tools[0]["name"] == "search"
        assert tools[0]["inputSchema"]["required"] == ["search_query"]

    @pytest.mark.asyncio
    async def test_empty_merchant(self, server):
        response = await server.handle("m-empty", rpc("tools/list"))

        assert response["result"] == {"tools": []}


class TestToolsCall:
    """Test the tools/call method."""

    @pytest.mark.asyncio
    async def test_success(self, server):
        response = await server.handle(
            "m-1", rpc("tools/call", {"name": "search", "arguments": {"search_query": "lipstick"}})
        )

        result = response["result"]
        assert result["isError"] is False
        assert result["content"] == [{"type": "text", "text": json.dumps(SEARCH_DATA, indent=2)}]
        structured = result["structuredContent"]
        assert structured["products"][0]["name"] == "Red Lipstick"
        assert structured["totalCount"] == 30
        assert structured["source"] == "heuristic"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server):
        response = await server.handle("m-empty", rpc("tools/call", {"name": "search", "arguments": {}}))

        result = response["result"]
        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error executing tool: Tool 'search' not found for merchant"
        assert "structuredContent" not in result

    @pytest.mark.asyncio
    async def test_upstream_failure(self, server, executor):
        executor.execute.return_value = ToolCallResult.failure("Request timed out after 30 seconds", status=504)

        response = await server.handle("m-1", rpc("tools/call", {"name": "search", "arguments": {}}))

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"] == "Error executing tool: Request timed out after 30 seconds"

    @pytest.mark.asyncio
    async def test_missing_arguments_default_to_empty(self, server, executor):
        await server.handle("m-1", rpc("tools/call", {"name": "search"}))

        request = executor.execute.call_args[0][0]
        assert request.body == {"q": "{{search_query}}", "limit": 10}


class TestDispatch:
    """Test JSON-RPC envelope handling."""

    @pytest.mark.asyncio
    async def test_ping(self, server):
        response = await server.handle("m-1", rpc("ping", request_id=3))

        assert response["result"]["status"] == "ok"
        assert "timestamp" in response["result"]
        assert response["id"] == 3

    @pytest.mark.asyncio
    async def test_unknown_method(self, server):
        response = await server.handle("m-1", rpc("resources/list", request_id=9))

        assert response == {
            "jsonrpc": "2.0",
            "error": {"code": -32601, "message": "Method not found: resources/list"},
            "id": 9,
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_body", [["not", "an", "object"], "text", {"id": 4}, {"method": 12, "id": 4}])
    async def test_invalid_request(self, server, request_body):
        response = await server.handle("m-1", request_body)

        assert response["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_notification_gets_no_reply(self, server):
        response = await server.handle("m-1", {"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert response is None

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_internal_error(self, server, monkeypatch):
        def explode(merchant_id):
            raise RuntimeError("store offline")

        monkeypatch.setattr(server, "tools_list", explode)

        response = await server.handle("m-1", rpc("tools/list", request_id=5))

        assert response["error"] == {"code": -32603, "message": "store offline"}
        assert response["id"] == 5


class TestServerMetadata:
    """Test discovery metadata."""

    def test_server_metadata(self, server):
        metadata = server.server_metadata("m-1")

        assert metadata["endpoints"]["stream"] == "/api/mcp/merchants/m-1/stream"
        assert metadata["tools"] == {"count": 1, "available": ["search"]}

    def test_list_servers(self, server):
        servers = server.list_servers()

        assert [s["merchantId"] for s in servers] == ["m-empty", "m-1"]
        assert servers[1]["mcpUrl"].endswith("/api/mcp/merchants/m-1/stream")
