"""JSON-RPC 2.0 handling of the MCP methods for one merchant."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from toolbridge.adapters.template_store import TemplateStore
from toolbridge.infra.config import config
from toolbridge.models.template import Merchant
from toolbridge.services.tool_call_service import ToolCallService
from toolbridge.services.tool_registry import list_merchant_tools

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_VENDOR = "Toolbridge"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

CAPABILITIES = {
    "tools": {"listChanged": True},
    "prompts": {"listChanged": False},
    "resources": {"subscribe": False, "listChanged": False},
}


def merchant_endpoints(merchant_id: str) -> Dict[str, str]:
    base = f"/api/mcp/merchants/{merchant_id}"
    return {
        "stream": f"{base}/stream",
        "rpc": f"{base}/rpc",
        "tools": f"{base}/tools",
        "info": f"{base}/info",
        "execute": f"{base}/tools/{{toolName}}",
    }


def _response(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "result": result, "id": request_id}


def jsonrpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "error": {"code": code, "message": message}, "id": request_id}


def _text_content(text: str) -> List[Dict[str, str]]:
    return [{"type": "text", "text": text}]


class MCPProtocolServer:
    """
    Dispatches MCP requests (initialize, tools/list, tools/call, ping) for a
    merchant. Tool definitions are derived on every request, so template edits
    are visible without a restart.
    """

    def __init__(self, store: TemplateStore, tool_calls: ToolCallService, version: str = "1.0.0"):
        self.store = store
        self.tool_calls = tool_calls
        self.version = version

    def server_name(self, merchant: Merchant) -> str:
        return f"{merchant.label} MCP Server"

    def initialize(self, merchant_id: str) -> Dict[str, Any]:
        merchant, tools = list_merchant_tools(self.store, merchant_id)
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": CAPABILITIES,
            "serverInfo": {
                "name": self.server_name(merchant),
                "version": self.version,
                "vendor": SERVER_VENDOR,
                "description": f"Dynamic MCP server for {merchant.name}",
                "metadata": {
                    "merchantId": merchant.id,
                    "merchantSlug": merchant.slug,
                    "toolsCount": len(tools),
                },
            },
        }

    def tools_list(self, merchant_id: str) -> Dict[str, Any]:
        _, tools = list_merchant_tools(self.store, merchant_id)
        return {"tools": [tool.to_protocol() for tool in tools]}

    async def tools_call(self, merchant_id: str, tool_name: Any, arguments: Any) -> Dict[str, Any]:
        if not isinstance(tool_name, str) or not tool_name:
            return {"content": _text_content("Error executing tool: tool name is required"), "isError": True}
        if not isinstance(arguments, dict):
            arguments = {}

        result, normalized = await self.tool_calls.call_and_normalize(merchant_id, tool_name, arguments)
        if not result.success:
            return {"content": _text_content(f"Error executing tool: {result.error}"), "isError": True}

        response = {
            "content": _text_content(json.dumps(result.data, indent=2, ensure_ascii=False, default=str)),
            "isError": False,
        }
        if normalized is not None:
            response["structuredContent"] = normalized.to_wire()
        return response

    def ping(self) -> Dict[str, Any]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    def server_metadata(self, merchant_id: str) -> Dict[str, Any]:
        """Connection metadata of the merchant's server, for the info endpoint."""
        merchant, tools = list_merchant_tools(self.store, merchant_id)
        return {
            "type": "mcp-server",
            "protocol": "http-sse",
            "name": self.server_name(merchant),
            "version": self.version,
            "merchant": {
                "id": merchant.id,
                "name": merchant.name,
                "slug": merchant.slug,
                "displayName": merchant.display_name,
            },
            "endpoints": merchant_endpoints(merchant.id),
            "capabilities": {"tools": True, "streaming": True, "jsonRpc": True},
            "tools": {
                "count": len(tools),
                "available": [tool.name for tool in tools],
            },
        }

    def list_servers(self) -> List[Dict[str, Any]]:
        """One MCP server per merchant."""
        servers = []
        for merchant in self.store.list_merchants():
            endpoint = merchant_endpoints(merchant.id)["stream"]
            servers.append({
                "merchantId": merchant.id,
                "merchantName": merchant.name,
                "merchantSlug": merchant.slug,
                "displayName": merchant.display_name,
                "mcpEndpoint": endpoint,
                "mcpUrl": f"{config.PUBLIC_BASE_URL.rstrip('/')}{endpoint}",
            })
        return servers

    async def handle(self, merchant_id: str, request: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one JSON-RPC request.

        Returns the response envelope, or None for a notification (a
        ``notifications/*`` method sent without an id), which gets no reply.
        Never raises.
        """
        if not isinstance(request, dict):
            return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request: expected a JSON object")

        request_id = request.get("id")
        method = request.get("method")
        if not isinstance(method, str) or not method:
            return jsonrpc_error(request_id, INVALID_REQUEST, "Invalid Request: method must be a non-empty string")

        params = request.get("params")
        if not isinstance(params, dict):
            params = {}

        if method.startswith("notifications/") and "id" not in request:
            logger.debug("Notification received", extra={"merchant_id": merchant_id, "method": method})
            return None

        try:
            if method == "initialize":
                result = self.initialize(merchant_id)
            elif method == "tools/list":
                result = self.tools_list(merchant_id)
            elif method == "tools/call":
                result = await self.tools_call(merchant_id, params.get("name"), params.get("arguments") or {})
            elif method == "ping":
                result = self.ping()
            else:
                return jsonrpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        except Exception as e:
            logger.warning(
                "MCP method failed",
                extra={"merchant_id": merchant_id, "method": method, "error": str(e)},
                exc_info=not hasattr(e, "status_code"),
            )
            return jsonrpc_error(request_id, INTERNAL_ERROR, str(e) or type(e).__name__)

        return _response(request_id, result)
