"""MCP servers API router: discovery, direct tool calls, JSON-RPC and event streams."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from toolbridge.adapters.ai_backend import AIClientCache
from toolbridge.api.dependencies import get_ai_client_cache, get_protocol_server
from toolbridge.api.models import (
    InvalidateResponse,
    ServerInfoResponse,
    ServerListResponse,
    ToolCallPayload,
    ToolCallRequest,
    ToolCallResponse,
    ToolListResponse,
)
from toolbridge.services.mcp_protocol import MCPProtocolServer, PARSE_ERROR, jsonrpc_error
from toolbridge.services.mcp_stream import SSE_HEADERS, MCPStreamSession
from toolbridge.services.tool_registry import list_merchant_tools

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mcp", tags=["MCP Servers"])


@router.get("/servers", response_model=ServerListResponse)
async def list_servers(server: MCPProtocolServer = Depends(get_protocol_server)):
    """List one MCP server per merchant, with its stream endpoint."""
    servers = server.list_servers()
    return ServerListResponse(servers=servers, count=len(servers))


@router.get("/merchants/{merchant_id}/info", response_model=ServerInfoResponse)
async def get_server_info(merchant_id: str, server: MCPProtocolServer = Depends(get_protocol_server)):
    """Server metadata: endpoints, capabilities and the names of the available tools."""
    return ServerInfoResponse(server=server.server_metadata(merchant_id))


@router.get("/merchants/{merchant_id}/tools", response_model=ToolListResponse)
async def list_tools(merchant_id: str, server: MCPProtocolServer = Depends(get_protocol_server)):
    """
    List the tools derived from the merchant's templates.

    Returns 404 for an unknown merchant.
    """
    merchant, tools = list_merchant_tools(server.store, merchant_id)
    return ToolListResponse(
        merchant={"id": merchant.id, "name": merchant.name, "slug": merchant.slug},
        tools=[tool.to_protocol() for tool in tools],
        count=len(tools),
    )


@router.post("/merchants/{merchant_id}/tools/{tool_name}", response_model=ToolCallResponse)
async def call_tool(
    merchant_id: str,
    tool_name: str,
    request: ToolCallRequest,
    server: MCPProtocolServer = Depends(get_protocol_server),
):
    """
    Execute a tool directly.

    Failures (unknown merchant or tool, upstream errors) are reported in the
    result envelope with ``success: false`` and an HTTP-style ``status``.

    **Example Request:**
    ```json
    {"args": {"search_query": "lipstick"}}
    ```
    """
    result, normalized = await server.tool_calls.call_and_normalize(merchant_id, tool_name, request.args)
    return ToolCallResponse(
        result=ToolCallPayload(
            success=result.success,
            data=result.data,
            status=result.status,
            error=result.error,
            normalized=normalized.to_wire() if normalized is not None else None,
        )
    )


@router.post("/merchants/{merchant_id}/rpc")
async def json_rpc(merchant_id: str, request: Request, server: MCPProtocolServer = Depends(get_protocol_server)):
    """
    JSON-RPC 2.0 endpoint for the MCP methods.

    Protocol errors travel in the envelope, so the HTTP status is 200.
    Notifications are acknowledged with 202 and no body.
    """
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(content=jsonrpc_error(None, PARSE_ERROR, "Parse error"))

    response = await server.handle(merchant_id, payload)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(content=response)


@router.get("/merchants/{merchant_id}/stream")
async def stream(merchant_id: str, server: MCPProtocolServer = Depends(get_protocol_server)):
    """
    Server-Sent Events stream: server-info, tools-list, then heartbeats.

    Returns 404 for an unknown merchant before the stream starts.
    """
    session = MCPStreamSession(server, merchant_id)
    await session.open()

    async def event_source():
        try:
            async for frame in session.frames():
                yield frame
        finally:
            session.close()

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/merchants/{merchant_id}/ai-config/invalidate", response_model=InvalidateResponse)
async def invalidate_ai_config(merchant_id: str, ai_clients: AIClientCache = Depends(get_ai_client_cache)):
    """Drop the cached AI client of a merchant after its AI configuration changed."""
    return InvalidateResponse(merchant_id=merchant_id, invalidated=ai_clients.invalidate(merchant_id))
