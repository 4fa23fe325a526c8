"""API request/response models."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


# ============================================================================
# Tool call Models
# ============================================================================

class ToolCallRequest(BaseModel):
    """Request body for a direct tool call."""
    args: Dict[str, Any] = Field(default_factory=dict, description="Tool arguments keyed by parameter name")


class ToolCallPayload(BaseModel):
    """Executor envelope plus the normalized products, when the call succeeded."""
    success: bool
    data: Any = None
    status: int
    error: Optional[str] = None
    normalized: Optional[Dict[str, Any]] = None


class ToolCallResponse(BaseModel):
    """Response model for a direct tool call."""
    jsonrpc: str = Field(default="2.0", examples=["2.0"])
    result: ToolCallPayload


# ============================================================================
# Discovery Models
# ============================================================================

class MerchantSummary(BaseModel):
    """Merchant identity as shown in discovery responses."""
    id: str
    name: str
    slug: str


class ToolSummary(BaseModel):
    """Tool as listed by the discovery endpoint."""
    name: str
    description: str
    inputSchema: Dict[str, Any]


class ToolListResponse(BaseModel):
    """Response model for listing a merchant's tools."""
    success: bool = True
    merchant: MerchantSummary
    tools: List[ToolSummary]
    count: int


class ServerInfoResponse(BaseModel):
    """Response model for MCP server metadata."""
    success: bool = True
    server: Dict[str, Any] = Field(..., description="Server name, endpoints, capabilities and tools")


class ServerListResponse(BaseModel):
    """Response model for listing MCP servers (one per merchant)."""
    success: bool = True
    servers: List[Dict[str, Any]]
    count: int


# ============================================================================
# AI configuration Models
# ============================================================================

class InvalidateResponse(BaseModel):
    """Response model for AI client cache invalidation."""
    merchant_id: str
    invalidated: bool = Field(..., description="Whether a cached client was dropped")
