"""Tool definitions, prepared outbound requests and execution envelopes."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, Any, List, Optional


class ToolMetadata(BaseModel):
    """Provenance of a derived tool, carried alongside the schema."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    template_id: str = Field(..., description="Template the tool was derived from")
    tool_type: str = Field(..., description="Template tool type, e.g. 'search' or 'custom_...'")
    method: str = Field(..., description="HTTP method of the backing API")
    endpoint: str = Field(..., description="URL of the backing API")
    credential_id: Optional[str] = Field(default=None, description="Credential used for authentication")
    usage_hints: List[str] = Field(default_factory=list, description="Operator usage hints")


class ToolDefinition(BaseModel):
    """Tool exposed to an AI agent. Derived on every discovery request, never persisted."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., description="Tool name, unique per merchant")
    description: str = Field(..., description="Tool description")
    input_schema: Dict[str, Any] = Field(..., description="JSON Schema for arguments")
    metadata: ToolMetadata

    def to_protocol(self) -> Dict[str, Any]:
        """Shape used by tools/list: name, description and inputSchema only."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class PreparedRequest(BaseModel):
    """Outbound HTTP call built from a template, a credential and arguments."""
    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    params: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = None
    warnings: List[str] = Field(default_factory=list)


class ToolCallResult(BaseModel):
    """Executor envelope: exactly one of data or error is meaningful."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    status: int

    @classmethod
    def ok(cls, data: Any, status: int = 200) -> "ToolCallResult":
        return cls(success=True, data=data, status=status)

    @classmethod
    def failure(cls, error: str, status: int) -> "ToolCallResult":
        return cls(success=False, error=error, status=status)
