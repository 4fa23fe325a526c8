"""Merchant-scoped records read from the template store."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class StoreModel(BaseModel):
    """Base for store records: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Merchant(StoreModel):
    """Merchant identity used in server info and as normalization context."""
    id: str
    name: str
    slug: str
    display_name: Optional[str] = None
    currency_symbol: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name


class KeyValue(StoreModel):
    key: str = ""
    value: Any = ""


class ParameterSpec(StoreModel):
    """Operator-authored description of one placeholder token."""
    display_name: Optional[str] = None
    type: str = "string"
    description: Optional[str] = None
    examples: List[Any] = Field(default_factory=list)
    required: bool = True


class OperatorMcpConfig(StoreModel):
    """Operator overrides for the tool surface of a template.

    Malformed parts degrade to their defaults; they never invalidate the
    template they belong to.
    """
    tool_name: Optional[str] = None
    tool_description: Optional[str] = None
    usage_hints: List[str] = Field(default_factory=list)
    parameters: Dict[str, ParameterSpec] = Field(default_factory=dict)

    @field_validator("tool_name", "tool_description", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @field_validator("usage_hints", mode="before")
    @classmethod
    def _hint_list(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            return [value] if value.strip() else []
        if not isinstance(value, list):
            return []
        return [str(hint) for hint in value if hint is not None]

    @field_validator("parameters", mode="before")
    @classmethod
    def _parameter_map(cls, value: Any) -> Dict[str, ParameterSpec]:
        if not isinstance(value, dict):
            return {}
        parameters: Dict[str, ParameterSpec] = {}
        for name, spec in value.items():
            try:
                parameters[str(name)] = ParameterSpec.model_validate(spec if isinstance(spec, dict) else {})
            except ValidationError:
                logger.warning("Ignoring invalid parameter metadata", extra={"parameter": str(name)})
                parameters[str(name)] = ParameterSpec()
        return parameters


def _as_pairs(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value) if value.strip() else []
    if isinstance(value, dict):
        return [{"key": k, "value": v} for k, v in value.items()]
    return value


class ToolTemplate(StoreModel):
    """Stored HTTP shape of one tool, with ``{{token}}`` placeholders."""
    id: str
    merchant_id: str
    tool_type: str
    name: Optional[str] = None
    description: Optional[str] = None
    method: str = "POST"
    url: str = ""
    headers: List[KeyValue] = Field(default_factory=list)
    query_params: List[KeyValue] = Field(default_factory=list)
    body: Any = None
    operator_mcp_config: Optional[OperatorMcpConfig] = None
    credential_id: Optional[str] = None
    timeout_seconds: Optional[float] = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> str:
        return (value or "POST").strip().upper()

    @field_validator("headers", "query_params", mode="before")
    @classmethod
    def _normalize_pairs(cls, value: Any) -> Any:
        return _as_pairs(value)

    @field_validator("operator_mcp_config", mode="before")
    @classmethod
    def _decode_operator_config(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                value = json.loads(value)
            except ValueError:
                logger.warning("Ignoring undecodable operator config", extra={"config": value[:200]})
                return None
        if not isinstance(value, (dict, OperatorMcpConfig)):
            return None
        return value


class Credential(StoreModel):
    """Authentication material referenced by templates of the same merchant."""
    id: str
    merchant_id: str
    auth_type: str = "none"  # none | bearer | api_key | basic | custom
    secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @field_validator("auth_type", mode="before")
    @classmethod
    def _lower_auth_type(cls, value: Any) -> str:
        return (value or "none").strip().lower()


class AIConfig(StoreModel):
    """Per-merchant AI backend selection."""
    merchant_id: str
    provider: str = "gemini"  # openai | gemini
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.1
    max_output_tokens: int = 4096
    is_active: bool = True


@dataclass(frozen=True)
class AutoConfig:
    """Template without operator overrides: the schema is inferred."""
    kind: str = "auto"


@dataclass(frozen=True)
class OperatorAuthoredConfig:
    """Template whose operator supplied a tool name and parameter metadata."""
    tool_name: str
    tool_description: Optional[str] = None
    usage_hints: List[str] = field(default_factory=list)
    parameters: Dict[str, ParameterSpec] = field(default_factory=dict)
    kind: str = "operator"


TemplateConfig = Union[AutoConfig, OperatorAuthoredConfig]


def resolve_template_config(template: ToolTemplate) -> TemplateConfig:
    """Pick the configuration variant once; operator mode needs a tool name."""
    operator = template.operator_mcp_config
    if operator is not None and operator.tool_name and operator.tool_name.strip():
        return OperatorAuthoredConfig(
            tool_name=operator.tool_name,
            tool_description=operator.tool_description,
            usage_hints=list(operator.usage_hints),
            parameters=dict(operator.parameters),
        )
    return AutoConfig()
