from .template import (
    AIConfig,
    Credential,
    Merchant,
    ToolTemplate,
    TemplateConfig,
    resolve_template_config,
)
from .tool import PreparedRequest, ToolCallResult, ToolDefinition, ToolMetadata
from .result import Item, NormalizedResult, Outcome

__all__ = [
    "AIConfig",
    "Credential",
    "Merchant",
    "ToolTemplate",
    "TemplateConfig",
    "resolve_template_config",
    "PreparedRequest",
    "ToolCallResult",
    "ToolDefinition",
    "ToolMetadata",
    "Item",
    "NormalizedResult",
    "Outcome",
]
