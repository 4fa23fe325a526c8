"""Derive AI-facing tool definitions from stored HTTP templates."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from toolbridge.models.template import (
    OperatorAuthoredConfig,
    ToolTemplate,
    resolve_template_config,
)
from toolbridge.models.tool import ToolDefinition, ToolMetadata

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

# Template keys that describe the request itself, never a user argument
RESERVED_BODY_KEYS = frozenset({"url", "method", "headers", "params", "body", "name", "description"})

MAX_TOOL_NAME_LENGTH = 64

SEARCH_PARAM_HINT = 'What the user is searching for or asking about (e.g., "lipstick", "hair oil", etc.)'
GENERIC_QUERY_HINT = "User's search query, question, or request (pass the user message naturally)"


@dataclass(frozen=True)
class Placeholder:
    name: str
    source: str  # body | query
    original_key: str


def sanitize_tool_name(name: Optional[str]) -> str:
    """Reduce a name to ``[a-z0-9_.:-]``, starting with a letter or underscore, max 64 chars."""
    if not name:
        return "unnamed_tool"
    cleaned = name.strip().lower()
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"[^a-z0-9_.\-:]+", "_", cleaned)
    cleaned = re.sub(r"^[^a-z_]+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned)
    cleaned = cleaned.strip("_")[:MAX_TOOL_NAME_LENGTH]
    return cleaned or "unnamed_tool"


def decode_body(body: Any) -> Tuple[Any, bool]:
    """
    Decode a JSON-encoded string body.

    Returns ``(body, is_raw_text)``; ``is_raw_text`` is True for a string that
    is not JSON, which is used verbatim and never scanned for parameters.
    """
    if not isinstance(body, str):
        return body, False
    if not body.strip():
        return None, False
    try:
        return json.loads(body), False
    except ValueError:
        return body, True


def first_token(value: str) -> Optional[str]:
    match = PLACEHOLDER_PATTERN.search(value)
    return match.group(1) if match else None


def _scan_leaves(node: Any, enclosing_key: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(token, nearest_key)`` for the first placeholder of every string leaf."""
    if isinstance(node, str):
        token = first_token(node)
        if token:
            yield token, enclosing_key
    elif isinstance(node, dict):
        for key, value in node.items():
            yield from _scan_leaves(value, str(key))
    elif isinstance(node, list):
        for value in node:
            yield from _scan_leaves(value, enclosing_key)


def detect_placeholders(template: ToolTemplate) -> List[Placeholder]:
    """Distinct tokens of the body tree, then of query parameter values, first occurrence wins."""
    found: List[Placeholder] = []
    seen = set()

    body, is_raw_text = decode_body(template.body)
    if not is_raw_text and isinstance(body, (dict, list)):
        for token, key in _scan_leaves(body, ""):
            if token not in seen:
                seen.add(token)
                found.append(Placeholder(token, "body", key or token))

    for param in template.query_params:
        if not param.key or not isinstance(param.value, str):
            continue
        token = first_token(param.value)
        if token and token not in seen:
            seen.add(token)
            found.append(Placeholder(token, "query", param.key))

    return found


def generate_param_description(param_name: str, original_key: Optional[str] = None) -> str:
    name = param_name.lower()

    if "query" in name or "search" in name or name == "q":
        return SEARCH_PARAM_HINT
    if "message" in name or "msg" in name:
        return "User's message or query (pass their request naturally)"
    if "term" in name or "keyword" in name:
        return "Search term or keyword from user query"
    if "id" in name:
        return "Unique identifier"
    if "name" in name:
        return "Name or title"
    if "category" in name:
        return "Product category or type"
    if "price" in name:
        return "Price value or range"

    return f"{original_key or param_name} value from user query"


def describe_with_examples(description: str, examples: List[Any]) -> str:
    if not examples:
        return description
    example_text = ", ".join(f'"{example}"' for example in examples)
    return f"{description} (e.g., {example_text})"


def generate_tool_description(template: ToolTemplate, properties: Dict[str, Any]) -> str:
    if template.description:
        return template.description

    tool_type = template.tool_type.lower()
    main_param = next(iter(properties), None)

    if "search" in tool_type or (main_param and ("query" in main_param or "search" in main_param)):
        return (
            "Search for products or items. Use this when the user wants to find, search, "
            "or browse products. Pass the user's search query naturally."
        )
    if "product" in tool_type:
        return "Get product information. Use when user asks about specific products or wants product details."
    if "cart" in tool_type:
        return "Add items to shopping cart. Use when user wants to buy or add products to cart."
    if "checkout" in tool_type:
        return "Proceed to checkout. Use when user is ready to purchase items in their cart."
    if "order" in tool_type:
        return "Manage orders. Use to check order status, history, or details."

    param_hint = f'Takes "{main_param}" parameter from user query' if main_param else ""
    return f"{template.tool_type} functionality. {param_hint}".strip()


def infer_json_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def contains_placeholder(node: Any) -> bool:
    return any(True for _ in _scan_leaves(node, ""))


def _generic_query_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {"query": {"type": "string", "description": GENERIC_QUERY_HINT}},
        "required": ["query"],
    }


def _auto_schema(template: ToolTemplate, placeholders: List[Placeholder]) -> Dict[str, Any]:
    properties: Dict[str, Dict[str, Any]] = {}
    required: List[str] = []
    tokens = {p.name for p in placeholders}

    def add_required(placeholder: Placeholder) -> None:
        if placeholder.name in properties:
            return
        properties[placeholder.name] = {
            "type": "string",
            "description": generate_param_description(placeholder.name, placeholder.original_key),
        }
        required.append(placeholder.name)

    body, is_raw_text = decode_body(template.body)
    if isinstance(body, dict) and not is_raw_text:
        by_name = {p.name: p for p in placeholders}
        for key, value in body.items():
            if contains_placeholder(value):
                for token, _ in _scan_leaves(value, key):
                    add_required(by_name[token])
            elif isinstance(value, str) and "{{" in value:
                continue
            elif key not in RESERVED_BODY_KEYS and key not in tokens and key not in properties:
                properties[key] = {
                    "type": infer_json_type(value),
                    "description": generate_param_description(key, key),
                }

    # Tokens nested in arrays at the top level, and query parameter tokens
    for placeholder in placeholders:
        add_required(placeholder)

    return {"type": "object", "properties": properties, "required": required}


def _operator_schema(config: OperatorAuthoredConfig, placeholders: List[Placeholder]) -> Dict[str, Any]:
    properties: Dict[str, Dict[str, Any]] = {}
    required: List[str] = []

    for placeholder in placeholders:
        spec = config.parameters.get(placeholder.name)
        description = (spec.description if spec else None) or generate_param_description(
            placeholder.name, placeholder.original_key
        )
        prop: Dict[str, Any] = {
            "type": (spec.type if spec else None) or "string",
            "description": describe_with_examples(description, spec.examples if spec else []),
        }
        if spec and spec.display_name:
            prop["title"] = spec.display_name
        properties[placeholder.name] = prop
        if spec is None or spec.required is not False:
            required.append(placeholder.name)

    return {"type": "object", "properties": properties, "required": required}


def _metadata(template: ToolTemplate, usage_hints: Optional[List[str]] = None) -> ToolMetadata:
    return ToolMetadata(
        template_id=template.id,
        tool_type=template.tool_type,
        method=template.method,
        endpoint=template.url,
        credential_id=template.credential_id,
        usage_hints=usage_hints or [],
    )


def _fallback_definition(template: ToolTemplate) -> ToolDefinition:
    schema = _generic_query_schema()
    return ToolDefinition(
        name=template_tool_name(template),
        description=generate_tool_description(template, schema["properties"]),
        input_schema=schema,
        metadata=_metadata(template),
    )


def derive_tool_definition(template: ToolTemplate) -> ToolDefinition:
    """
    Build the tool definition for one template.

    Never raises for a malformed template: any failure degrades to the
    name the template is looked up by, with a single generic ``query`` argument.
    """
    try:
        config = resolve_template_config(template)
        placeholders = detect_placeholders(template)

        if isinstance(config, OperatorAuthoredConfig):
            schema = _operator_schema(config, placeholders)
            usage_hints = config.usage_hints
        else:
            schema = _auto_schema(template, placeholders)
            usage_hints = []

        if not schema["properties"]:
            schema = _generic_query_schema()

        if isinstance(config, OperatorAuthoredConfig) and config.tool_description:
            description = config.tool_description
        else:
            description = generate_tool_description(template, schema["properties"])

        return ToolDefinition(
            name=template_tool_name(template),
            description=description,
            input_schema=schema,
            metadata=_metadata(template, usage_hints),
        )
    except Exception as e:
        logger.warning(
            "Tool derivation failed, using generic schema",
            extra={"template_id": template.id, "tool_type": template.tool_type, "error": str(e)},
            exc_info=True,
        )
        return _fallback_definition(template)


def template_tool_name(template: ToolTemplate) -> str:
    """Sanitized name a template is addressed by, without deriving the full schema."""
    config = resolve_template_config(template)
    if isinstance(config, OperatorAuthoredConfig):
        return sanitize_tool_name(config.tool_name)
    return sanitize_tool_name(template.name or template.tool_type)
