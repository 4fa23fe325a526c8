"""Tool discovery and lookup for a merchant."""

import logging
from typing import List, Optional, Tuple

from toolbridge.adapters.template_store import TemplateStore
from toolbridge.infra.error_handler import MerchantNotFoundError
from toolbridge.models.template import Merchant, ToolTemplate
from toolbridge.models.tool import ToolDefinition
from toolbridge.services.schema_deriver import (
    derive_tool_definition,
    sanitize_tool_name,
    template_tool_name,
)

logger = logging.getLogger(__name__)


def get_merchant_or_raise(store: TemplateStore, merchant_id: str) -> Merchant:
    merchant = store.get_merchant(merchant_id)
    if merchant is None:
        raise MerchantNotFoundError(merchant_id)
    return merchant


def _has_url(template: ToolTemplate) -> bool:
    return bool(template.url and template.url.strip())


def list_tools(store: TemplateStore, merchant_id: str) -> List[ToolDefinition]:
    """
    Derive the tool list of a merchant.

    Templates without a URL are not tools yet and are skipped. Tool names must
    be unique, so later templates that sanitize to an existing name are dropped.

    Raises:
        MerchantNotFoundError: unknown merchant
    """
    return list_merchant_tools(store, merchant_id)[1]


def list_merchant_tools(store: TemplateStore, merchant_id: str) -> Tuple[Merchant, List[ToolDefinition]]:
    merchant = get_merchant_or_raise(store, merchant_id)

    tools: List[ToolDefinition] = []
    seen_names = set()
    for template in store.get_templates_for_merchant(merchant_id):
        if not _has_url(template):
            logger.info(
                "Skipping template without URL",
                extra={"merchant_id": merchant_id, "template_id": template.id, "tool_type": template.tool_type},
            )
            continue

        tool = derive_tool_definition(template)
        if tool.name in seen_names:
            logger.warning(
                "Skipping duplicate tool name",
                extra={"merchant_id": merchant_id, "template_id": template.id, "tool_name": tool.name},
            )
            continue
        seen_names.add(tool.name)
        tools.append(tool)

    logger.debug(
        "Tools derived",
        extra={"merchant_id": merchant_id, "tools_count": len(tools)},
    )
    return merchant, tools


def find_template(store: TemplateStore, merchant_id: str, tool_name: str) -> Optional[ToolTemplate]:
    """Template whose sanitized tool name matches the sanitized requested name, if any."""
    wanted = sanitize_tool_name(tool_name)
    for template in store.get_templates_for_merchant(merchant_id):
        if _has_url(template) and template_tool_name(template) == wanted:
            return template
    return None
