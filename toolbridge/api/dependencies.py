"""Process-wide service instances, injected into routers via Depends."""

from functools import lru_cache

from toolbridge.adapters.ai_backend import AIClientCache
from toolbridge.adapters.template_store import SqlTemplateStore, TemplateStore
from toolbridge.services.mcp_protocol import MCPProtocolServer
from toolbridge.services.response_normalizer import ResponseNormalizer
from toolbridge.services.tool_call_service import ToolCallService
from toolbridge.services.tool_executor import tool_executor


@lru_cache
def get_template_store() -> TemplateStore:
    return SqlTemplateStore()


@lru_cache
def get_ai_client_cache() -> AIClientCache:
    return AIClientCache(get_template_store())


@lru_cache
def get_protocol_server() -> MCPProtocolServer:
    store = get_template_store()
    normalizer = ResponseNormalizer(get_ai_client_cache())
    tool_calls = ToolCallService(store, executor=tool_executor, normalizer=normalizer)
    return MCPProtocolServer(store, tool_calls)
