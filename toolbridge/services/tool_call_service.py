"""Direct tool calls: resolve template and credential, build, execute, normalize."""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from toolbridge.adapters.template_store import TemplateStore
from toolbridge.infra.error_handler import (
    CredentialOwnershipError,
    ToolbridgeError,
    ToolNotFoundError,
)
from toolbridge.infra.metrics import tool_call_duration, tool_calls_total
from toolbridge.models.template import Credential, Merchant, ToolTemplate
from toolbridge.models.result import NormalizedResult
from toolbridge.models.tool import ToolCallResult
from toolbridge.services.request_builder import build_request
from toolbridge.services.response_normalizer import NormalizationContext, ResponseNormalizer
from toolbridge.services.tool_executor import ToolExecutor, tool_executor
from toolbridge.services.tool_registry import find_template, get_merchant_or_raise

logger = logging.getLogger(__name__)


class ToolCallService:
    """
    Executes a merchant tool by name.

    Lookup failures (unknown merchant, unknown tool, foreign credential) are
    returned as failure envelopes with their HTTP-style status, the same shape
    the executor uses for outbound failures.
    """

    def __init__(
        self,
        store: TemplateStore,
        executor: ToolExecutor = tool_executor,
        normalizer: Optional[ResponseNormalizer] = None,
    ):
        self.store = store
        self.executor = executor
        self.normalizer = normalizer

    def _resolve(self, merchant_id: str, tool_name: str) -> Tuple[Merchant, ToolTemplate, Optional[Credential]]:
        merchant = get_merchant_or_raise(self.store, merchant_id)
        template = find_template(self.store, merchant_id, tool_name)
        if template is None:
            raise ToolNotFoundError(tool_name)

        credential = None
        if template.credential_id:
            credential = self.store.get_credential(template.credential_id)
            if credential is None:
                logger.warning(
                    "Credential not found, calling without authentication",
                    extra={"merchant_id": merchant_id, "template_id": template.id,
                           "credential_id": template.credential_id},
                )
            elif credential.merchant_id != merchant_id:
                raise CredentialOwnershipError(credential.id, merchant_id)
        return merchant, template, credential

    async def _call(
        self, merchant_id: str, tool_name: str, args: Optional[Dict[str, Any]]
    ) -> Tuple[ToolCallResult, Optional[Merchant]]:
        start_time = time.time()
        merchant = None
        try:
            merchant, template, credential = self._resolve(merchant_id, tool_name)
            request = build_request(template, credential, args or {})
            result = await self.executor.execute(request)
        except ToolbridgeError as e:
            logger.info(
                "Tool call rejected",
                extra={"merchant_id": merchant_id, "tool_name": tool_name,
                       "status_code": e.status_code, "error": e.message},
            )
            result = ToolCallResult.failure(e.message, status=e.status_code)

        duration = time.time() - start_time
        status = "success" if result.success else "error"
        tool_calls_total.labels(merchant_id=merchant_id, tool_name=tool_name, status=status).inc()
        tool_call_duration.labels(merchant_id=merchant_id, tool_name=tool_name).observe(duration)
        logger.info(
            "Tool call completed",
            extra={
                "merchant_id": merchant_id,
                "tool_name": tool_name,
                "success": result.success,
                "status_code": result.status,
                "duration_ms": int(duration * 1000),
            },
        )
        return result, merchant

    async def call(self, merchant_id: str, tool_name: str, args: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        result, _ = await self._call(merchant_id, tool_name, args)
        return result

    async def call_and_normalize(
        self, merchant_id: str, tool_name: str, args: Optional[Dict[str, Any]] = None
    ) -> Tuple[ToolCallResult, Optional[NormalizedResult]]:
        """Call the tool and, when it succeeds, normalize its data into products."""
        result, merchant = await self._call(merchant_id, tool_name, args)
        if not result.success or merchant is None or self.normalizer is None:
            return result, None

        context = NormalizationContext(
            merchant_id=merchant.id,
            merchant_name=merchant.label,
            currency_symbol=merchant.currency_symbol,
        )
        normalized = await self.normalizer.normalize(
            tool_name, result.model_dump(include={"success", "data"}), context
        )
        return result, normalized
