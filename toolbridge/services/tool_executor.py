"""Outbound HTTP execution of prepared tool requests."""

import logging
import time
from typing import Any, Optional

import httpx

from toolbridge.infra.config import config
from toolbridge.infra.timeout import TOOL_EXECUTION_TIMEOUT
from toolbridge.models.tool import PreparedRequest, ToolCallResult

logger = logging.getLogger(__name__)


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ToolExecutor:
    """
    Performs exactly one HTTP call per tool invocation.

    Every failure (timeout, connection error, non-2xx status, unexpected
    exception) is returned as a failure envelope instead of raised. There are
    no retries: tool APIs may not be idempotent.
    """

    def __init__(self, verify_tls: Optional[bool] = None, default_timeout: float = TOOL_EXECUTION_TIMEOUT):
        self.verify_tls = config.OUTBOUND_TLS_VERIFY if verify_tls is None else verify_tls
        self.default_timeout = default_timeout

    async def execute(self, request: PreparedRequest) -> ToolCallResult:
        timeout = request.timeout or self.default_timeout
        start_time = time.time()
        log_extra = {"method": request.method, "url": request.url}

        send_kwargs = {"headers": request.headers, "params": request.params}
        if request.body is not None:
            if isinstance(request.body, str):
                send_kwargs["content"] = request.body
            else:
                send_kwargs["json"] = request.body

        try:
            async with httpx.AsyncClient(verify=self.verify_tls, timeout=timeout) as client:
                response = await client.request(request.method, request.url, **send_kwargs)
                response.raise_for_status()
                data = _decode(response)

            logger.info(
                "Tool API call succeeded",
                extra={**log_extra, "status_code": response.status_code,
                       "duration_ms": int((time.time() - start_time) * 1000)},
            )
            return ToolCallResult.ok(data, status=response.status_code)

        except httpx.TimeoutException:
            logger.warning("Tool API call timed out", extra={**log_extra, "timeout": timeout})
            return ToolCallResult.failure(f"Request timed out after {timeout} seconds", status=504)

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(
                "Tool API returned error status",
                extra={**log_extra, "status_code": status_code, "response_sample": e.response.text[:500]},
            )
            return ToolCallResult.failure(f"Request failed with status code {status_code}", status=status_code)

        except httpx.HTTPError as e:
            logger.warning("Tool API call failed", extra={**log_extra, "error": str(e)})
            return ToolCallResult.failure(str(e) or type(e).__name__, status=500)

        except Exception as e:
            logger.error("Unexpected error executing tool API call", extra={**log_extra, "error": str(e)}, exc_info=True)
            return ToolCallResult.failure(str(e) or type(e).__name__, status=500)


tool_executor = ToolExecutor()
