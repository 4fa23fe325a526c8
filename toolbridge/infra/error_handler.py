"""Error taxonomy for configuration faults and AI backend failures."""

from typing import Optional
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of AI backend failures, used as the metrics status label."""
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    AUTH_ERROR = "auth_error"  # Authentication/authorization failures
    RATE_LIMIT = "rate_limit"  # Rate limit exceeded


class ToolbridgeError(Exception):
    """Base exception for toolbridge faults that carry an HTTP-style status."""
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class MerchantNotFoundError(ToolbridgeError):
    """Merchant id does not resolve to a merchant."""
    status_code = 404

    def __init__(self, merchant_id: str):
        self.merchant_id = merchant_id
        super().__init__("Merchant not found")


class ToolNotFoundError(ToolbridgeError):
    """No template of the merchant maps to the requested tool name."""
    status_code = 404

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' not found for merchant")


class CredentialOwnershipError(ToolbridgeError):
    """Template references a credential that belongs to another merchant."""
    status_code = 403

    def __init__(self, credential_id: str, merchant_id: str):
        self.credential_id = credential_id
        self.merchant_id = merchant_id
        super().__init__(
            f"Credential '{credential_id}' does not belong to merchant '{merchant_id}'"
        )


class AIBackendError(ToolbridgeError):
    """Base exception for AI backend failures, tagged with a category."""
    status_code = 502

    def __init__(self, message: str, category: ErrorCategory):
        self.category = category
        super().__init__(message)


class NetworkError(AIBackendError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.NETWORK)


class APIError(AIBackendError):
    """API returned an error response."""
    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message, ErrorCategory.API_ERROR)
        self.upstream_status = upstream_status


class AuthError(AIBackendError):
    """Authentication/authorization errors."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR)


class RateLimitError(AIBackendError):
    """Rate limit exceeded."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.RATE_LIMIT)


def wrap_llm_error(error: Exception, provider: str) -> AIBackendError:
    """
    Wrap AI backend errors into our error types.

    Args:
        error: Original exception
        provider: AI provider name ('openai', 'gemini')

    Returns:
        AIBackendError with appropriate category
    """
    if isinstance(error, AIBackendError):
        return error

    error_str = str(error)
    error_lower = error_str.lower()
    status_code = getattr(error, "status_code", None)
    if status_code is None:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None)

    # Check for rate limit
    if status_code == 429 or "rate limit" in error_lower or "429" in error_str:
        return RateLimitError(f"{provider} rate limit exceeded")

    # Check for auth errors
    if status_code in (401, 403) or "unauthorized" in error_lower or "authentication" in error_lower:
        return AuthError(f"{provider} authentication failed: {error_str}")

    if isinstance(status_code, int):
        if status_code >= 500:
            return APIError(f"{provider} server error ({status_code})", upstream_status=status_code)
        return APIError(f"{provider} API error ({status_code})", upstream_status=status_code)

    # Check for network errors
    if any(keyword in error_lower for keyword in ["connection", "timeout", "network"]):
        return NetworkError(f"{provider} network error: {error_str}")

    # Unknown errors are treated as transport failures
    return NetworkError(f"{provider} error: {error_str}")
