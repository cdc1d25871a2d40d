"""
Error taxonomy for the background-removal and PDF-compression core.

Every error carries a stable `code` so per-item failures can be recorded in
batch outcomes and mapped to HTTP statuses without string matching.
"""

from typing import Any, Dict


class ServiceError(Exception):
    """Base class for all errors raised by the service core."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(f"[{self.code}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class Unconfigured(ServiceError):
    """Provider is missing its credential (or local model path)."""

    code = "UNCONFIGURED"


class UnknownProvider(ServiceError):
    code = "UNKNOWN_PROVIDER"


class RateLimited(ServiceError):
    """HTTP 429. Try the next provider, do not retry the same one."""

    code = "RATE_LIMITED"


class PaymentRequired(ServiceError):
    """HTTP 402. Credits exhausted for this provider."""

    code = "PAYMENT_REQUIRED"


class ProviderFailure(ServiceError):
    code = "PROVIDER_FAILED"


class SizeExceeded(ServiceError):
    code = "SIZE_EXCEEDED"


class AllProvidersFailed(ServiceError):
    code = "ALL_PROVIDERS_FAILED"


class ToolInvocationFailure(ServiceError):
    code = "TOOL_INVOCATION_FAILED"


class DecodeError(ServiceError):
    code = "DECODE_ERROR"


class CompositeError(ServiceError):
    code = "COMPOSITE_ERROR"


class UnsupportedOption(ServiceError):
    code = "UNSUPPORTED_OPTION"
