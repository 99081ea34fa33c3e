from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from svc_swap.services.rate_limiter import RateLimitResult


class SwapError(Exception):
    """Base for failures that carry a stable machine-readable code."""

    code = "PROCESSING_ERROR"
    status_code = 500
    message = "Face swap processing failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message or self.message)
        if code:
            self.code = code
        self.reason = reason

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"success": False, "error": str(self), "code": self.code}
        if self.reason:
            detail["reason"] = self.reason
        return detail


class InsufficientCreditsError(SwapError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402
    message = "Not enough credits"


class RateLimitExceededError(SwapError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    message = "Too many requests"

    def __init__(self, result: "RateLimitResult", message: Optional[str] = None):
        super().__init__(message)
        self.result = result


class ProcessingError(SwapError):
    code = "PROCESSING_ERROR"
    status_code = 500
    message = "Face swap processing failed"


class ProviderError(SwapError):
    """
    Wraps any backend failure. `reason` holds the vendor sub-reason
    (GEMINI_NO_IMAGE, WAVESPEED_API_ERROR, ...); `code` is always PROVIDER_ERROR.
    """

    code = "PROVIDER_ERROR"
    status_code = 500
    message = "Face swap provider failed"

    def __init__(self, reason: str, message: Optional[str] = None, *, provider: Optional[str] = None):
        super().__init__(message or reason, reason=reason)
        self.provider = provider
