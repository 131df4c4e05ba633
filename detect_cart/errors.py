"""
Error hierarchy for detect-cart.

Every error carries a stable ``kind`` string so the HTTP layer and the
fan-out can report it without inspecting the class.
"""

from __future__ import annotations

from typing import Optional


class DetectCartError(Exception):
    """Base class for all detect-cart errors."""

    kind = "DetectCartError"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InputInvalid(DetectCartError, ValueError):
    """Raised when a caller supplies missing or malformed input."""

    kind = "InputInvalid"
    http_status = 400


class Unauthorized(DetectCartError):
    """Raised when an endpoint requires a session and none is present."""

    kind = "Unauthorized"
    http_status = 401

    def __init__(self, message: str = "未授權"):
        super().__init__(message)


# =============================================================================
# Cart fetch
# =============================================================================


class FetchError(DetectCartError):
    """Base class for cart fetch failures."""

    kind = "Fetch"
    http_status = 502


class NoVariant(FetchError):
    """products.json did not yield a variant id."""

    kind = "NoVariant"


class TooManyRedirects(FetchError):
    """The redirect chain exceeded the hop limit."""

    kind = "TooManyRedirects"

    def __init__(self, max_redirects: int):
        super().__init__(f"超過最大重定向次數 ({max_redirects})")
        self.max_redirects = max_redirects


class BadRedirect(FetchError):
    """A redirect arrived without a usable Location header."""

    kind = "BadRedirect"

    def __init__(self, message: str = "重定向 URL 不存在"):
        super().__init__(message)


class NetworkFailure(FetchError):
    """Transport-level failure talking to the storefront."""

    kind = "NetworkFailure"


# =============================================================================
# Providers
# =============================================================================


class ProviderError(DetectCartError):
    """Base class for LLM provider failures.

    Attributes:
        code: Vendor status string (e.g. ``RESOURCE_EXHAUSTED``), if any.
        status: Numeric HTTP status reported by the vendor, if any.
    """

    kind = "ProviderUnknown"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status = status

    @property
    def http_status(self) -> int:  # type: ignore[override]
        if self.status is not None and 400 <= self.status < 600:
            return self.status
        return 500

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "code": self.code,
            "status": self.status,
        }


class ProviderQuotaExhausted(ProviderError):
    """The vendor reports the account's quota is used up."""

    kind = "ProviderQuotaExhausted"


class ProviderRateLimited(ProviderError):
    """The vendor throttled the request."""

    kind = "ProviderRateLimited"


class ProviderTransient(ProviderError):
    """Timeouts, connection resets and 5xx responses."""

    kind = "ProviderTransient"


class ProviderFatal(ProviderError):
    """Authentication, bad request and unknown-model errors."""

    kind = "ProviderFatal"


class ProviderUnknown(ProviderError):
    """Anything the translator could not classify."""

    kind = "ProviderUnknown"


class RecorderFailure(DetectCartError):
    """Usage could not be stored. Logged, never surfaced to users."""

    kind = "RecorderFailure"


__all__ = [
    "DetectCartError",
    "InputInvalid",
    "Unauthorized",
    "FetchError",
    "NoVariant",
    "TooManyRedirects",
    "BadRedirect",
    "NetworkFailure",
    "ProviderError",
    "ProviderQuotaExhausted",
    "ProviderRateLimited",
    "ProviderTransient",
    "ProviderFatal",
    "ProviderUnknown",
    "RecorderFailure",
]
