"""
LLM gateway for detect-cart.

One call surface over every vendor: ``generate(model_id, system, prompt)``.
The registry model id is the only routing key. Vendor exceptions are
translated into typed provider errors here so callers never see SDK types.
"""

import asyncio
import logging
import re
from typing import Any, Optional

from detect_cart.errors import (
    InputInvalid,
    ProviderError,
    ProviderFatal,
    ProviderQuotaExhausted,
    ProviderRateLimited,
    ProviderTransient,
    ProviderUnknown,
)
from detect_cart.models import Generation
from detect_cart.providers import LLMProvider, default_providers
from detect_cart.registry import ModelRegistry

logger = logging.getLogger(__name__)


QUOTA_CODES = {"RESOURCE_EXHAUSTED", "QUOTA_EXCEEDED", "INSUFFICIENT_QUOTA"}
RATE_LIMIT_CODES = {"RATE_LIMIT_EXCEEDED", "RATE_LIMIT_ERROR", "RATE_LIMITED", "TOO_MANY_REQUESTS"}
TRANSIENT_CODES = {
    "DEADLINE_EXCEEDED",
    "UNAVAILABLE",
    "INTERNAL",
    "OVERLOADED_ERROR",
    "API_ERROR",
    "SERVER_ERROR",
    "GATEWAY_TIMEOUT",
}
FATAL_CODES = {
    "UNAUTHENTICATED",
    "PERMISSION_DENIED",
    "INVALID_ARGUMENT",
    "NOT_FOUND",
    "FAILED_PRECONDITION",
    "AUTHENTICATION_ERROR",
    "PERMISSION_ERROR",
    "INVALID_REQUEST_ERROR",
    "NOT_FOUND_ERROR",
    "INVALID_API_KEY",
    "MODEL_NOT_FOUND",
    "MISSING_API_KEY",
}
TRANSIENT_MARKERS = ("timeout", "connection", "timedout")


def _read_attr(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    try:
        return getattr(obj, name)
    except Exception:
        return None


def _coerce_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _coerce_code(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (bool, int)):
        return None
    name = _read_attr(value, "name")
    if isinstance(name, str) and name.strip():
        value = name
    text = str(value).strip()
    if not text:
        return None
    token = text.split()[0].split(".")[-1]
    token = re.sub(r"^[ <>:,'\"]+|[ <>:,'\"]+$", "", token)
    return token or None


def _error_body(exc: BaseException) -> dict:
    body = _read_attr(exc, "body")
    if not isinstance(body, dict):
        body = _read_attr(exc, "details")
    if not isinstance(body, dict):
        return {}
    inner = body.get("error")
    return inner if isinstance(inner, dict) else body


def _extract_status_and_code(exc: BaseException) -> tuple[Optional[int], Optional[str]]:
    status = _coerce_status(_read_attr(exc, "status_code"))
    if status is None:
        status = _coerce_status(_read_attr(_read_attr(exc, "response"), "status_code"))

    code: Optional[str] = None
    for attr_name in ("code", "status"):
        raw = _read_attr(exc, attr_name)
        if status is None:
            status = _coerce_status(raw)
        if code is None:
            code = _coerce_code(raw)

    body = _error_body(exc)
    if status is None:
        status = _coerce_status(body.get("code"))
    if code is None:
        for key in ("status", "code", "type"):
            code = _coerce_code(body.get(key))
            if code:
                break
    return status, code


def translate_error(exc: BaseException) -> ProviderError:
    """
    Map a vendor exception onto the typed provider errors.

    The vendor's status string and numeric HTTP code are preserved on the
    returned error so quota exhaustion can be shown to operators verbatim.
    """
    if isinstance(exc, ProviderError):
        return exc

    status, code = _extract_status_and_code(exc)
    message = _read_attr(exc, "message")
    if not isinstance(message, str) or not message:
        message = str(exc) or type(exc).__name__
    code_key = code.upper() if code else ""
    label = code or (str(status) if status is not None else "")

    if code_key in QUOTA_CODES:
        return ProviderQuotaExhausted(f"資源配額已耗盡 ({label}): {message}", code=code, status=status)
    if status == 429 or code_key in RATE_LIMIT_CODES:
        return ProviderRateLimited(f"請求頻率過高 ({label}): {message}", code=code, status=status)

    class_name = type(exc).__name__.lower()
    if (
        isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError))
        or any(marker in class_name for marker in TRANSIENT_MARKERS)
        or code_key in TRANSIENT_CODES
        or status in (408, 504)
        or (status is not None and status >= 500)
    ):
        return ProviderTransient(message, code=code, status=status)

    if code_key in FATAL_CODES or (status is not None and 400 <= status < 500):
        return ProviderFatal(message, code=code, status=status)

    return ProviderUnknown(message, code=code, status=status)


def extract_reasoning(text: str, tag: str) -> tuple[str, Optional[str]]:
    """
    Split ``<tag>...</tag>`` reasoning out of a reply.

    Returns:
        (text without the reasoning blocks, joined reasoning or None)
    """
    pattern = re.compile(rf"<{re.escape(tag)}>(.*?)</{re.escape(tag)}>", re.DOTALL)
    blocks = [block.strip() for block in pattern.findall(text)]
    if not blocks:
        return text, None
    return pattern.sub("", text).strip(), "\n".join(blocks)


class LLMGateway:
    """
    Dispatches generation requests to the vendor adapter for a model.

    Example:
        ```python
        gateway = LLMGateway(ModelRegistry.default())
        generation = await gateway.generate("chat-model-gemini", system, prompt)
        print(generation.text, generation.usage.total_tokens)
        ```
    """

    def __init__(
        self,
        registry: ModelRegistry,
        providers: Optional[dict[str, LLMProvider]] = None,
    ):
        """
        Initialize gateway.

        Args:
            registry: Model catalogue used for routing.
            providers: Adapters keyed by vendor name (defaults to the real SDKs).
        """
        self.registry = registry
        self.providers = providers if providers is not None else default_providers()

    async def generate(self, model_id: str, system: str, prompt: str) -> Generation:
        """
        Run one completion.

        Args:
            model_id: Registry model id.
            system: System prompt.
            prompt: User prompt.

        Returns:
            Generation with text and usage.

        Raises:
            InputInvalid: Unknown or disabled model id (no vendor call is made).
            ProviderError: Typed vendor failure.
        """
        model = self.registry.require(model_id)
        if model.disabled:
            raise InputInvalid(
                f"模型 {model_id} 已停用: {model.disabled_reason or 'unavailable'}"
            )

        provider = self.providers.get(model.provider)
        if provider is None:
            raise ProviderFatal(f"no provider configured for '{model.provider}'")

        try:
            generation = await provider.generate(model, system, prompt)
        except asyncio.CancelledError:
            raise
        except ProviderError as exc:
            logger.warning("%s failed: %s (%s)", model_id, exc.kind, exc.message)
            raise
        except Exception as exc:
            translated = translate_error(exc)
            logger.warning("%s failed: %s (%s)", model_id, translated.kind, translated.message)
            raise translated from exc

        if model.reasoning_tag:
            generation.text, generation.reasoning = extract_reasoning(
                generation.text, model.reasoning_tag
            )

        logger.debug(
            "%s -> %s tokens in %sms",
            model_id,
            generation.usage.total_tokens,
            generation.latency_ms,
        )
        return generation
