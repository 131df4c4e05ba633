"""
Input validation for detect-cart.

Validates caller inputs at the boundary so bad requests never reach the
storefront or an LLM vendor. Messages are user facing (zh-TW).
"""

import re
from typing import Any, Optional, Sequence

from detect_cart.errors import InputInvalid

# Callers catch ValidationError; it is the same class as InputInvalid.
ValidationError = InputInvalid


MAX_PROMPT_LENGTH = 2_000_000  # simplified carts can be large
MAX_MODELS_PER_REQUEST = 16
STORE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,62}$")


def validate_store_name(store_name: Any) -> str:
    """
    Validate and normalize a Shopify store handle.

    Accepts either the bare handle or a full ``*.myshopify.com`` host.

    Args:
        store_name: Store handle entered by the operator

    Returns:
        Normalized handle (lowercase, without the myshopify suffix)

    Raises:
        ValidationError: If the handle is missing or malformed
    """
    if not isinstance(store_name, str) or not store_name.strip():
        raise ValidationError("缺少商店名稱")

    handle = store_name.strip().lower()
    handle = re.sub(r"^https?://", "", handle).rstrip("/")
    if handle.endswith(".myshopify.com"):
        handle = handle[: -len(".myshopify.com")]

    if not STORE_NAME_PATTERN.match(handle):
        raise ValidationError(f"無效的商店名稱: {store_name}")
    return handle


def validate_prompt(prompt: Any) -> None:
    """
    Validate a free-form prompt.

    Raises:
        ValidationError: If prompt is missing, blank or oversized
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("缺少 prompt 參數")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"prompt 過長: {len(prompt):,} 字元 (上限: {MAX_PROMPT_LENGTH:,})"
        )


def validate_model_ids(model_ids: Any) -> list[str]:
    """
    Validate a fan-out model list and deduplicate it.

    First occurrence wins, so the caller's ordering is kept.

    Returns:
        Deduplicated list of model ids

    Raises:
        ValidationError: If the list is empty or contains non-strings
    """
    if not isinstance(model_ids, (list, tuple)) or not model_ids:
        raise ValidationError("至少需要選擇一個模型")

    seen: list[str] = []
    for model_id in model_ids:
        if not isinstance(model_id, str) or not model_id.strip():
            raise ValidationError(f"無效的模型 ID: {model_id!r}")
        if model_id not in seen:
            seen.append(model_id)

    if len(seen) > MAX_MODELS_PER_REQUEST:
        raise ValidationError(
            f"一次最多選擇 {MAX_MODELS_PER_REQUEST} 個模型，收到 {len(seen)} 個"
        )
    return seen


def validate_answers(answers: Optional[Sequence[Any]]) -> None:
    """
    Validate the answer list handed to the consensus pass.

    Raises:
        ValidationError: If answers is missing or empty
    """
    if not answers or not isinstance(answers, (list, tuple)):
        raise ValidationError("缺少有效的 answers 參數")


def validate_usage_event(model_id: Any, total_tokens: Any) -> None:
    """
    Validate a usage event before it is stored.

    Args:
        model_id: Registry id of the model that served the call
        total_tokens: Total tokens the vendor reported for the call

    Raises:
        ValidationError: If model_id is missing or tokens are not a positive integer
    """
    if not isinstance(model_id, str) or not model_id.strip():
        raise ValidationError("缺少必要參數: modelId")

    if isinstance(total_tokens, bool) or not isinstance(total_tokens, int):
        raise ValidationError(
            f"totalTokens 必須是整數，收到 {type(total_tokens).__name__}"
        )

    if total_tokens <= 0:
        raise ValidationError(f"totalTokens 必須大於 0，收到 {total_tokens}")
