"""Global configuration for detect-cart."""

from __future__ import annotations

import copy
import json
import os
from typing import Dict, Any


DEFAULT_MODEL_ID = "chat-model-gemini"
DEFAULT_ARBITER_MODEL_ID = "chat-model-gemini"
DEFAULT_DB_PATH = "detect_cart.db"
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0

# Cookie names shared with the UI
MODELS_COOKIE = "detect-cart-models"
DEFAULT_MODEL_COOKIE = "chat-model"

# Shopify challenges non-browser clients on the cart path
BROWSER_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate, br",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

_disabled_models: Dict[str, str] = {}


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _float_env(var_name: str, default: float) -> float:
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_db_path() -> str:
    return os.getenv("DETECT_CART_DB_PATH", DEFAULT_DB_PATH)


def get_default_model_id() -> str:
    return os.getenv("DETECT_CART_DEFAULT_MODEL") or DEFAULT_MODEL_ID


def get_arbiter_model_id() -> str:
    return os.getenv("DETECT_CART_ARBITER_MODEL") or DEFAULT_ARBITER_MODEL_ID


def get_max_redirects() -> int:
    return int(_float_env("DETECT_CART_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS))


def get_fetch_timeout() -> float:
    return _float_env("DETECT_CART_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT_SECONDS)


def get_disabled_models() -> Dict[str, str]:
    """Return ``{model_id: reason}`` for models switched off at deploy time."""
    parsed = _parse_json_env("DETECT_CART_DISABLED_MODELS_JSON")
    if parsed:
        return {str(k): str(v) for k, v in parsed.items()}
    return dict(_disabled_models)


def set_disabled_models(disabled: Dict[str, str]) -> None:
    """Set disabled models at runtime (takes effect for new registries)."""
    if not isinstance(disabled, dict):
        raise ValueError("disabled must be a dict of model_id -> reason")
    global _disabled_models
    _disabled_models = copy.deepcopy(disabled)


def get_api_key(provider: str) -> str | None:
    """Return the vendor API key for ``provider`` from the environment."""
    env_names = {
        "openai": ("OPENAI_API_KEY",),
        "anthropic": ("ANTHROPIC_API_KEY",),
        "google": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        "fireworks": ("FIREWORKS_API_KEY",),
    }
    for name in env_names.get(provider, ()):
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None
