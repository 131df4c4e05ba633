"""
Model selection.

The operator's chosen models arrive in cookies set by the UI. They are
resolved once per request into a single ModelSelection that is passed to
the pipeline; nothing downstream reads cookies.
"""

import json
from dataclasses import dataclass, field
from typing import Mapping, Optional

from detect_cart.config import DEFAULT_MODEL_COOKIE, MODELS_COOKIE, get_arbiter_model_id, get_default_model_id
from detect_cart.registry import ModelRegistry


@dataclass
class ModelSelection:
    """Which models to fan out to, and which one arbitrates."""
    model_ids: list[str] = field(default_factory=list)
    default_model_id: str = ""
    arbiter_model_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "selectedModelIds": list(self.model_ids),
            "selectedModelId": self.default_model_id,
            "arbiterModelId": self.arbiter_model_id,
        }


def _parse_model_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    ids: list[str] = []
    for item in parsed:
        if isinstance(item, str) and item and item not in ids:
            ids.append(item)
    return ids


def resolve_selection(
    cookies: Mapping[str, str],
    registry: ModelRegistry,
    model_ids: Optional[list[str]] = None,
    arbiter_model_id: Optional[str] = None,
    consensus: bool = False,
) -> ModelSelection:
    """
    Resolve the effective selection for one request.

    Explicit ``model_ids`` win over the ``detect-cart-models`` cookie. Ids
    unknown to the registry are dropped; an empty result falls back to the
    default model. Disabled ids are kept so the fan-out can report them as
    skipped. With ``consensus`` set and no explicit arbiter, the default
    arbiter is used.
    """
    default_model_id = cookies.get(DEFAULT_MODEL_COOKIE) or get_default_model_id()
    if default_model_id not in registry:
        default_model_id = get_default_model_id()

    requested = model_ids if model_ids else _parse_model_list(cookies.get(MODELS_COOKIE))
    known = [m for m in dict.fromkeys(requested) if m in registry]

    return ModelSelection(
        model_ids=known or [default_model_id],
        default_model_id=default_model_id,
        arbiter_model_id=arbiter_model_id or (get_arbiter_model_id() if consensus else None),
    )


def selection_cookie_value(model_ids: list[str]) -> str:
    """Serialize a model list for the ``detect-cart-models`` cookie."""
    return json.dumps(list(dict.fromkeys(model_ids)), separators=(",", ":"))
