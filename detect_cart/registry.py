"""
Model registry.

The catalogue is fixed at build time. Disabled entries stay visible so the
UI can show them greyed out with a reason, but the gateway refuses to call
them.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from detect_cart.config import get_disabled_models
from detect_cart.errors import InputInvalid
from detect_cart.models import ModelDescriptor


DEFAULT_MODELS: List[ModelDescriptor] = [
    ModelDescriptor(
        id="chat-model-small",
        display_name="gpt-4o-mini",
        description="Small model for fast, lightweight tasks",
        provider="openai",
        provider_model="gpt-4o-mini",
    ),
    ModelDescriptor(
        id="chat-model-large",
        display_name="gpt-4o",
        description="Large model for complex, multi-step tasks",
        provider="openai",
        provider_model="gpt-4o",
    ),
    ModelDescriptor(
        id="chat-model-reasoning",
        display_name="deepseek-r1",
        description="Uses advanced reasoning",
        provider="fireworks",
        provider_model="accounts/fireworks/models/deepseek-r1",
        reasoning_tag="think",
    ),
    ModelDescriptor(
        id="chat-model-gemini",
        display_name="gemini-2.0-flash",
        description="Uses Gemini 2.0 Flash",
        provider="google",
        provider_model="gemini-2.0-flash",
    ),
    ModelDescriptor(
        id="chat-model-gemini-pro",
        display_name="gemini-2.0-pro-exp-02-05",
        description="Uses Gemini 2.0 Pro",
        provider="google",
        provider_model="gemini-2.0-pro-exp-02-05",
    ),
    ModelDescriptor(
        id="chat-model-claude",
        display_name="claude-3-7-sonnet-20250219",
        description="Uses Claude 3.7 Sonnet",
        provider="anthropic",
        provider_model="claude-3-7-sonnet-20250219",
    ),
]


class ModelRegistry:
    """
    Read-only lookup over model descriptors.

    Example:
        ```python
        registry = ModelRegistry.default()
        registry.enabled("chat-model-gemini")   # True
        registry.display_name("unknown-id")     # "unknown-id"
        ```
    """

    def __init__(self, models: Iterable[ModelDescriptor]):
        self._models: Dict[str, ModelDescriptor] = {}
        for model in models:
            if model.id in self._models:
                raise ValueError(f"duplicate model id: {model.id}")
            self._models[model.id] = model

    @classmethod
    def default(cls, disabled: Optional[Dict[str, str]] = None) -> "ModelRegistry":
        """Build the stock catalogue, applying deploy-time disabled overrides."""
        overrides = get_disabled_models() if disabled is None else disabled
        models = [
            replace(m, disabled=True, disabled_reason=overrides[m.id] or None)
            if m.id in overrides
            else m
            for m in DEFAULT_MODELS
        ]
        return cls(models)

    def all(self) -> List[ModelDescriptor]:
        return list(self._models.values())

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        return self._models.get(model_id)

    def require(self, model_id: str) -> ModelDescriptor:
        """Return the descriptor or raise InputInvalid for unknown ids."""
        model = self._models.get(model_id)
        if model is None:
            raise InputInvalid(f"未知的模型: {model_id}")
        return model

    def enabled(self, model_id: str) -> bool:
        model = self._models.get(model_id)
        return model is not None and not model.disabled

    def display_name(self, model_id: str) -> str:
        model = self._models.get(model_id)
        return model.display_name if model else model_id

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)
