"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional
import time
import uuid


def now_ms() -> int:
    """Current time as milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ModelDescriptor:
    """A model the operator can pick. ``id`` is the stable routing key."""
    id: str
    display_name: str
    description: str
    provider: str
    provider_model: str
    disabled: bool = False
    disabled_reason: Optional[str] = None
    reasoning_tag: Optional[str] = None  # e.g. "think" for deepseek-r1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "description": self.description,
            "disabled": self.disabled,
            "disabledReason": self.disabled_reason,
        }


@dataclass
class CartFetchResult:
    """Outcome of fetching a store's cart page."""
    success: bool
    store_name: str
    variant_id: Optional[str] = None
    redirect_count: int = 0
    final_url: Optional[str] = None
    html: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "storeName": self.store_name,
            "variantId": self.variant_id,
        }
        if self.success:
            data.update(
                redirectCount=self.redirect_count,
                finalUrl=self.final_url,
                html=self.html,
            )
        else:
            data.update(message=self.error_message, errorKind=self.error_kind)
        return data


@dataclass
class TokenUsage:
    """Token counters reported by a vendor for one call."""
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class Generation:
    """Text and usage returned by the gateway for one call."""
    text: str
    usage: TokenUsage
    model_id: str
    provider_model: str
    latency_ms: int = 0
    finish_reason: Optional[str] = None
    reasoning: Optional[str] = None


class ResultState(str, Enum):
    """Per-model lifecycle within one analysis request."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (ResultState.SUCCESS, ResultState.FAILURE, ResultState.SKIPPED)


@dataclass
class ModelEvent:
    """A state transition for one model, pushed to the caller as it happens."""
    correlation_id: str
    model_id: str
    state: ResultState
    sequence: int
    timestamp: int = field(default_factory=now_ms)
    display_name: Optional[str] = None
    text: Optional[str] = None
    usage: Optional[TokenUsage] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "correlationId": self.correlation_id,
            "modelId": self.model_id,
            "modelName": self.display_name,
            "state": self.state.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }
        if self.text is not None:
            data["text"] = self.text
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.error_kind is not None:
            data["errorKind"] = self.error_kind
        if self.message is not None:
            data["message"] = self.message
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass
class ParsedAnswer:
    """A model's raw reply plus the selector extracted from it."""
    model_id: str
    model_display_name: str
    raw_text: str
    extracted_selector: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "modelId": self.model_id,
            "modelName": self.model_display_name,
            "rawText": self.raw_text,
            "answer": self.extracted_selector,
        }


@dataclass
class ConsensusRequest:
    """Input to the arbiter pass."""
    simplified_html: str
    answers: list[ParsedAnswer]
    arbiter_model_id: str


@dataclass
class UsageEvent:
    """One (user, model, tokens, time) tuple. Append-only."""
    model_id: str
    total_tokens: int
    user_id: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ModelUsage:
    """Usage rolled up for one model."""
    model_id: str
    display_name: str
    total_tokens: int
    count: int
    average_tokens: int

    def to_dict(self) -> dict:
        return {
            "modelId": self.model_id,
            "modelName": self.display_name,
            "totalTokens": self.total_tokens,
            "count": self.count,
            "averageTokens": self.average_tokens,
        }


@dataclass
class AggregatedUsage:
    """Usage rolled up for one user."""
    total_tokens: int
    total_calls: int
    model_usage: list[ModelUsage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalTokens": self.total_tokens,
            "totalCalls": self.total_calls,
            "modelUsage": [m.to_dict() for m in self.model_usage],
        }
