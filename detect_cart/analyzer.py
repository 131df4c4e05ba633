"""
Fan-out analysis.

Sends the same prompt to every selected model at once and pushes each
model's state transitions to the caller as they happen. Per-model failures
are absorbed into that model's result; the fan-out always runs to
completion for every enabled model.
"""

import asyncio
import inspect
import itertools
import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, Optional, Union

from detect_cart.errors import DetectCartError, ProviderUnknown
from detect_cart.gateway import LLMGateway
from detect_cart.metrics import MetricsCollector
from detect_cart.models import ModelEvent, ParsedAnswer, ResultState, UsageEvent
from detect_cart.parser import parse_answer
from detect_cart.prompts import ANALYSIS_SYSTEM_PROMPT, build_analysis_prompt
from detect_cart.recorder import UsageRecorder
from detect_cart.registry import ModelRegistry
from detect_cart.validation import validate_model_ids

logger = logging.getLogger(__name__)

Emit = Callable[[ModelEvent], Union[None, Awaitable[None]]]

UNAVAILABLE_REASON = "unavailable"


class ResultBoard:
    """
    The live per-model results of one analysis request.

    Holds exactly one result per model. Events are ordered by sequence; an
    event older than the one already held is ignored, so a re-run always
    supersedes what came before it.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or uuid.uuid4().hex
        self._results: dict[str, ModelEvent] = {}
        self._sequence = itertools.count(1)

    def next_sequence(self) -> int:
        return next(self._sequence)

    def apply(self, event: ModelEvent) -> bool:
        """Apply an event. Returns False if it was stale or for another request."""
        if event.correlation_id != self.correlation_id:
            return False
        current = self._results.get(event.model_id)
        if current is not None and current.sequence > event.sequence:
            return False
        self._results[event.model_id] = event
        return True

    def get(self, model_id: str) -> Optional[ModelEvent]:
        return self._results.get(model_id)

    def results(self) -> list[ModelEvent]:
        return list(self._results.values())

    def all_terminal(self) -> bool:
        return all(e.state.terminal for e in self._results.values())

    def by_state(self, state: ResultState) -> list[ModelEvent]:
        return [e for e in self._results.values() if e.state == state]

    def parsed_answers(self) -> list[ParsedAnswer]:
        """Parsed answers for every model that replied (selector may be None)."""
        return [
            parse_answer(e.model_id, e.display_name or e.model_id, e.text or "")
            for e in self.by_state(ResultState.SUCCESS)
        ]

    def to_dict(self) -> dict:
        return {
            "correlationId": self.correlation_id,
            "results": [e.to_dict() for e in self._results.values()],
        }


class FanOutAnalyzer:
    """
    Runs the selector prompt against several models concurrently.

    Example:
        ```python
        analyzer = FanOutAnalyzer(gateway, recorder)
        board = await analyzer.analyze(html, ["chat-model-gemini", "chat-model-claude"], emit=print)
        for answer in board.parsed_answers():
            print(answer.model_display_name, answer.extracted_selector)
        ```
    """

    def __init__(
        self,
        gateway: LLMGateway,
        recorder: Optional[UsageRecorder] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.gateway = gateway
        self.recorder = recorder
        self.metrics = metrics

    @property
    def registry(self) -> ModelRegistry:
        return self.gateway.registry

    async def analyze(
        self,
        simplified_html: str,
        model_ids: Iterable[str],
        emit: Optional[Emit] = None,
        *,
        user_id: Optional[str] = None,
        board: Optional[ResultBoard] = None,
    ) -> ResultBoard:
        """
        Fan the analysis prompt out to ``model_ids``.

        Args:
            simplified_html: Output of ``simplify_html``.
            model_ids: Requested models (deduplicated, must be non-empty).
            emit: Callback (sync or async) receiving every ModelEvent.
            user_id: Owner of the usage events, None for anonymous callers.
            board: Existing board to continue (re-runs share its sequence).

        Returns:
            The ResultBoard, with every requested model in a terminal state.
        """
        ids = validate_model_ids(list(model_ids))
        board = board or ResultBoard()

        for model_id in ids:
            board.apply(ModelEvent(
                correlation_id=board.correlation_id,
                model_id=model_id,
                display_name=self.registry.display_name(model_id),
                state=ResultState.PENDING,
                sequence=0,
            ))

        enabled = [m for m in ids if self.registry.enabled(m)]
        disabled = [m for m in ids if not self.registry.enabled(m)]

        for model_id in disabled:
            model = self.registry.get(model_id)
            reason = (model.disabled_reason if model else None) or UNAVAILABLE_REASON
            event = self._event(board, model_id, ResultState.SKIPPED, reason=reason)
            await self._emit(board, emit, event)
            self._record_metrics(board, event)

        for model_id in enabled:
            await self._emit(board, emit, self._event(board, model_id, ResultState.PROCESSING))

        system = ANALYSIS_SYSTEM_PROMPT
        prompt = build_analysis_prompt(simplified_html)
        await asyncio.gather(*(
            self._run_model(board, model_id, system, prompt, emit, user_id)
            for model_id in enabled
        ))
        return board

    async def _run_model(
        self,
        board: ResultBoard,
        model_id: str,
        system: str,
        prompt: str,
        emit: Optional[Emit],
        user_id: Optional[str],
    ) -> None:
        start = time.monotonic()
        try:
            generation = await self.gateway.generate(model_id, system, prompt)
        except asyncio.CancelledError:
            raise
        except DetectCartError as exc:
            event = self._event(
                board, model_id, ResultState.FAILURE, error_kind=exc.kind, message=exc.message
            )
        except Exception as exc:
            logger.exception("Unexpected error from %s", model_id)
            error = ProviderUnknown(str(exc) or type(exc).__name__)
            event = self._event(
                board, model_id, ResultState.FAILURE, error_kind=error.kind, message=error.message
            )
        else:
            event = self._event(
                board, model_id, ResultState.SUCCESS, text=generation.text, usage=generation.usage
            )
            if self.recorder is not None and generation.usage.total_tokens > 0:
                self.recorder.record_later(UsageEvent(
                    model_id=model_id,
                    total_tokens=generation.usage.total_tokens,
                    user_id=user_id,
                ))

        await self._emit(board, emit, event)
        self._record_metrics(board, event, latency_ms=int((time.monotonic() - start) * 1000))

    def _event(self, board: ResultBoard, model_id: str, state: ResultState, **fields) -> ModelEvent:
        return ModelEvent(
            correlation_id=board.correlation_id,
            model_id=model_id,
            display_name=self.registry.display_name(model_id),
            state=state,
            sequence=board.next_sequence(),
            **fields,
        )

    async def _emit(self, board: ResultBoard, emit: Optional[Emit], event: ModelEvent) -> None:
        board.apply(event)
        if emit is None:
            return
        try:
            result = emit(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("emit callback failed for %s (%s)", event.model_id, event.state.value)

    def _record_metrics(
        self,
        board: ResultBoard,
        event: ModelEvent,
        latency_ms: Optional[int] = None,
    ) -> None:
        if self.metrics is None:
            return
        self.metrics.record_model_result(
            correlation_id=board.correlation_id,
            model_id=event.model_id,
            state=event.state.value,
            latency_ms=latency_ms if event.state != ResultState.SKIPPED else None,
            total_tokens=event.usage.total_tokens if event.usage else None,
            error_kind=event.error_kind,
        )
