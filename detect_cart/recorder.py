"""
Token usage recording and aggregation.

Recording is fire-and-forget with respect to the user-visible request:
``record`` never raises. Validation and storage failures are logged and the
event is dropped.
"""

import asyncio
import logging
from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from detect_cart.errors import InputInvalid, RecorderFailure
from detect_cart.models import AggregatedUsage, ModelUsage, UsageEvent
from detect_cart.registry import ModelRegistry
from detect_cart.storage import InMemoryUsageStore, UsageStore
from detect_cart.validation import validate_usage_event

logger = logging.getLogger(__name__)


def round_half_up(total: int, count: int) -> int:
    """Integer average rounded half away from zero (no banker's rounding)."""
    if count == 0:
        return 0
    return int((Decimal(total) / Decimal(count)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class UsageRecorder:
    """
    Persists usage events and derives per-user aggregates.

    Example:
        ```python
        recorder = UsageRecorder(SQLiteUsageStore("usage.db"), registry)
        recorder.record_later(UsageEvent(model_id="chat-model-gemini", total_tokens=812, user_id="u1"))
        await recorder.drain()
        recorder.aggregate("u1").total_tokens  # 812
        ```
    """

    def __init__(
        self,
        store: Optional[UsageStore] = None,
        registry: Optional[ModelRegistry] = None,
    ):
        self.store = store if store is not None else InMemoryUsageStore()
        self.registry = registry if registry is not None else ModelRegistry.default()
        self._pending: set[asyncio.Task] = set()
        self.dropped = 0

    # =========================================================================
    # Recording
    # =========================================================================

    async def record(self, event: UsageEvent) -> bool:
        """
        Store one usage event.

        Returns:
            True if stored, False if the event was rejected or the store failed.
        """
        try:
            validate_usage_event(event.model_id, event.total_tokens)
        except InputInvalid as exc:
            self.dropped += 1
            logger.warning("Rejected usage event for %r: %s", event.model_id, exc)
            return False

        try:
            await asyncio.to_thread(self.store.add_event, event)
        except Exception as exc:
            self.dropped += 1
            failure = RecorderFailure(f"儲存 Token 使用量時出錯: {exc}")
            logger.error("%s (model=%s, user=%s)", failure, event.model_id, event.user_id, exc_info=True)
            return False

        logger.info("Token usage stored: %s %s", event.model_id, event.total_tokens)
        return True

    def record_later(self, event: UsageEvent) -> asyncio.Task:
        """Schedule ``record`` in the background and return immediately."""
        task = asyncio.get_running_loop().create_task(self.record(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for background writes scheduled with ``record_later``."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Drain background writes, then close the store if it holds a connection."""
        await self.drain()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    @property
    def pending(self) -> int:
        return len(self._pending)

    # =========================================================================
    # Aggregation
    # =========================================================================

    def aggregate(self, user_id: str) -> AggregatedUsage:
        """
        Roll up a user's usage by model.

        Args:
            user_id: The user whose events are aggregated.

        Returns:
            AggregatedUsage with totals and per-model breakdown (first-seen order).
        """
        if not user_id:
            raise InputInvalid("缺少使用者 ID")

        events = self.store.list_events(user_id)
        grouped: "OrderedDict[str, list[int]]" = OrderedDict()
        for event in events:
            totals = grouped.setdefault(event.model_id, [0, 0])
            totals[0] += int(event.total_tokens)
            totals[1] += 1

        model_usage = [
            ModelUsage(
                model_id=model_id,
                display_name=self.registry.display_name(model_id),
                total_tokens=total,
                count=count,
                average_tokens=round_half_up(total, count),
            )
            for model_id, (total, count) in grouped.items()
        ]

        return AggregatedUsage(
            total_tokens=sum(m.total_tokens for m in model_usage),
            total_calls=len(events),
            model_usage=model_usage,
        )
