"""
Pipeline coordinator.

Composes fetch -> simplify -> fan-out -> consensus for one store and threads
the caller's user id into every usage event.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from detect_cart.analyzer import Emit, FanOutAnalyzer, ResultBoard
from detect_cart.consensus import ConsensusAnalyzer
from detect_cart.fetcher import CartFetcher
from detect_cart.gateway import LLMGateway
from detect_cart.metrics import MetricsCollector
from detect_cart.models import CartFetchResult, ConsensusRequest, Generation, ParsedAnswer
from detect_cart.parser import parse_selector
from detect_cart.recorder import UsageRecorder
from detect_cart.registry import ModelRegistry
from detect_cart.selection import ModelSelection
from detect_cart.simplifier import simplify_html
from detect_cart.storage import InMemoryUsageStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything one ``analyze_store`` call produced."""
    correlation_id: str
    fetch: CartFetchResult
    simplified_html: Optional[str] = None
    board: Optional[ResultBoard] = None
    answers: list[ParsedAnswer] = field(default_factory=list)
    consensus: Optional[Generation] = None
    consensus_selector: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.fetch.success

    def to_dict(self) -> dict:
        data = {
            "correlationId": self.correlation_id,
            "fetch": {k: v for k, v in self.fetch.to_dict().items() if k != "html"},
            "answers": [a.to_dict() for a in self.answers],
        }
        if self.board is not None:
            data["results"] = [e.to_dict() for e in self.board.results()]
        if self.consensus is not None:
            data["consensus"] = {
                "modelId": self.consensus.model_id,
                "response": self.consensus.text,
                "usage": self.consensus.usage.to_dict(),
                "selector": self.consensus_selector,
            }
        return data


class PipelineCoordinator:
    """
    Top-level request handler for selector discovery.

    Example:
        ```python
        coordinator = PipelineCoordinator.create()
        selection = ModelSelection(model_ids=["chat-model-gemini"], arbiter_model_id="chat-model-gemini")
        result = await coordinator.analyze_store("demo", selection, user_id="u1", emit=print)
        print(result.consensus_selector)
        ```
    """

    def __init__(
        self,
        fetcher: CartFetcher,
        analyzer: FanOutAnalyzer,
        consensus: ConsensusAnalyzer,
        recorder: UsageRecorder,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.consensus_analyzer = consensus
        self.recorder = recorder
        self.metrics = metrics

    @classmethod
    def create(
        cls,
        registry: Optional[ModelRegistry] = None,
        gateway: Optional[LLMGateway] = None,
        recorder: Optional[UsageRecorder] = None,
        fetcher: Optional[CartFetcher] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "PipelineCoordinator":
        """Wire the default components, overriding any that are supplied."""
        registry = registry or (gateway.registry if gateway else ModelRegistry.default())
        gateway = gateway or LLMGateway(registry)
        recorder = recorder or UsageRecorder(InMemoryUsageStore(), registry)
        fetcher = fetcher or CartFetcher(metrics=metrics)
        return cls(
            fetcher=fetcher,
            analyzer=FanOutAnalyzer(gateway, recorder, metrics),
            consensus=ConsensusAnalyzer(gateway, recorder, metrics),
            recorder=recorder,
            metrics=metrics,
        )

    @property
    def registry(self) -> ModelRegistry:
        return self.analyzer.registry

    async def analyze_store(
        self,
        store_name: str,
        selection: ModelSelection,
        user_id: Optional[str] = None,
        emit: Optional[Emit] = None,
        correlation_id: Optional[str] = None,
    ) -> PipelineResult:
        """
        Run the full pipeline for one store.

        A failed fetch stops the pipeline; the result then carries the fetch
        error and no later stage runs. Consensus runs only when the selection
        names an arbiter.

        Args:
            store_name: Shopify store handle.
            selection: Models to fan out to and optional arbiter.
            user_id: Caller's user id (None for anonymous requests).
            emit: Receives per-model events as they happen.
            correlation_id: Request id (generated if omitted).

        Returns:
            PipelineResult

        Raises:
            InputInvalid: Bad store name or empty model list.
            ProviderError: The consensus call failed.
        """
        correlation_id = correlation_id or uuid.uuid4().hex
        fetch = await self.fetcher.fetch_cart(store_name, correlation_id=correlation_id)
        result = PipelineResult(correlation_id=correlation_id, fetch=fetch)
        if not fetch.success:
            return result

        result.simplified_html = simplify_html(fetch.html or "")
        result.board = await self.analyzer.analyze(
            result.simplified_html,
            selection.model_ids,
            emit,
            user_id=user_id,
            board=ResultBoard(correlation_id),
        )
        result.answers = result.board.parsed_answers()

        if selection.arbiter_model_id and result.answers:
            result.consensus = await self.run_consensus(
                result.simplified_html,
                result.answers,
                selection.arbiter_model_id,
                user_id=user_id,
                correlation_id=correlation_id,
            )
            result.consensus_selector = parse_selector(result.consensus.text)
        elif selection.arbiter_model_id:
            logger.info("No model replied for %s; consensus skipped", correlation_id)

        return result

    async def run_consensus(
        self,
        simplified_html: str,
        answers: list[ParsedAnswer],
        arbiter_model_id: str,
        user_id: Optional[str] = None,
        correlation_id: str = "-",
    ) -> Generation:
        """Run the arbiter pass. Does not start if the request was cancelled."""
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            raise asyncio.CancelledError()
        return await self.consensus_analyzer.consensus(
            ConsensusRequest(
                simplified_html=simplified_html,
                answers=answers,
                arbiter_model_id=arbiter_model_id,
            ),
            user_id=user_id,
            correlation_id=correlation_id,
        )

    async def rerun_model(
        self,
        board: ResultBoard,
        simplified_html: str,
        model_id: str,
        user_id: Optional[str] = None,
        emit: Optional[Emit] = None,
    ) -> ResultBoard:
        """Re-run one model; its new result supersedes the previous one."""
        return await self.analyzer.analyze(
            simplified_html, [model_id], emit, user_id=user_id, board=board
        )
