"""
Consensus ("combined") analysis.

A single arbiter model reads every fan-out answer next to the HTML and
picks the most plausible selector. Unlike the fan-out this is a single
point of failure, so errors propagate to the caller.
"""

import logging
from typing import Optional

from detect_cart.errors import DetectCartError
from detect_cart.gateway import LLMGateway
from detect_cart.metrics import MetricsCollector
from detect_cart.models import ConsensusRequest, Generation, UsageEvent
from detect_cart.prompts import CONSENSUS_SYSTEM_PROMPT, build_consensus_prompt
from detect_cart.recorder import UsageRecorder
from detect_cart.validation import validate_answers

logger = logging.getLogger(__name__)


class ConsensusAnalyzer:
    """Asks one arbiter model to reconcile the fan-out answers."""

    def __init__(
        self,
        gateway: LLMGateway,
        recorder: Optional[UsageRecorder] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.gateway = gateway
        self.recorder = recorder
        self.metrics = metrics

    async def consensus(
        self,
        request: ConsensusRequest,
        user_id: Optional[str] = None,
        correlation_id: str = "-",
    ) -> Generation:
        """
        Run the arbiter pass.

        Answers whose selector could not be parsed are still sent, with a
        placeholder, even when every answer is unparsed.

        Args:
            request: HTML, parsed answers and arbiter model id.
            user_id: Owner of the usage event.
            correlation_id: Request id used in metrics.

        Returns:
            The arbiter's Generation.

        Raises:
            InputInvalid: If answers is empty (no gateway call is made).
            ProviderError: If the arbiter call fails.
        """
        validate_answers(request.answers)

        prompt = build_consensus_prompt(request.simplified_html, request.answers)
        try:
            generation = await self.gateway.generate(
                request.arbiter_model_id, CONSENSUS_SYSTEM_PROMPT, prompt
            )
        except DetectCartError as exc:
            logger.error("綜合分析時出錯: %s (%s)", exc.message, exc.kind)
            if self.metrics is not None:
                self.metrics.record_consensus(
                    correlation_id, request.arbiter_model_id, success=False, error_kind=exc.kind
                )
            raise

        total_tokens = generation.usage.total_tokens
        if self.recorder is not None and total_tokens > 0:
            self.recorder.record_later(UsageEvent(
                model_id=request.arbiter_model_id,
                total_tokens=total_tokens,
                user_id=user_id,
            ))
        if self.metrics is not None:
            self.metrics.record_consensus(
                correlation_id, request.arbiter_model_id, success=True, total_tokens=total_tokens
            )
        return generation
