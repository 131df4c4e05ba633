"""Tests for the consensus (combined) analysis."""

import asyncio

import pytest

from conftest import VendorError, mock_gateway
from detect_cart.consensus import ConsensusAnalyzer
from detect_cart.errors import InputInvalid, ProviderFatal
from detect_cart.metrics import MetricsCollector
from detect_cart.models import ConsensusRequest, ParsedAnswer
from detect_cart.parser import parse_selector
from detect_cart.prompts import CONSENSUS_SYSTEM_PROMPT
from detect_cart.recorder import UsageRecorder
from detect_cart.registry import ModelRegistry
from detect_cart.storage import InMemoryUsageStore


HTML = "<div class='totals'><span class='subtotal'>$30.00</span></div>"


def answer(model_id, name, selector):
    return ParsedAnswer(model_id=model_id, model_display_name=name, raw_text="...", extracted_selector=selector)


class TestConsensusAnalyzer:
    """Test ConsensusAnalyzer.consensus."""

    def setup_method(self):
        """Set up test fixtures."""
        self.gateway, self.mock = mock_gateway(replies={
            "chat-model-gemini": "1. .subtotal\n2. it is the only total\noutput:document.querySelector('.subtotal')",
        })
        self.recorder = UsageRecorder(InMemoryUsageStore(), self.gateway.registry)
        self.metrics = MetricsCollector(enable_logging=False)
        self.analyzer = ConsensusAnalyzer(self.gateway, self.recorder, self.metrics)

    def run(self, answers, arbiter="chat-model-gemini", user_id=None):
        async def go():
            try:
                return await self.analyzer.consensus(
                    ConsensusRequest(simplified_html=HTML, answers=answers, arbiter_model_id=arbiter),
                    user_id=user_id,
                )
            finally:
                await self.recorder.drain()

        return asyncio.run(go())

    def test_single_arbiter_call(self):
        """Test exactly one gateway call is made with the arbiter."""
        generation = self.run([
            answer("chat-model-small", "gpt-4o-mini", "document.querySelector('.subtotal')"),
            answer("chat-model-claude", "claude-3-7-sonnet-20250219", "document.querySelector('#total')"),
        ])

        assert len(self.mock.calls) == 1
        assert self.mock.calls[0]["model_id"] == "chat-model-gemini"
        assert self.mock.calls[0]["system"] == CONSENSUS_SYSTEM_PROMPT
        assert parse_selector(generation.text) == "document.querySelector('.subtotal')"

    def test_prompt_lists_every_answer(self):
        """Test the prompt names each model with its selector, then the HTML."""
        self.run([
            answer("chat-model-small", "gpt-4o-mini", "document.querySelector('.subtotal')"),
            answer("chat-model-claude", "claude-3-7-sonnet-20250219", None),
        ])

        prompt = self.mock.calls[0]["prompt"]
        assert "模型 gpt-4o-mini：document.querySelector('.subtotal')" in prompt
        assert "模型 claude-3-7-sonnet-20250219：無法解析出有效答案" in prompt
        assert prompt.index("模型 gpt-4o-mini") < prompt.index(HTML)
        assert prompt.rstrip().endswith("output:document.querySelector('你認為最合適的選擇器')")

    def test_all_unparsed_answers_still_call_arbiter(self):
        """Test the arbiter runs even when no answer had a selector."""
        self.run([answer("chat-model-small", "gpt-4o-mini", None)])

        assert len(self.mock.calls) == 1
        assert "無法解析出有效答案" in self.mock.calls[0]["prompt"]

    def test_empty_answers_rejected(self):
        """Test empty answers raise InputInvalid without calling the gateway."""
        with pytest.raises(InputInvalid, match="缺少有效的 answers 參數"):
            self.run([])

        assert self.mock.calls == []

    def test_usage_recorded(self):
        """Test arbiter usage is recorded for the caller."""
        generation = self.run([answer("chat-model-small", "gpt-4o-mini", ".a")], user_id="user_1")

        events = self.recorder.store.list_events("user_1")
        assert len(events) == 1
        assert events[0].model_id == "chat-model-gemini"
        assert events[0].total_tokens == generation.usage.total_tokens

    def test_errors_propagate(self):
        """Test arbiter failures are raised to the caller."""
        self.mock.replies["chat-model-gemini"] = VendorError("bad key", status_code=401)

        with pytest.raises(ProviderFatal):
            self.run([answer("chat-model-small", "gpt-4o-mini", ".a")])

        assert self.recorder.store.list_events() == []
        assert self.metrics.get_stats()["counters"]["consensus_failed"] == 1

    def test_disabled_arbiter_rejected(self):
        """Test a disabled arbiter is refused before any call."""
        gateway, mock = mock_gateway(registry=ModelRegistry.default(disabled={"chat-model-claude": "off"}))
        analyzer = ConsensusAnalyzer(gateway)

        with pytest.raises(InputInvalid):
            asyncio.run(analyzer.consensus(ConsensusRequest(
                simplified_html=HTML,
                answers=[answer("chat-model-small", "gpt-4o-mini", ".a")],
                arbiter_model_id="chat-model-claude",
            )))
        assert mock.calls == []
