"""
detect-cart - Find the cart subtotal element on Shopify storefronts.

Fetch a cart page:
    from detect_cart import CartFetcher

    result = await CartFetcher().fetch_cart("demo")
    print(result.redirect_count, result.final_url)

Ask several models at once:
    from detect_cart import LLMGateway, FanOutAnalyzer, ModelRegistry, simplify_html

    gateway = LLMGateway(ModelRegistry.default())
    board = await FanOutAnalyzer(gateway).analyze(
        simplify_html(result.html), ["chat-model-gemini", "chat-model-claude"]
    )
    for answer in board.parsed_answers():
        print(answer.model_display_name, answer.extracted_selector)

Whole pipeline (fetch, fan-out, consensus):
    from detect_cart import PipelineCoordinator, ModelSelection

    coordinator = PipelineCoordinator.create()
    selection = ModelSelection(
        model_ids=["chat-model-gemini", "chat-model-small"],
        arbiter_model_id="chat-model-gemini",
    )
    result = await coordinator.analyze_store("demo", selection, user_id="user_123")
    print(result.consensus_selector)  # "document.querySelector('.totals__subtotal-value')"

Usage per user:
    from detect_cart import UsageRecorder, SQLiteUsageStore

    recorder = UsageRecorder(SQLiteUsageStore("detect_cart.db"))
    print(recorder.aggregate("user_123").to_dict())
"""

__version__ = "0.3.0"

from detect_cart.analyzer import FanOutAnalyzer, ResultBoard
from detect_cart.consensus import ConsensusAnalyzer
from detect_cart.errors import (
    DetectCartError,
    InputInvalid,
    Unauthorized,
    FetchError,
    ProviderError,
)
from detect_cart.fetcher import CartFetcher
from detect_cart.gateway import LLMGateway
from detect_cart.metrics import MetricsCollector
from detect_cart.models import (
    CartFetchResult,
    Generation,
    ModelDescriptor,
    ModelEvent,
    ParsedAnswer,
    ResultState,
    UsageEvent,
)
from detect_cart.parser import parse_answer, parse_selector
from detect_cart.pipeline import PipelineCoordinator, PipelineResult
from detect_cart.providers import LLMProvider, MockProvider
from detect_cart.recorder import UsageRecorder
from detect_cart.registry import ModelRegistry
from detect_cart.selection import ModelSelection, resolve_selection
from detect_cart.simplifier import simplify_html
from detect_cart.storage import InMemoryUsageStore, SQLiteUsageStore


__all__ = [
    # Fetch and simplify
    "CartFetcher",
    "CartFetchResult",
    "simplify_html",
    # Models and providers
    "ModelRegistry",
    "ModelDescriptor",
    "ModelSelection",
    "resolve_selection",
    "LLMGateway",
    "LLMProvider",
    "MockProvider",
    "Generation",
    # Analysis
    "FanOutAnalyzer",
    "ResultBoard",
    "ResultState",
    "ModelEvent",
    "ConsensusAnalyzer",
    "ParsedAnswer",
    "parse_answer",
    "parse_selector",
    "PipelineCoordinator",
    "PipelineResult",
    # Usage
    "UsageRecorder",
    "UsageEvent",
    "InMemoryUsageStore",
    "SQLiteUsageStore",
    "MetricsCollector",
    # Errors
    "DetectCartError",
    "InputInvalid",
    "Unauthorized",
    "FetchError",
    "ProviderError",
]
