"""
Command-line interface for detect-cart.

Provides commands for:
- Listing the model catalogue
- Fetching a store's cart page
- Running the full analysis pipeline
- Reporting per-user token usage
- Serving the HTTP API
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from detect_cart.config import get_db_path, get_default_model_id
from detect_cart.errors import DetectCartError
from detect_cart.fetcher import CartFetcher
from detect_cart.gateway import LLMGateway
from detect_cart.metrics import MetricsCollector
from detect_cart.models import ModelEvent, ResultState
from detect_cart.pipeline import PipelineCoordinator
from detect_cart.providers import MockProvider
from detect_cart.recorder import UsageRecorder
from detect_cart.registry import ModelRegistry
from detect_cart.selection import ModelSelection
from detect_cart.simplifier import simplify_html
from detect_cart.storage import SQLiteUsageStore


def _print_event(event: ModelEvent) -> None:
    if event.state == ResultState.PROCESSING:
        print(f"  ... {event.display_name}")
    elif event.state == ResultState.SUCCESS:
        tokens = event.usage.total_tokens if event.usage else 0
        print(f"  OK  {event.display_name} ({tokens} tokens)")
    elif event.state == ResultState.FAILURE:
        print(f"  ERR {event.display_name}: {event.message} [{event.error_kind}]")
    elif event.state == ResultState.SKIPPED:
        print(f"  --  {event.display_name}: skipped ({event.reason})")


def cmd_models(args):
    """List the model catalogue."""
    registry = ModelRegistry.default()
    default_id = get_default_model_id()

    print("\n" + "=" * 60)
    print("DETECT-CART MODELS")
    print("=" * 60)
    for model in registry.all():
        marker = "*" if model.id == default_id else " "
        status = f"disabled: {model.disabled_reason or 'unavailable'}" if model.disabled else "enabled"
        print(f" {marker} {model.id:<24} {model.display_name:<28} {status}")
        print(f"   {'':<24} {model.description}")
    print("=" * 60)


def cmd_fetch(args):
    """Fetch one store's cart page."""
    result = asyncio.run(CartFetcher().fetch_cart(args.store))

    print("\n" + "=" * 60)
    print("DETECT-CART FETCH")
    print("=" * 60)
    print(f"Store: {result.store_name}")
    print(f"Variant: {result.variant_id or '-'}")
    if not result.success:
        print(f"Failed: {result.error_message} [{result.error_kind}]")
        print("=" * 60)
        sys.exit(1)

    simplified = simplify_html(result.html or "")
    print(f"Redirects: {result.redirect_count}")
    print(f"Final URL: {result.final_url}")
    print(f"HTML: {len(result.html or ''):,} chars -> {len(simplified):,} simplified")
    print("=" * 60)

    if args.html:
        output_path = Path(args.html)
        output_path.write_text(simplified, encoding="utf-8")
        print(f"\nSimplified HTML saved to: {output_path}")


def cmd_analyze(args):
    """Run fetch, fan-out and consensus for one store."""
    registry = ModelRegistry.default()
    providers = None
    if args.dry_run:
        mock = MockProvider()
        providers = {"openai": mock, "fireworks": mock, "anthropic": mock, "google": mock}
    gateway = LLMGateway(registry, providers)
    recorder = UsageRecorder(SQLiteUsageStore(db_path=args.db or get_db_path()), registry)
    metrics = MetricsCollector(metrics_file=Path(args.metrics) if args.metrics else None, enable_logging=False)
    coordinator = PipelineCoordinator.create(gateway=gateway, recorder=recorder, metrics=metrics)

    selection = ModelSelection(
        model_ids=args.models or [get_default_model_id()],
        default_model_id=get_default_model_id(),
        arbiter_model_id=args.arbiter,
    )

    print("\n" + "=" * 60)
    print("DETECT-CART ANALYSIS")
    print("=" * 60)
    print(f"Store: {args.store}")
    print(f"Models: {', '.join(selection.model_ids)}")
    print(f"Arbiter: {selection.arbiter_model_id or '-'}")
    print()

    async def run():
        try:
            return await coordinator.analyze_store(
                args.store, selection, user_id=args.user, emit=_print_event
            )
        finally:
            await recorder.close()

    try:
        result = asyncio.run(run())
    except DetectCartError as exc:
        print(f"\nError: {exc.message} [{exc.kind}]")
        sys.exit(1)

    if not result.success:
        print(f"Fetch failed: {result.fetch.error_message} [{result.fetch.error_kind}]")
        sys.exit(1)

    print()
    print("-" * 60)
    print("ANSWERS")
    print("-" * 60)
    for answer in result.answers:
        print(f"  {answer.model_display_name}: {answer.extracted_selector or '-'}")

    if result.consensus is not None:
        print()
        print("-" * 60)
        print("CONSENSUS")
        print("-" * 60)
        print(result.consensus.text)
        print()
        print(f"Selector: {result.consensus_selector or '-'}")
    print("=" * 60)


def cmd_usage(args):
    """Show token usage for a user."""
    store = SQLiteUsageStore(db_path=args.db or get_db_path())
    try:
        usage = UsageRecorder(store).aggregate(args.user)
    finally:
        store.close()

    print("\n" + "=" * 60)
    print(f"TOKEN USAGE: {args.user}")
    print("=" * 60)
    print(f"Total tokens: {usage.total_tokens:,}")
    print(f"Total calls: {usage.total_calls}")
    print()
    for model in usage.model_usage:
        print(
            f"  {model.display_name:<28} {model.total_tokens:>10,} tokens "
            f"{model.count:>5} calls  avg {model.average_tokens:,}"
        )
    print("=" * 60)


def cmd_serve(args):
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="detect-cart: Shopify cart subtotal selector discovery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List models
  detect-cart models

  # Fetch a cart page and save the simplified HTML
  detect-cart fetch demo-store --html cart.html

  # Ask two models, then let Gemini arbitrate
  detect-cart analyze demo-store --models chat-model-gemini chat-model-claude --arbiter chat-model-gemini

  # Show a user's token usage
  detect-cart usage user_123

  # Serve the API
  detect-cart serve --port 8000
""",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("models", help="List available models")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch a store's cart page")
    fetch_parser.add_argument("store", help="Store handle or myshopify.com host")
    fetch_parser.add_argument("--html", help="Path to save the simplified HTML")

    analyze_parser = subparsers.add_parser("analyze", help="Find the subtotal selector for a store")
    analyze_parser.add_argument("store", help="Store handle or myshopify.com host")
    analyze_parser.add_argument("--models", "-m", nargs="+", help="Model ids to fan out to")
    analyze_parser.add_argument("--arbiter", "-a", help="Model id for the consensus pass")
    analyze_parser.add_argument("--user", "-u", help="User id to record usage under")
    analyze_parser.add_argument("--db", help="SQLite usage database path")
    analyze_parser.add_argument("--metrics", help="Path to write metrics JSONL")
    analyze_parser.add_argument("--dry-run", action="store_true",
                                help="Use canned model replies instead of vendor APIs")

    usage_parser = subparsers.add_parser("usage", help="Show token usage for a user")
    usage_parser.add_argument("user", help="User id")
    usage_parser.add_argument("--db", help="SQLite usage database path")

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", "-p", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "models": cmd_models,
        "fetch": cmd_fetch,
        "analyze": cmd_analyze,
        "usage": cmd_usage,
        "serve": cmd_serve,
    }

    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
