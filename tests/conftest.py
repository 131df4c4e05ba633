"""Shared test helpers: a fake Shopify storefront and provider wiring."""

import sqlite3
from typing import Optional

import httpx
import pytest

from detect_cart.gateway import LLMGateway
from detect_cart.models import ModelDescriptor
from detect_cart.providers import MockProvider
from detect_cart.registry import ModelRegistry
from detect_cart.storage import InMemoryUsageStore


DEFAULT_PRODUCTS = {"products": [{"title": "Tee", "variants": [{"id": 123}]}]}
DEFAULT_CART_HTML = (
    "<html><head><title>Cart</title></head><body>"
    "<div class=\"cart\"><span class=\"totals__subtotal-value\">$30.00</span></div>"
    "<script>window.track('cart')</script>"
    "</body></html>"
)


class FakeShop:
    """
    A storefront served through httpx.MockTransport.

    ``/products.json`` returns ``products``; the cart URL and each
    ``/hop/N`` redirect until ``redirects`` hops were taken (or forever
    with ``loop_forever``), then serve ``html``. ``set_cookies`` maps a hop
    index to the Set-Cookie headers sent on that hop.
    """

    def __init__(
        self,
        products: Optional[dict] = None,
        redirects: int = 2,
        html: str = DEFAULT_CART_HTML,
        set_cookies: Optional[dict[int, list[str]]] = None,
        loop_forever: bool = False,
        products_status: int = 200,
    ):
        self.products = DEFAULT_PRODUCTS if products is None else products
        self.redirects = redirects
        self.html = html
        self.set_cookies = set_cookies or {}
        self.loop_forever = loop_forever
        self.products_status = products_status
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/products.json":
            return httpx.Response(self.products_status, json=self.products)

        if request.url.path.startswith("/cart/"):
            hop = 0
        else:
            hop = int(request.url.path.rsplit("/", 1)[1])

        cookies = [("set-cookie", value) for value in self.set_cookies.get(hop, [])]
        if self.loop_forever or hop < self.redirects:
            return httpx.Response(302, headers=[("location", f"/hop/{hop + 1}"), *cookies])
        return httpx.Response(200, text=self.html, headers=cookies)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def cart_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/products.json"]


class VendorError(Exception):
    """Looks like a vendor SDK error: carries an HTTP status and a status string."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class BrokenStore(InMemoryUsageStore):
    """A usage store whose writes always fail."""

    def add_event(self, event):
        raise sqlite3.OperationalError("database is locked")


class UnreadableStore(InMemoryUsageStore):
    """A usage store whose reads always fail."""

    def list_events(self, user_id=None):
        raise sqlite3.OperationalError("no such table: token_usage")


def mock_gateway(
    replies: Optional[dict] = None,
    registry: Optional[ModelRegistry] = None,
) -> tuple[LLMGateway, MockProvider]:
    """Gateway over the stock catalogue with every vendor served by one MockProvider."""
    mock = MockProvider(replies=replies)
    registry = registry or ModelRegistry.default(disabled={})
    providers = {"openai": mock, "fireworks": mock, "anthropic": mock, "google": mock, "mock": mock}
    return LLMGateway(registry, providers), mock


def mock_descriptor(model_id: str, **fields) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        display_name=fields.pop("display_name", model_id.upper()),
        description="test model",
        provider="mock",
        provider_model=f"mock-{model_id}",
        **fields,
    )


@pytest.fixture
def shop() -> FakeShop:
    return FakeShop()
