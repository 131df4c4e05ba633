"""
Shopify cart fetcher.

Shopify only serves a session-cookied cart page to clients that look like a
browser and carry the cookies set along the ``/cart/...`` redirect chain, so
redirects are followed by hand and cookies are carried forward manually.
Only ``name=value`` pairs are replayed; cookie attributes are dropped.
"""

import logging
import time
from collections import OrderedDict
from typing import Optional
from urllib.parse import urljoin

import httpx

from detect_cart.config import BROWSER_HEADERS, get_fetch_timeout, get_max_redirects
from detect_cart.errors import BadRedirect, FetchError, NetworkFailure, NoVariant, TooManyRedirects
from detect_cart.metrics import MetricsCollector
from detect_cart.models import CartFetchResult
from detect_cart.validation import validate_store_name

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 307, 308})
CART_QUANTITY = 3


def products_url(store_name: str) -> str:
    return f"https://{store_name}.myshopify.com/products.json"


def cart_url(store_name: str, variant_id: str) -> str:
    return f"http://{store_name}.myshopify.com/cart/{variant_id}:{CART_QUANTITY}?storefront=true"


class CookieJar:
    """
    Request-local ``name=value`` jar.

    A later value for an existing name replaces it in place; new names are
    appended, so the header keeps first-set order.
    """

    def __init__(self):
        self._cookies: "OrderedDict[str, str]" = OrderedDict()

    def absorb(self, set_cookie_headers: list[str]) -> None:
        for header in set_cookie_headers:
            pair = header.split(";", 1)[0].strip()
            if not pair:
                continue
            name, sep, value = pair.partition("=")
            name = name.strip()
            if not sep or not name:
                continue
            self._cookies[name] = value.strip()

    def header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())

    def __len__(self) -> int:
        return len(self._cookies)


class CartFetcher:
    """
    Fetches a store's cart page the way a browser would.

    Example:
        ```python
        fetcher = CartFetcher()
        result = await fetcher.fetch_cart("demo")
        if result.success:
            print(result.final_url, len(result.html))
        ```
    """

    def __init__(
        self,
        max_redirects: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize fetcher.

        Args:
            max_redirects: Redirect hop limit (default 5).
            timeout: Per-request timeout in seconds.
            transport: Custom httpx transport (tests use httpx.MockTransport).
            metrics: Optional metrics collector.
        """
        self.max_redirects = get_max_redirects() if max_redirects is None else max_redirects
        self.timeout = get_fetch_timeout() if timeout is None else timeout
        self.transport = transport
        self.metrics = metrics

    async def fetch_cart(self, store_name: str, correlation_id: str = "-") -> CartFetchResult:
        """
        Fetch the cart page for ``store_name``.

        Never raises for fetch problems; they come back as a failed result
        carrying the error kind and message.

        Raises:
            InputInvalid: If the store name is malformed.
        """
        handle = validate_store_name(store_name)
        start = time.monotonic()
        result = CartFetchResult(success=False, store_name=handle)

        try:
            async with self._client() as client:
                result.variant_id = await self._fetch_variant_id(client, handle)
                await self._fetch_cart_page(client, handle, result)
        except FetchError as exc:
            logger.warning("Cart fetch for %s failed: %s (%s)", handle, exc.message, exc.kind)
            result.success = False
            result.error_message = exc.message
            result.error_kind = exc.kind

        if self.metrics is not None:
            self.metrics.record_fetch(
                correlation_id=correlation_id,
                store_name=handle,
                success=result.success,
                redirect_count=result.redirect_count,
                latency_ms=int((time.monotonic() - start) * 1000),
                error_kind=result.error_kind,
            )
        return result

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=False,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        jar: Optional[CookieJar] = None,
    ) -> httpx.Response:
        headers = dict(BROWSER_HEADERS)
        if jar is not None and len(jar):
            headers["Cookie"] = jar.header()
        try:
            response = await client.get(url, headers=headers)
        except httpx.InvalidURL as exc:
            raise BadRedirect(f"無效的重定向 URL: {url}") from exc
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"無法連線到 {url}: {exc}") from exc
        # The jar is the only cookie source; keep httpx from replaying its own.
        client.cookies.clear()
        return response

    async def _fetch_variant_id(self, client: httpx.AsyncClient, handle: str) -> str:
        response = await self._get(client, products_url(handle))
        if response.status_code != 200:
            raise NoVariant(f"無法取得商品資料 (HTTP {response.status_code})")
        try:
            variant_id = response.json()["products"][0]["variants"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise NoVariant("找不到商品 variant ID") from exc
        if variant_id is None or variant_id == "":
            raise NoVariant("找不到商品 variant ID")
        return str(variant_id)

    async def _fetch_cart_page(
        self,
        client: httpx.AsyncClient,
        handle: str,
        result: CartFetchResult,
    ) -> None:
        jar = CookieJar()
        current_url = cart_url(handle, result.variant_id)
        redirect_count = 0

        while True:
            logger.info("Request %d: %s", redirect_count + 1, current_url)
            response = await self._get(client, current_url, jar)
            jar.absorb(response.headers.get_list("set-cookie"))

            if response.status_code not in REDIRECT_STATUSES:
                break

            location = response.headers.get("location")
            if not location:
                raise BadRedirect()
            if redirect_count >= self.max_redirects:
                raise TooManyRedirects(self.max_redirects)

            try:
                current_url = urljoin(current_url, location)
            except ValueError as exc:
                raise BadRedirect(f"無效的重定向 URL: {location}") from exc
            redirect_count += 1
            logger.info("Redirect %d -> %s (cookies: %s)", redirect_count, current_url, jar.header())

        # Storefronts may set the session cookie on the terminal hop only.
        final = await self._get(client, current_url, jar)

        result.success = True
        result.redirect_count = redirect_count
        result.final_url = current_url
        result.html = final.text
