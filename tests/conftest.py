"""Shared fixtures: an in-process fake storefront standing in for the HTTP executor."""

import asyncio
import itertools
import random
import uuid
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

from storefront_load.data import PRODUCT_IDS, DataSource
from storefront_load.exceptions import TransportError
from storefront_load.executor import IterationContext, ThinkTime
from storefront_load.metrics import MetricsRegistry
from storefront_load.transport import RequestDescriptor, Response

SESSION_COOKIE = "shop_session-id"


def home_page(product_ids: Sequence[str]) -> str:
    cards = "\n".join(
        f'<div class="hot-product-card"><a href="/product/{pid}">{pid}</a></div>' for pid in product_ids
    )
    return f"<html><body><span>USD</span>{cards}</body></html>"


class FakeStorefront:
    """
    Answers storefront requests without any network.

    Every page satisfies the storefront check sets. `fail_every=N` makes every
    N-th request to `fail_path` answer 500; `raise_on` makes requests to that
    path raise TransportError.
    """

    def __init__(
        self,
        delay: float = 0.0,
        product_ids: Optional[Sequence[str]] = None,
        fail_every: Optional[int] = None,
        fail_path: str = "/cart/checkout",
        raise_on: Optional[str] = None,
        status: int = 200,
    ):
        self.delay = delay
        self.product_ids = list(PRODUCT_IDS[:4] if product_ids is None else product_ids)
        self.fail_every = fail_every
        self.fail_path = fail_path
        self.raise_on = raise_on
        self.status = status
        self.calls: List[Tuple[RequestDescriptor, Dict[str, str]]] = []
        self._matching = itertools.count(1)

    @property
    def paths(self) -> List[str]:
        return [d.path for d, _ in self.calls]

    async def execute(self, descriptor: RequestDescriptor, cookies: Mapping[str, str]) -> Response:
        self.calls.append((descriptor, dict(cookies)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_on and descriptor.path == self.raise_on:
            raise TransportError(f"{descriptor.method} {descriptor.path}: connection refused", kind="connection")

        set_cookies = {} if SESSION_COOKIE in cookies else {SESSION_COOKIE: str(uuid.uuid4())}
        status, body = self._page(descriptor)
        if self.fail_every and descriptor.path == self.fail_path and next(self._matching) % self.fail_every == 0:
            status, body = 500, "<h1>Error placing order</h1>"
        if self.status != 200 and status == 200:
            status = self.status
        return Response(status=status, body=body, cookies=set_cookies, url=descriptor.path)

    def _page(self, descriptor: RequestDescriptor) -> Tuple[int, str]:
        path = descriptor.path
        if path in ("/", "/setCurrency"):
            return 200, home_page(self.product_ids)
        if path.startswith("/product/"):
            return 200, '<form id="addToCart"><p class="price">$19.99</p></form>'
        if path == "/cart":
            return 200, '<div class="cart-item">1 x item</div>'
        if path == "/cart/checkout":
            return 200, "<h3>Your order is complete!</h3><p>Order # 1234</p>"
        return 404, "not found"


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def make_context(registry):
    """Build an IterationContext around an executor, think time off by default."""

    def _make(executor, think_time: Optional[ThinkTime] = None, stop_event: Optional[asyncio.Event] = None, **kwargs):
        rng = random.Random(1234)
        return IterationContext(
            executor=executor,
            registry=registry,
            data=DataSource(random.Random(99)),
            think_time=think_time or ThinkTime.disabled(),
            stop_event=stop_event or asyncio.Event(),
            rng=rng,
            **kwargs,
        )

    return _make
