"""
Response assertions.

Predicates are small frozen dataclasses so a journey catalog stays plain data
that can be printed and compared; any callable taking a Response works too.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Tuple

from storefront_load.metrics import MetricsRegistry
from storefront_load.transport import Response

logger = logging.getLogger(__name__)

Predicate = Callable[[Response], bool]


@dataclass(frozen=True)
class StatusIs:
    code: int

    def __call__(self, response: Response) -> bool:
        return response.status == self.code


@dataclass(frozen=True)
class StatusBetween:
    """low <= status < high"""
    low: int
    high: int

    def __call__(self, response: Response) -> bool:
        return self.low <= response.status < self.high


@dataclass(frozen=True)
class BodyContains:
    """True when the body contains any of the needles."""
    needles: Tuple[str, ...]

    def __init__(self, *needles: str):
        object.__setattr__(self, "needles", tuple(needles))

    def __call__(self, response: Response) -> bool:
        body = response.body or ""
        return any(needle in body for needle in self.needles)


def check(
    response: Response,
    predicates: Mapping[str, Predicate],
    registry: MetricsRegistry,
    tags: Optional[Mapping[str, str]] = None,
    error_counter: Optional[str] = None,
    outcome_rate: Optional[str] = None,
) -> bool:
    """
    Run every predicate against the response and record the outcomes.

    All predicates are evaluated; each one lands in the `checks` rate tagged
    with its label. A predicate that raises counts as failed. On overall
    failure `error_counter` is incremented, and `outcome_rate` (when given)
    receives the overall result.
    """
    tags = dict(tags or {})
    passed = True
    for label, predicate in predicates.items():
        try:
            ok = bool(predicate(response))
        except Exception:
            logger.debug("Check %r raised", label, exc_info=True)
            ok = False
        registry.rate("checks", ok, {**tags, "check": label})
        passed = passed and ok

    if not passed and error_counter:
        registry.counter(error_counter, 1, tags)
    if outcome_rate:
        registry.rate(outcome_rate, passed, tags)
    return passed


# =============================================================================
# STOREFRONT CHECK SETS
# =============================================================================

HOME_CHECKS = {
    "home: status 200": StatusIs(200),
    "home: contains products": BodyContains('class="hot-product-card"'),
    "home: contains currency": BodyContains("USD", "EUR"),
}

PRODUCT_CHECKS = {
    "product: status 200": StatusIs(200),
    "product: has add-to-cart": BodyContains("addToCart"),
    "product: has price": BodyContains("price"),
}

# POST /cart answers 302, or 200 once the redirect is followed
ADD_TO_CART_CHECKS = {
    "add_to_cart: status 2xx/3xx": StatusBetween(200, 400),
}

VIEW_CART_CHECKS = {
    "cart: status 200": StatusIs(200),
    "cart: has items or empty": BodyContains("cart-item", "Your shopping cart is empty"),
}

CHECKOUT_CHECKS = {
    "checkout: status 2xx": StatusBetween(200, 400),
    "checkout: order complete": BodyContains("order", "Order #", "Your order is"),
}

CURRENCY_CHECKS = {
    "currency: redirect or 200": StatusBetween(200, 400),
}
