"""
Journey catalog: what each simulated user does, as plain data.

A Journey is an ordered tuple of Steps; a Step is a request template plus the
checks run against its response and a few flags (harvest ids, think time,
repeat count, which outcome metrics it feeds). Nothing in here performs I/O,
so catalogs can be built, inspected and compared in tests.
"""

import bisect
import random
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from storefront_load import checks as storefront_checks
from storefront_load.checks import Predicate
from storefront_load.data import DataSource
from storefront_load.exceptions import CatalogError
from storefront_load.metrics import MetricType
from storefront_load.session import Session
from storefront_load.transport import RequestDescriptor

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


@dataclass(frozen=True)
class RequestTemplate:
    """
    Request with `{name}` placeholders in the path and form values.

    Placeholders resolve from `session.vars`; unbound ones are drawn from the
    DataSource and bound, so a later step sees the same value (the product
    viewed is the product added to the cart). `form_fixture` names a
    DataSource generator that produces the whole form body.
    """
    method: str
    path: str
    form: Optional[Mapping[str, str]] = None
    form_fixture: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    redirects: int = 3
    timeout: Optional[float] = None
    host: str = "default"

    def placeholders(self) -> List[str]:
        names = PLACEHOLDER_RE.findall(self.path)
        for value in (self.form or {}).values():
            names.extend(PLACEHOLDER_RE.findall(value))
        if self.form_fixture:
            names.append(self.form_fixture)
        return list(dict.fromkeys(names))

    def render(
        self,
        session: Session,
        data: DataSource,
        tags: Optional[Mapping[str, str]] = None,
    ) -> RequestDescriptor:
        def resolve(name: str) -> Any:
            if name not in session.vars:
                session.vars[name] = data.draw(name, session)
            return session.vars[name]

        def substitute(text: str) -> str:
            return PLACEHOLDER_RE.sub(lambda m: str(resolve(m.group(1))), text)

        form = None
        if self.form_fixture:
            form = dict(resolve(self.form_fixture))
        elif self.form is not None:
            form = {key: substitute(value) for key, value in self.form.items()}

        return RequestDescriptor(
            method=self.method,
            path=substitute(self.path),
            form=form,
            headers=dict(self.headers),
            redirects=self.redirects,
            timeout=self.timeout,
            host=self.host,
            tags=dict(tags or {}),
        )


@dataclass(frozen=True)
class Step:
    """
    One logical request of a journey.

    Attributes:
        label: Step name, also the `step` tag on every metric it emits.
        request: What to send.
        checks: Assertion label -> predicate.
        think_time: Pause before this step (never applies to the first one).
        harvest: Scan the response body for product ids.
        draws: Placeholders re-drawn every time the step runs.
        repeat: (min, max) executions, drawn per iteration.
        error_counter: Counter incremented when the step's checks fail.
        outcome_rate: Rate fed with the step's overall check outcome.
        trend: Extra trend receiving the step duration in ms.
    """
    label: str
    request: RequestTemplate
    checks: Mapping[str, Predicate] = field(default_factory=dict)
    think_time: bool = True
    harvest: bool = False
    draws: Tuple[str, ...] = ()
    repeat: Tuple[int, int] = (1, 1)
    error_counter: Optional[str] = None
    outcome_rate: Optional[str] = None
    trend: Optional[str] = None

    @property
    def tags(self) -> Dict[str, str]:
        return {"step": self.label}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "method": self.request.method,
            "path": self.request.path,
            "checks": list(self.checks),
            "think_time": self.think_time,
            "harvest": self.harvest,
            "repeat": list(self.repeat),
        }


@dataclass(frozen=True)
class Journey:
    name: str
    steps: Tuple[Step, ...]
    weight: float = 1.0

    def __post_init__(self):
        if self.weight < 0:
            raise CatalogError(f"Journey {self.name!r} has a negative weight")
        if not self.steps:
            raise CatalogError(f"Journey {self.name!r} has no steps")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "weight": self.weight,
            "steps": [step.to_dict() for step in self.steps],
        }


class JourneyCatalog:
    """Immutable, ordered set of journeys with their selection weights."""

    def __init__(self, journeys: Iterable[Journey]):
        self.journeys: Tuple[Journey, ...] = tuple(journeys)
        if not self.journeys:
            raise CatalogError("Journey catalog is empty")
        names = [j.name for j in self.journeys]
        if len(set(names)) != len(names):
            raise CatalogError(f"Duplicate journey names in catalog: {names}")
        total = sum(j.weight for j in self.journeys)
        if total <= 0:
            raise CatalogError("Journey weights must sum to a positive total")
        self.total_weight = total

        running = 0.0
        self._cumulative: List[float] = []
        for journey in self.journeys:
            running += journey.weight / total
            self._cumulative.append(running)

    def __iter__(self):
        return iter(self.journeys)

    def __len__(self):
        return len(self.journeys)

    @property
    def names(self) -> List[str]:
        return [j.name for j in self.journeys]

    def get(self, name: str) -> Journey:
        for journey in self.journeys:
            if journey.name == name:
                return journey
        raise CatalogError(f"Unknown journey: {name!r} (known: {', '.join(self.names)})")

    def probabilities(self) -> Dict[str, float]:
        return {j.name: j.weight / self.total_weight for j in self.journeys}

    def with_weights(self, weights: Mapping[str, float]) -> "JourneyCatalog":
        """Same journeys, new weights; journeys not listed get weight 0."""
        for name in weights:
            self.get(name)
        return JourneyCatalog(replace(j, weight=weights.get(j.name, 0.0)) for j in self.journeys)

    def only(self, name: str) -> "JourneyCatalog":
        return JourneyCatalog([replace(self.get(name), weight=1.0)])

    def custom_metrics(self) -> Dict[str, MetricType]:
        """Metrics declared by steps on top of the built-in ones."""
        declared: Dict[str, MetricType] = {}
        for journey in self.journeys:
            for step in journey.steps:
                if step.error_counter:
                    declared[step.error_counter] = MetricType.COUNTER
                if step.outcome_rate:
                    declared[step.outcome_rate] = MetricType.RATE
                if step.trend:
                    declared[step.trend] = MetricType.TREND
        return declared

    def to_dict(self) -> Dict[str, Any]:
        return {"journeys": [j.to_dict() for j in self.journeys]}


def select_journey(catalog: JourneyCatalog, rng: random.Random) -> Journey:
    """
    Weighted draw: one uniform value in [0, 1) against the cumulative
    normalized weights. Zero-weight journeys are never picked.
    """
    r = rng.random()
    index = bisect.bisect_right(catalog._cumulative, r)
    if index >= len(catalog.journeys):
        # float rounding can leave the last cumulative value just under 1.0
        index = max(i for i, j in enumerate(catalog.journeys) if j.weight > 0)
    return catalog.journeys[index]


# =============================================================================
# STOREFRONT JOURNEYS
# =============================================================================

def home_step() -> Step:
    return Step(
        label="home",
        request=RequestTemplate("GET", "/", redirects=3),
        checks=storefront_checks.HOME_CHECKS,
        harvest=True,
    )


def product_step(repeat: Tuple[int, int] = (1, 1)) -> Step:
    return Step(
        label="product",
        request=RequestTemplate("GET", "/product/{product_id}", redirects=3),
        checks=storefront_checks.PRODUCT_CHECKS,
        draws=("product_id",),
        repeat=repeat,
    )


def add_to_cart_step() -> Step:
    return Step(
        label="add_to_cart",
        request=RequestTemplate(
            "POST", "/cart",
            form={"product_id": "{product_id}", "quantity": "{quantity}"},
            headers=FORM_HEADERS,
            redirects=5,
        ),
        checks=storefront_checks.ADD_TO_CART_CHECKS,
        draws=("quantity",),
        error_counter="cart_errors",
    )


def view_cart_step() -> Step:
    return Step(
        label="view_cart",
        request=RequestTemplate("GET", "/cart", redirects=3),
        checks=storefront_checks.VIEW_CART_CHECKS,
    )


def checkout_step() -> Step:
    return Step(
        label="checkout",
        request=RequestTemplate(
            "POST", "/cart/checkout",
            form_fixture="checkout_form",
            headers=FORM_HEADERS,
            redirects=5,
        ),
        checks=storefront_checks.CHECKOUT_CHECKS,
        draws=("checkout_form",),
        error_counter="checkout_errors",
        outcome_rate="checkout_success_rate",
        trend="checkout_duration",
    )


def set_currency_step() -> Step:
    return Step(
        label="set_currency",
        request=RequestTemplate(
            "POST", "/setCurrency",
            form={"currency_code": "{currency_code}"},
            headers=FORM_HEADERS,
            redirects=3,
        ),
        checks=storefront_checks.CURRENCY_CHECKS,
        draws=("currency_code",),
    )


# Realistic traffic mix: 40% browse, 30% add to cart, 20% checkout, 10% currency
DEFAULT_WEIGHTS = {
    "browse": 40.0,
    "add_to_cart": 30.0,
    "checkout": 20.0,
    "currency": 10.0,
}


def storefront_catalog(weights: Optional[Mapping[str, float]] = None) -> JourneyCatalog:
    weights = weights or DEFAULT_WEIGHTS
    journeys = [
        Journey("browse", (home_step(), product_step(repeat=(1, 3)))),
        Journey("add_to_cart", (home_step(), product_step(), add_to_cart_step(), view_cart_step())),
        Journey("checkout", (
            home_step(), product_step(), add_to_cart_step(), view_cart_step(), checkout_step(),
        )),
        Journey("currency", (home_step(), set_currency_step(), product_step())),
    ]
    return JourneyCatalog(journeys).with_weights(weights)
