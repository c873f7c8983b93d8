"""
Pass/fail conditions over aggregated metrics.

Selectors and conditions use the familiar k6 notation:

    "http_req_duration{step:checkout}"   "p(95)<4000"
    "http_req_failed"                    "rate<0.01"
    "checkout_errors"                    "count==0"

A threshold marked abort_on_fail stops the run as soon as it is breached;
the others only decide the final verdict.
"""

import logging
import operator
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from storefront_load.exceptions import ThresholdError
from storefront_load.metrics import MetricsRegistry, MetricType, submetric_key

logger = logging.getLogger(__name__)

SELECTOR_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.]*)\s*(?:\{([^}]*)\})?\s*$")
CONDITION_RE = re.compile(
    r"^\s*(count|rate|avg|min|max|med|value|p\(\s*\d+(?:\.\d+)?\s*\))\s*"
    r"(<=|>=|==|!=|<|>)\s*(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


def parse_selector(selector: str) -> Tuple[str, Dict[str, str]]:
    """'http_req_duration{step:home}' -> ('http_req_duration', {'step': 'home'})"""
    match = SELECTOR_RE.match(selector)
    if not match:
        raise ThresholdError(f"Invalid metric selector: {selector!r}")
    name, raw_tags = match.group(1), match.group(2)
    tags: Dict[str, str] = {}
    if raw_tags:
        for pair in raw_tags.split(","):
            if ":" not in pair:
                raise ThresholdError(f"Invalid tag filter {pair!r} in {selector!r}")
            key, value = pair.split(":", 1)
            tags[key.strip()] = value.strip()
    return name, tags


def parse_condition(condition: str) -> Tuple[str, str, float]:
    """'p(95)<1500' -> ('p(95)', '<', 1500.0)"""
    match = CONDITION_RE.match(condition)
    if not match:
        raise ThresholdError(f"Invalid threshold condition: {condition!r}")
    stat = match.group(1).replace(" ", "")
    return stat, match.group(2), float(match.group(3))


@dataclass(frozen=True)
class ThresholdSpec:
    metric: str
    condition: str
    tags: Tuple[Tuple[str, str], ...] = ()
    abort_on_fail: bool = False

    @classmethod
    def parse(cls, selector: str, condition: str, abort_on_fail: bool = False) -> "ThresholdSpec":
        name, tags = parse_selector(selector)
        parse_condition(condition)
        return cls(
            metric=name,
            condition=condition.replace(" ", ""),
            tags=tuple(sorted(tags.items())),
            abort_on_fail=abort_on_fail,
        )

    @property
    def selector(self) -> str:
        return submetric_key(self.metric, dict(self.tags))

    def __str__(self) -> str:
        return f"{self.selector}: {self.condition}"


@dataclass
class ThresholdResult:
    spec: ThresholdSpec
    passed: bool
    observed: Optional[float] = None
    no_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.spec.selector,
            "condition": self.spec.condition,
            "abort_on_fail": self.spec.abort_on_fail,
            "passed": self.passed,
            "observed": self.observed,
            "no_data": self.no_data,
        }


ThresholdEntry = Union[str, Mapping[str, Any]]


def thresholds_from_mapping(mapping: Mapping[str, Iterable[ThresholdEntry]]) -> List[ThresholdSpec]:
    """
    Build specs from a k6-style mapping.

    Example:
        thresholds_from_mapping({
            "http_req_failed": [{"threshold": "rate<0.01", "abortOnFail": True}],
            "checkout_duration": ["p(95)<6000"],
        })
    """
    specs = []
    for selector, entries in mapping.items():
        for entry in entries:
            if isinstance(entry, str):
                specs.append(ThresholdSpec.parse(selector, entry))
            else:
                specs.append(ThresholdSpec.parse(
                    selector,
                    entry["threshold"],
                    abort_on_fail=bool(entry.get("abortOnFail", entry.get("abort_on_fail", False))),
                ))
    return specs


STATS_BY_TYPE = {
    MetricType.COUNTER: ("count", "rate"),
    MetricType.RATE: ("rate", "count"),
    MetricType.TREND: ("count", "avg", "min", "max", "med", "p(N)"),
    MetricType.GAUGE: ("value", "min", "max"),
}


def check_stat(spec: ThresholdSpec, metric_type: MetricType) -> None:
    """Reject a condition whose statistic the metric type does not produce."""
    stat, _, _ = parse_condition(spec.condition)
    allowed = STATS_BY_TYPE[metric_type]
    if stat.startswith("p("):
        stat = "p(N)"
    if stat not in allowed:
        raise ThresholdError(
            f"{spec}: {metric_type.value} metric {spec.metric} has no {stat!r} "
            f"(use one of {', '.join(allowed)})"
        )


def evaluate(spec: ThresholdSpec, registry: MetricsRegistry, duration: float = 0.0) -> ThresholdResult:
    """Compare the metric's current aggregate against the bound."""
    stat, op, bound = parse_condition(spec.condition)
    sink = registry.sink(spec.metric, dict(spec.tags))
    if sink is None:
        return ThresholdResult(spec=spec, passed=True, no_data=True)

    observed = sink.stat(stat, duration)
    if observed is None:
        metric_type = registry.type_of(spec.metric)
        raise ThresholdError(
            f"{stat!r} is not available on {spec.metric} "
            f"({metric_type.value if metric_type else 'unknown'} metric)"
        )
    return ThresholdResult(spec=spec, passed=OPERATORS[op](observed, bound), observed=observed)


class ThresholdEvaluator:
    """
    Evaluates a fixed set of thresholds against one run's registry.

    Conditions on metrics the registry already knows are type-checked here,
    so a bad threshold fails before the run starts rather than mid-run.
    """

    def __init__(self, specs: Iterable[ThresholdSpec], registry: MetricsRegistry):
        self.specs = list(specs)
        self.registry = registry
        for spec in self.specs:
            metric_type = registry.type_of(spec.metric)
            if metric_type is not None:
                check_stat(spec, metric_type)
            if spec.tags:
                registry.add_submetric(spec.metric, dict(spec.tags))

    @property
    def aborting(self) -> List[ThresholdSpec]:
        return [s for s in self.specs if s.abort_on_fail]

    def check_aborting(self, duration: float = 0.0) -> Optional[ThresholdResult]:
        """First breached abort_on_fail threshold, if any."""
        for spec in self.aborting:
            result = evaluate(spec, self.registry, duration)
            if not result.passed:
                logger.warning("Threshold %s breached (observed %.4f), aborting run", spec, result.observed)
                return result
        return None

    def evaluate_all(self, duration: float = 0.0) -> List[ThresholdResult]:
        results = [evaluate(spec, self.registry, duration) for spec in self.specs]
        for result in results:
            if not result.passed:
                logger.info("Threshold %s failed (observed %.4f)", result.spec, result.observed)
        return results
