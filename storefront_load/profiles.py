"""
Scenario profiles: smoke, load, stress and soak.

A profile binds a schedule, a journey catalog and a threshold set into one
immutable, runnable configuration. Numbers come from Settings (environment
variables, then CLI flags).
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from storefront_load.config import Settings
from storefront_load.exceptions import ConfigError
from storefront_load.journeys import DEFAULT_WEIGHTS, JourneyCatalog, storefront_catalog
from storefront_load.scheduler import (
    ConstantArrivalRate,
    RampingArrivalRate,
    SchedulePlan,
    SharedIterations,
    stress_stages,
)
from storefront_load.thresholds import ThresholdSpec, thresholds_from_mapping


@dataclass(frozen=True)
class ScenarioProfile:
    name: str
    description: str
    scheduler: SchedulePlan
    thresholds: List[ThresholdSpec]
    catalog: JourneyCatalog
    slow_request_ms: Optional[float] = None

    def with_iterations(self, iterations: int, vus: Optional[int] = None) -> "ScenarioProfile":
        """Same profile run as a fixed number of shared iterations."""
        return replace(self, scheduler=SharedIterations(
            iterations=iterations,
            vus=vus or self.scheduler.vus_cap,
            max_duration=self.scheduler.total_duration,
        ))

    def only_journey(self, name: str) -> "ScenarioProfile":
        return replace(self, catalog=self.catalog.only(name))


# =============================================================================
# THRESHOLDS
# =============================================================================

COMMON_THRESHOLDS: Dict[str, List[Any]] = {
    "http_req_failed": ["rate<0.01"],
    "http_req_duration": ["p(95)<2000", "p(99)<5000"],
    "http_req_duration{step:home}": ["p(95)<1500"],
    "http_req_duration{step:product}": ["p(95)<1500"],
    "http_req_duration{step:add_to_cart}": ["p(95)<2000"],
    "http_req_duration{step:view_cart}": ["p(95)<1500"],
    "http_req_duration{step:checkout}": ["p(95)<4000"],
    "checkout_success_rate": ["rate>0.95"],
    "checkout_duration": ["p(95)<6000"],
}


def merge_thresholds(overrides: Mapping[str, List[Any]], base: Mapping[str, List[Any]] = COMMON_THRESHOLDS) -> List[ThresholdSpec]:
    """Common thresholds with per-selector overrides applied."""
    merged = dict(base)
    merged.update(overrides)
    return thresholds_from_mapping(merged)


# =============================================================================
# PROFILES
# =============================================================================

def smoke(settings: Settings) -> ScenarioProfile:
    return ScenarioProfile(
        name="smoke",
        description="Low constant rate over every journey to verify the storefront works",
        scheduler=ConstantArrivalRate(
            rate=settings.smoke_rate,
            duration=settings.smoke_duration,
            pre_allocated=settings.smoke_vus,
            max_vus=max(settings.smoke_vus, 10),
        ),
        thresholds=merge_thresholds({
            "http_req_failed": ["rate<0.01"],
            "checkout_success_rate": ["rate>0.90"],
        }),
        catalog=storefront_catalog({name: 1.0 for name in DEFAULT_WEIGHTS}),
    )


def load(settings: Settings) -> ScenarioProfile:
    return ScenarioProfile(
        name="load",
        description="Production-like constant arrival rate with the weighted journey mix",
        scheduler=ConstantArrivalRate(
            rate=settings.rate,
            duration=settings.duration,
            pre_allocated=min(settings.pre_alloc, settings.max_vus),
            max_vus=settings.max_vus,
        ),
        thresholds=merge_thresholds({
            "http_req_failed": [{"threshold": "rate<0.01", "abortOnFail": True}],
        }),
        catalog=storefront_catalog(DEFAULT_WEIGHTS),
    )


def stress(settings: Settings) -> ScenarioProfile:
    peak = settings.stress_max_rate
    return ScenarioProfile(
        name="stress",
        description="Ramp 0 -> 110% -> 0 of the peak rate; relaxed thresholds, never aborts",
        scheduler=RampingArrivalRate(
            stages=stress_stages(peak, settings.stress_stage_scale),
            pre_allocated=max(1, min(50, int(peak), settings.max_vus * 2)),
            max_vus=settings.max_vus * 2,
        ),
        thresholds=merge_thresholds({
            "http_req_failed": ["rate<0.05"],
            "http_req_duration": ["p(99)<10000"],
            "checkout_success_rate": ["rate>0.80"],
        }),
        catalog=storefront_catalog(DEFAULT_WEIGHTS),
    )


def soak(settings: Settings) -> ScenarioProfile:
    return ScenarioProfile(
        name="soak",
        description="Low constant rate for a long time, watching for gradual degradation",
        scheduler=ConstantArrivalRate(
            rate=settings.soak_rate,
            duration=settings.soak_duration,
            pre_allocated=min(20, settings.max_vus),
            max_vus=settings.max_vus,
        ),
        thresholds=merge_thresholds({
            "degradation_rate": ["rate<0.05"],
            "http_req_duration": ["p(95)<3000", "p(99)<8000"],
            "http_req_failed": ["rate<0.01"],
            "checkout_success_rate": ["rate>0.95"],
            "checkout_duration": ["p(95)<6000"],
        }),
        catalog=storefront_catalog(DEFAULT_WEIGHTS),
        slow_request_ms=2000.0,
    )


PROFILES: Dict[str, Dict[str, Any]] = {
    "smoke": {
        "name": "🌱 Smoke",
        "description": "1 iteration/s for 2 minutes, all journeys",
        "build": smoke,
    },
    "load": {
        "name": "🏃 Load",
        "description": "10 iterations/s for 5 minutes, 40/30/20/10 journey mix",
        "build": load,
    },
    "stress": {
        "name": "📈 Stress",
        "description": "Ramping arrival rate up to 110% of STRESS_MAX_RATE",
        "build": stress,
    },
    "soak": {
        "name": "⏳ Soak",
        "description": "5 iterations/s for 30 minutes, flags requests over 2s",
        "build": soak,
    },
}


def build_profile(name: str, settings: Optional[Settings] = None) -> ScenarioProfile:
    if name not in PROFILES:
        raise ConfigError(f"Unknown profile: {name!r} (available: {', '.join(PROFILES)})")
    builder: Callable[[Settings], ScenarioProfile] = PROFILES[name]["build"]
    return builder(settings or Settings())
