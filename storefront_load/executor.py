"""
Journey execution: think time, single steps, and whole iterations.

An iteration runs the steps of one journey strictly in order against its own
Session. Failed checks are recorded and the journey goes on; a transport
failure leaves no response to continue from, so the iteration ends there as
incomplete. The run-wide stop event is looked at on every step boundary: once
it is set no new step starts, while a request already in flight is left to
finish.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Sequence

from storefront_load.checks import check
from storefront_load.data import PRODUCT_IDS, DataSource
from storefront_load.exceptions import ConfigError, TransportError
from storefront_load.journeys import Journey, Step
from storefront_load.metrics import MetricsRegistry
from storefront_load.session import PRODUCT_ID_PATTERN, Session, harvest_ids
from storefront_load.transport import Executor, Response

logger = logging.getLogger(__name__)


class ThinkTime:
    """Randomized human pause between steps, uniform in [min, max] seconds."""

    def __init__(
        self,
        enabled: bool = True,
        min_seconds: float = 0.5,
        max_seconds: float = 2.0,
        rng: Optional[random.Random] = None,
    ):
        if min_seconds < 0 or max_seconds < min_seconds:
            raise ConfigError(f"Invalid think time range [{min_seconds}, {max_seconds}]")
        self.enabled = enabled
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self.rng = rng or random.Random()

    @classmethod
    def disabled(cls) -> "ThinkTime":
        return cls(enabled=False, min_seconds=0.0, max_seconds=0.0)

    def duration(self) -> float:
        return self.rng.uniform(self.min_seconds, self.max_seconds)

    async def pause(self, stop_event: Optional[asyncio.Event] = None) -> float:
        """Sleep for a drawn duration; wakes early when `stop_event` fires."""
        if not self.enabled:
            return 0.0
        seconds = self.duration()
        if stop_event is None:
            await asyncio.sleep(seconds)
        else:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        return seconds


class IterationStatus(Enum):
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"      # transport failure, no response to go on with
    INTERRUPTED = "interrupted"    # run ended between two steps


@dataclass
class StepResult:
    label: str
    status: int
    duration_ms: float
    passed: bool
    error: Optional[str] = None

    @property
    def transport_failed(self) -> bool:
        return self.error is not None


@dataclass
class IterationResult:
    journey: str
    session_id: str
    status: IterationStatus = IterationStatus.COMPLETED
    steps: List[StepResult] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status == IterationStatus.COMPLETED and all(s.passed for s in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "journey": self.journey,
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 2),
            "steps": [
                {"label": s.label, "status": s.status, "passed": s.passed, "error": s.error}
                for s in self.steps
            ],
        }


@dataclass
class IterationContext:
    """Everything an iteration needs besides its Session. Shared per run."""
    executor: Executor
    registry: MetricsRegistry
    data: DataSource
    think_time: ThinkTime
    stop_event: asyncio.Event
    rng: random.Random = field(default_factory=random.Random)
    fallback_ids: Sequence[str] = tuple(PRODUCT_IDS)
    id_pattern: Pattern[str] = PRODUCT_ID_PATTERN
    slow_request_ms: Optional[float] = None
    slow_request_metric: str = "degradation_rate"


def expand_steps(journey: Journey, rng: random.Random) -> List[Step]:
    """Journey steps with repeat ranges unrolled for this iteration."""
    plan: List[Step] = []
    for step in journey.steps:
        low, high = step.repeat
        plan.extend([step] * rng.randint(low, high))
    return plan


async def run_step(step: Step, session: Session, ctx: IterationContext, journey: str = "") -> StepResult:
    """Render, execute, time, check, harvest."""
    for name in step.draws:
        session.vars.pop(name, None)

    tags = {**step.tags, "journey": journey} if journey else step.tags
    descriptor = step.request.render(session, ctx.data, tags)
    registry = ctx.registry

    start = time.perf_counter()
    try:
        response: Response = await ctx.executor.execute(descriptor, session.cookies_for(descriptor.host))
    except TransportError as e:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug("Step %s of %s failed after %.0fms: %s", step.label, journey, duration_ms, e)
        http_tags = {**tags, "method": descriptor.method, "error": e.kind}
        registry.counter("http_reqs", 1, http_tags)
        registry.rate("http_req_failed", True, http_tags)
        registry.rate("step_success", False, tags)
        if step.error_counter:
            registry.counter(step.error_counter, 1, tags)
        if step.outcome_rate:
            registry.rate(step.outcome_rate, False, tags)
        return StepResult(step.label, 0, duration_ms, passed=False, error=str(e))

    duration_ms = (time.perf_counter() - start) * 1000
    session.store_cookies(descriptor.host, response.cookies)

    http_tags = {**tags, "method": descriptor.method, "status": str(response.status)}
    registry.counter("http_reqs", 1, http_tags)
    registry.trend("http_req_duration", duration_ms, http_tags)
    registry.rate("http_req_failed", not response.ok, http_tags)
    if step.trend:
        registry.trend(step.trend, duration_ms, tags)
    if ctx.slow_request_ms is not None:
        registry.rate(ctx.slow_request_metric, duration_ms > ctx.slow_request_ms, tags)

    passed = check(
        response,
        step.checks,
        registry,
        tags,
        error_counter=step.error_counter,
        outcome_rate=step.outcome_rate,
    )
    registry.rate("step_success", passed, tags)

    if step.harvest:
        harvest_ids(session, response.body, ctx.fallback_ids, ctx.id_pattern)

    return StepResult(step.label, response.status, duration_ms, passed=passed)


async def run_journey(journey: Journey, session: Session, ctx: IterationContext) -> IterationResult:
    """
    Run one iteration of `journey` on `session`.

    Think time goes between steps only, never before the first or after the
    last one.
    """
    result = IterationResult(journey=journey.name, session_id=session.session_id)
    start = time.perf_counter()

    for index, step in enumerate(expand_steps(journey, ctx.rng)):
        if ctx.stop_event.is_set():
            result.status = IterationStatus.INTERRUPTED
            break
        if index > 0 and step.think_time:
            await ctx.think_time.pause(ctx.stop_event)
            if ctx.stop_event.is_set():
                result.status = IterationStatus.INTERRUPTED
                break

        step_result = await run_step(step, session, ctx, journey.name)
        result.steps.append(step_result)
        if step_result.transport_failed:
            result.status = IterationStatus.INCOMPLETE
            break

    result.duration_ms = (time.perf_counter() - start) * 1000
    tags = {"journey": journey.name}
    if result.status == IterationStatus.COMPLETED:
        ctx.registry.counter("iterations", 1, tags)
        ctx.registry.trend("iteration_duration", result.duration_ms, tags)
    elif result.status == IterationStatus.INCOMPLETE:
        ctx.registry.counter("incomplete_iterations", 1, tags)
    else:
        ctx.registry.counter("interrupted_iterations", 1, tags)
    return result
