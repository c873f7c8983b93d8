"""
Iteration scheduling.

Open model (ConstantArrivalRate, RampingArrivalRate): iterations are started
on a timetable derived from the target rate, whatever the response times.
The issuing loop only ever sleeps until the next due time; it never waits for
an iteration to finish. Each iteration needs a free VU from a pool that grows
on demand up to max_vus; when the pool is exhausted the iteration is dropped
and counted in `dropped_iterations` instead of being started late.

Closed model (SharedIterations): a fixed number of iterations shared by a
fixed number of VUs, each VU starting its next iteration when the previous
one is done.

Ramp stages are linear in rate between targets. The n-th iteration is due
when the integral of the rate reaches n, so stage changes shift the spacing
gradually rather than releasing a burst.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Set, Tuple, Union

from storefront_load.exceptions import ConfigError
from storefront_load.metrics import MetricsRegistry
from storefront_load.state import RunState

logger = logging.getLogger(__name__)

NewIteration = Callable[[], Awaitable[Any]]


# =============================================================================
# RATE PLANS
# =============================================================================

@dataclass(frozen=True)
class Stage:
    """Move linearly to `target` iterations per time unit over `duration` seconds."""
    target: float
    duration: float


@dataclass(frozen=True)
class ConstantArrivalRate:
    rate: float
    duration: float
    time_unit: float = 1.0
    pre_allocated: int = 1
    max_vus: Optional[int] = None

    def __post_init__(self):
        if self.rate <= 0:
            raise ConfigError(f"Arrival rate must be positive, got {self.rate}")
        if self.duration <= 0 or self.time_unit <= 0:
            raise ConfigError("Duration and time unit must be positive")
        _check_pool(self.pre_allocated, self.max_vus)

    @property
    def per_second(self) -> float:
        return self.rate / self.time_unit

    @property
    def total_duration(self) -> float:
        return self.duration

    @property
    def vus_cap(self) -> int:
        return self.max_vus or self.pre_allocated

    def rate_at(self, elapsed: float) -> float:
        return self.per_second if 0 <= elapsed < self.duration else 0.0

    def cumulative(self, elapsed: float) -> float:
        return self.per_second * min(max(elapsed, 0.0), self.duration)

    def due_offset(self, n: int) -> Optional[float]:
        offset = n / self.per_second
        return offset if offset < self.duration else None

    def describe(self) -> str:
        return (
            f"constant arrival rate {self.rate:g}/{self.time_unit:g}s for {self.duration:g}s "
            f"(VUs {self.pre_allocated}..{self.vus_cap})"
        )


@dataclass(frozen=True)
class RampingArrivalRate:
    stages: Tuple[Stage, ...]
    start_rate: float = 0.0
    time_unit: float = 1.0
    pre_allocated: int = 1
    max_vus: Optional[int] = None

    def __post_init__(self):
        if not self.stages:
            raise ConfigError("Ramping arrival rate needs at least one stage")
        if self.time_unit <= 0:
            raise ConfigError("Time unit must be positive")
        for stage in self.stages:
            if stage.duration <= 0 or stage.target < 0:
                raise ConfigError(f"Invalid stage {stage}")
        if self.start_rate < 0:
            raise ConfigError("Start rate must not be negative")
        _check_pool(self.pre_allocated, self.max_vus)
        object.__setattr__(self, "stages", tuple(self.stages))

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    @property
    def vus_cap(self) -> int:
        return self.max_vus or self.pre_allocated

    def _segments(self):
        """(t0, duration, r0, r1, n0) per stage, rates per second."""
        t0 = 0.0
        n0 = 0.0
        r0 = self.start_rate / self.time_unit
        for stage in self.stages:
            r1 = stage.target / self.time_unit
            yield t0, stage.duration, r0, r1, n0
            n0 += (r0 + r1) / 2 * stage.duration
            t0 += stage.duration
            r0 = r1

    def rate_at(self, elapsed: float) -> float:
        for t0, length, r0, r1, _ in self._segments():
            if t0 <= elapsed < t0 + length:
                return r0 + (r1 - r0) * (elapsed - t0) / length
        return 0.0

    def cumulative(self, elapsed: float) -> float:
        total = 0.0
        for t0, length, r0, r1, n0 in self._segments():
            if elapsed < t0 + length:
                x = max(elapsed - t0, 0.0)
                return n0 + r0 * x + (r1 - r0) * x * x / (2 * length)
            total = n0 + (r0 + r1) / 2 * length
        return total

    def due_offset(self, n: int) -> Optional[float]:
        for t0, length, r0, r1, n0 in self._segments():
            area = (r0 + r1) / 2 * length
            if n0 <= n < n0 + area:
                # solve r0*x + (r1-r0)/(2*length) * x^2 = n - n0 for x in [0, length]
                c = n - n0
                a = (r1 - r0) / (2 * length)
                x = 2 * c / (r0 + math.sqrt(max(r0 * r0 + 4 * a * c, 0.0))) if c > 0 else 0.0
                return t0 + min(x, length)
        return None

    def describe(self) -> str:
        targets = " -> ".join(f"{s.target:g}" for s in self.stages)
        return (
            f"ramping arrival rate {self.start_rate:g} -> {targets} per {self.time_unit:g}s "
            f"over {self.total_duration:g}s (VUs {self.pre_allocated}..{self.vus_cap})"
        )


@dataclass(frozen=True)
class SharedIterations:
    iterations: int
    vus: int = 1
    max_duration: float = 600.0

    def __post_init__(self):
        if self.iterations <= 0 or self.vus <= 0:
            raise ConfigError("Iterations and VUs must be positive")
        if self.max_duration <= 0:
            raise ConfigError("Max duration must be positive")

    @property
    def total_duration(self) -> float:
        return self.max_duration

    @property
    def pre_allocated(self) -> int:
        return self.vus

    @property
    def vus_cap(self) -> int:
        return self.vus

    def describe(self) -> str:
        return f"{self.iterations} shared iterations on {self.vus} VUs (max {self.max_duration:g}s)"


SchedulePlan = Union[ConstantArrivalRate, RampingArrivalRate, SharedIterations]


def _check_pool(pre_allocated: int, max_vus: Optional[int]) -> None:
    if pre_allocated <= 0:
        raise ConfigError("pre_allocated must be at least 1")
    if max_vus is not None and max_vus < pre_allocated:
        raise ConfigError(f"max_vus ({max_vus}) is below pre_allocated ({pre_allocated})")


def stress_stages(peak_rate: float, scale: float = 1.0) -> Tuple[Stage, ...]:
    """0 -> 110% -> 0 of `peak_rate`, stage durations multiplied by `scale`."""
    shape = [
        (0.1, 120), (0.3, 180), (0.5, 180), (0.7, 180),
        (1.0, 300),
        (1.1, 180),
        (0.3, 120), (0.0, 60),
    ]
    return tuple(Stage(target=round(peak_rate * f, 3), duration=d * scale) for f, d in shape)


# =============================================================================
# VU POOL
# =============================================================================

class VUPool:
    """
    Bounded set of execution slots.

    Starts with `pre_allocated` VUs and grows one at a time, up to `max_vus`,
    when an iteration is due and all VUs are busy.
    """

    def __init__(self, pre_allocated: int, max_vus: int, registry: Optional[MetricsRegistry] = None):
        self.capacity = pre_allocated
        self.max_vus = max(max_vus, pre_allocated)
        self.active = 0
        self.peak = 0
        self.registry = registry
        if registry is not None:
            registry.gauge("vus_max", self.capacity)

    def acquire(self) -> bool:
        if self.active >= self.capacity:
            if self.capacity >= self.max_vus:
                return False
            self.capacity += 1
            logger.debug("VU pool grown to %d (cap %d)", self.capacity, self.max_vus)
            if self.registry is not None:
                self.registry.gauge("vus_max", self.capacity)
        self.active += 1
        self.peak = max(self.peak, self.active)
        if self.registry is not None:
            self.registry.gauge("vus", self.active)
        return True

    def release(self) -> None:
        self.active -= 1
        if self.registry is not None:
            self.registry.gauge("vus", self.active)


# =============================================================================
# SCHEDULERS
# =============================================================================

class _BaseScheduler:
    def __init__(self, plan, state: RunState, graceful_stop: float = 30.0):
        self.plan = plan
        self.state = state
        self.graceful_stop = graceful_stop
        self._tasks: Set[asyncio.Task] = set()
        self._loop_started = 0.0

    async def _wait_stop(self, timeout: float) -> bool:
        """Sleep up to `timeout`; True when the run was stopped meanwhile."""
        if timeout <= 0:
            return self.state.stopping
        try:
            await asyncio.wait_for(self.state.stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def drain(self) -> None:
        """Give in-flight iterations `graceful_stop` seconds, then cancel."""
        pending = {t for t in self._tasks if not t.done()}
        if not pending:
            return
        logger.info("Waiting up to %.1fs for %d in-flight iterations", self.graceful_stop, len(pending))
        _, pending = await asyncio.wait(pending, timeout=self.graceful_stop)
        if pending:
            logger.warning("Cancelling %d iterations still running after graceful stop", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


class ArrivalRateScheduler(_BaseScheduler):
    """Open-model issuing loop for ConstantArrivalRate / RampingArrivalRate plans."""

    DROP_WARNING_INTERVAL = 1.0

    def __init__(self, plan, state: RunState, graceful_stop: float = 30.0):
        super().__init__(plan, state, graceful_stop)
        self.pool = VUPool(plan.pre_allocated, plan.vus_cap, state.registry)
        self._last_drop_warning = 0.0
        self._drops_since_warning = 0

    async def _run_one(self, new_iteration: NewIteration) -> None:
        try:
            await new_iteration()
        except asyncio.CancelledError:
            self.state.interrupted += 1
            self.state.registry.counter("interrupted_iterations", 1)
            raise
        finally:
            self.pool.release()
            self.state.active = self.pool.active

    def _drop(self) -> None:
        self.state.dropped += 1
        self.state.registry.counter("dropped_iterations", 1)
        self._drops_since_warning += 1
        now = time.monotonic()
        if now - self._last_drop_warning >= self.DROP_WARNING_INTERVAL:
            logger.warning(
                "VU pool exhausted at %d VUs: dropped %d iteration(s) (active %d)",
                self.pool.capacity, self._drops_since_warning, self.pool.active,
            )
            self._last_drop_warning = now
            self._drops_since_warning = 0

    async def run(self, new_iteration: NewIteration) -> None:
        """
        Issue iterations until the plan's duration elapses or the run stops.

        `new_iteration()` is awaited once per started iteration, in its own task.
        """
        if not self.state.started_at:
            self.state.begin(self.plan.total_duration)
        loop = asyncio.get_running_loop()
        self._loop_started = loop.time()
        duration = self.plan.total_duration
        n = 0

        while not self.state.stopping:
            due = self.plan.due_offset(n)
            if due is None or due >= duration:
                break
            if await self._wait_stop(self._loop_started + due - loop.time()):
                break
            n += 1
            if self.pool.acquire():
                self.state.record_issue()
                self.state.active = self.pool.active
                task = asyncio.create_task(self._run_one(new_iteration))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                self._drop()

        # The timetable may end before the duration does (ramp down to 0)
        if not self.state.stopping:
            await self._wait_stop(self._loop_started + duration - loop.time())
        self.state.stop("duration elapsed")
        await self.drain()


class SharedIterationsScheduler(_BaseScheduler):
    """Closed model: `vus` workers share a fixed iteration budget."""

    async def run(self, new_iteration: NewIteration) -> None:
        if not self.state.started_at:
            self.state.begin(self.plan.total_duration)
        registry = self.state.registry
        registry.gauge("vus_max", self.plan.vus)

        async def vu() -> None:
            while not self.state.stopping and self.state.issued < self.plan.iterations:
                self.state.record_issue()
                self.state.active += 1
                registry.gauge("vus", self.state.active)
                try:
                    await new_iteration()
                except asyncio.CancelledError:
                    self.state.interrupted += 1
                    registry.counter("interrupted_iterations", 1)
                    raise
                finally:
                    self.state.active -= 1
                    registry.gauge("vus", self.state.active)

        workers = min(self.plan.vus, self.plan.iterations)
        for _ in range(workers):
            task = asyncio.create_task(vu())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        _, pending = await asyncio.wait(set(self._tasks), timeout=self.plan.max_duration)
        if pending:
            self.state.stop("max duration elapsed")
        elif not self.state.stopping:
            self.state.stop("all iterations done")
        await self.drain()


def make_scheduler(plan: SchedulePlan, state: RunState, graceful_stop: float = 30.0) -> _BaseScheduler:
    if isinstance(plan, SharedIterations):
        return SharedIterationsScheduler(plan, state, graceful_stop)
    if isinstance(plan, (ConstantArrivalRate, RampingArrivalRate)):
        return ArrivalRateScheduler(plan, state, graceful_stop)
    raise ConfigError(f"Unsupported schedule plan: {plan!r}")


def issuance_rate(offsets: Sequence[float], start: float, end: float) -> float:
    """Iterations started per second within [start, end)."""
    if end <= start:
        return 0.0
    return sum(1 for t in offsets if start <= t < end) / (end - start)
