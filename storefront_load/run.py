"""
Runner: binds a ScenarioProfile to an executor and drives one run.

Every run gets its own RunState and MetricsRegistry, so two runners in the
same process never see each other's numbers.
"""

import asyncio
import logging
import random
from typing import List, Optional, Sequence

from storefront_load.data import PRODUCT_IDS, DataSource
from storefront_load.exceptions import ThresholdError
from storefront_load.executor import IterationContext, IterationStatus, ThinkTime, run_journey
from storefront_load.journeys import select_journey
from storefront_load.metrics import MetricType
from storefront_load.profiles import ScenarioProfile
from storefront_load.report import RunReport, build_report
from storefront_load.scheduler import make_scheduler
from storefront_load.session import Session
from storefront_load.state import RunState
from storefront_load.thresholds import ThresholdEvaluator
from storefront_load.transport import Executor

logger = logging.getLogger(__name__)


class Runner:
    """
    Usage:
        async with AiohttpExecutor(settings.base_url) as executor:
            report = await Runner(profile, executor, seed=42).run()
    """

    def __init__(
        self,
        profile: ScenarioProfile,
        executor: Executor,
        seed: Optional[int] = None,
        think_time: Optional[ThinkTime] = None,
        graceful_stop: float = 30.0,
        threshold_interval: float = 2.0,
        fallback_ids: Optional[Sequence[str]] = None,
    ):
        self.profile = profile
        self.executor = executor
        self.seed = seed
        self.think_time = think_time
        self.graceful_stop = graceful_stop
        self.threshold_interval = threshold_interval
        self.fallback_ids = list(fallback_ids) if fallback_ids else list(PRODUCT_IDS)
        self.state: Optional[RunState] = None

    def check_labels(self) -> List[str]:
        labels = []
        for journey in self.profile.catalog:
            for step in journey.steps:
                labels.extend(label for label in step.checks if label not in labels)
        return labels

    def _context(self, state: RunState) -> IterationContext:
        master = random.Random(self.seed)
        think_time = self.think_time or ThinkTime(rng=random.Random(master.getrandbits(32)))
        return IterationContext(
            executor=self.executor,
            registry=state.registry,
            data=DataSource(random.Random(master.getrandbits(32)), self.fallback_ids),
            think_time=think_time,
            stop_event=state.stop_event,
            rng=random.Random(master.getrandbits(32)),
            fallback_ids=tuple(self.fallback_ids),
            slow_request_ms=self.profile.slow_request_ms,
        )

    async def run(self) -> RunReport:
        state = self.state = RunState()
        registry = state.registry
        for name, metric_type in self.profile.catalog.custom_metrics().items():
            registry.define(name, metric_type)
        if self.profile.slow_request_ms is not None:
            registry.define("degradation_rate", MetricType.RATE)

        labels = self.check_labels()
        for label in labels:
            registry.add_submetric("checks", {"check": label})

        evaluator = ThresholdEvaluator(self.profile.thresholds, registry)
        ctx = self._context(state)
        selector_rng = random.Random(ctx.rng.getrandbits(32))

        scheduler = make_scheduler(self.profile.scheduler, state, self.graceful_stop)
        state.begin(self.profile.scheduler.total_duration)
        logger.info("Starting %s run: %s", self.profile.name, self.profile.scheduler.describe())

        watcher = None
        if evaluator.aborting:
            watcher = asyncio.create_task(self._watch_thresholds(evaluator, state))

        try:
            await scheduler.run(lambda: self._iteration(ctx, state, selector_rng))
        finally:
            if watcher is not None:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
            state.end()

        results = evaluator.evaluate_all(state.elapsed)
        report = build_report(self.profile.name, state, results, labels)
        logger.info(
            "Run %s finished: %s (%d issued, %d completed, %d dropped)",
            self.profile.name, report.verdict, state.issued, state.completed, state.dropped,
        )
        return report

    async def _iteration(self, ctx: IterationContext, state: RunState, rng: random.Random) -> None:
        session = Session()
        journey = select_journey(self.profile.catalog, rng)
        try:
            result = await run_journey(journey, session, ctx)
        except Exception:
            logger.exception("Iteration of %s failed unexpectedly", journey.name)
            state.incomplete += 1
            state.registry.counter("incomplete_iterations", 1, {"journey": journey.name})
            return

        if result.status == IterationStatus.COMPLETED:
            state.completed += 1
        elif result.status == IterationStatus.INCOMPLETE:
            state.incomplete += 1
        else:
            state.interrupted += 1

    async def _watch_thresholds(self, evaluator: ThresholdEvaluator, state: RunState) -> None:
        """Re-evaluate abortOnFail thresholds until the run stops."""
        while not state.stopping:
            try:
                await asyncio.wait_for(state.stop_event.wait(), timeout=self.threshold_interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                breached = evaluator.check_aborting(state.elapsed)
            except ThresholdError:
                logger.exception("Could not evaluate abort thresholds, will retry")
                continue
            if breached is not None:
                state.stop(f"threshold {breached.spec} breached", abort=True)
