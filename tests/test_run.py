"""End-to-end runs against the fake storefront."""

import asyncio

import pytest

from conftest import FakeStorefront
from storefront_load.exceptions import ThresholdError
from storefront_load.executor import ThinkTime
from storefront_load.journeys import storefront_catalog
from storefront_load.profiles import ScenarioProfile, merge_thresholds
from storefront_load.run import Runner
from storefront_load.scheduler import ConstantArrivalRate, SharedIterations
from storefront_load.state import RunState
from storefront_load.thresholds import thresholds_from_mapping


def iterations_profile(journey, iterations, thresholds=None, vus=5):
    return ScenarioProfile(
        name=f"{journey}-x{iterations}",
        description="fixed iterations",
        scheduler=SharedIterations(iterations=iterations, vus=vus, max_duration=60),
        thresholds=merge_thresholds({}) if thresholds is None else thresholds,
        catalog=storefront_catalog().only(journey),
    )


class TestScenarios:
    @pytest.mark.asyncio
    async def test_add_to_cart_all_success(self):
        profile = iterations_profile("add_to_cart", 100)
        runner = Runner(profile, FakeStorefront(), seed=1, think_time=ThinkTime.disabled())

        report = await runner.run()

        assert report.iterations["completed"] == 100
        assert report.iterations["incomplete"] == 0
        assert report.value("step_success", "rate") == 1.0
        assert report.value("http_reqs", "count") == 400
        assert report.assertion_failures == 0
        assert report.verdict == "pass"
        assert report.passed

    @pytest.mark.asyncio
    async def test_checkout_every_fifth_fails(self):
        storefront = FakeStorefront(fail_every=5, fail_path="/cart/checkout")
        profile = iterations_profile("checkout", 50)
        runner = Runner(profile, storefront, seed=2, think_time=ThinkTime.disabled())

        report = await runner.run()

        assert report.iterations["completed"] == 50
        assert report.value("checkout_success_rate", "rate") == 0.80
        assert report.value("checkout_errors", "count") == 10
        assert report.checks["checkout: status 2xx"] == {"passes": 40, "fails": 10}
        assert report.assertion_failures == 10
        assert report.verdict == "fail"
        failed = [str(t.spec) for t in report.failed_thresholds()]
        assert "checkout_success_rate: rate>0.95" in failed

    @pytest.mark.asyncio
    async def test_transport_failures_are_incomplete_iterations(self):
        profile = iterations_profile("browse", 20, thresholds=[])
        runner = Runner(profile, FakeStorefront(raise_on="/"), seed=3, think_time=ThinkTime.disabled())

        report = await runner.run()

        assert report.iterations["incomplete"] == 20
        assert report.iterations["completed"] == 0
        assert report.value("http_req_failed", "rate") == 1.0


class TestRunner:
    @pytest.mark.asyncio
    async def test_abort_on_fail_stops_issuance(self):
        profile = ScenarioProfile(
            name="abort",
            description="always failing backend",
            scheduler=ConstantArrivalRate(rate=20, duration=10, pre_allocated=5, max_vus=20),
            thresholds=thresholds_from_mapping({
                "http_req_failed": [{"threshold": "rate<0.01", "abortOnFail": True}],
            }),
            catalog=storefront_catalog(),
        )
        runner = Runner(
            profile,
            FakeStorefront(status=500),
            seed=4,
            think_time=ThinkTime.disabled(),
            graceful_stop=1.0,
            threshold_interval=0.2,
        )

        report = await runner.run()
        state = runner.state

        assert report.verdict == "aborted"
        assert "http_req_failed" in report.abort_reason
        assert report.duration_seconds < 5
        assert state.issue_offsets
        assert all(offset <= state.abort_offset for offset in state.issue_offsets)
        assert report.iterations["issued"] < 200

    @pytest.mark.asyncio
    async def test_runs_are_isolated(self):
        first = await Runner(iterations_profile("browse", 5), FakeStorefront(), think_time=ThinkTime.disabled()).run()
        second = await Runner(iterations_profile("browse", 7), FakeStorefront(), think_time=ThinkTime.disabled()).run()
        assert first.iterations["completed"] == 5
        assert second.iterations["completed"] == 7
        assert second.value("iterations", "count") == 7

    @pytest.mark.asyncio
    async def test_seeded_runs_pick_the_same_journeys(self):
        def profile():
            return ScenarioProfile(
                name="mix",
                description="weighted mix",
                scheduler=SharedIterations(iterations=30, vus=1),
                thresholds=[],
                catalog=storefront_catalog(),
            )

        a, b = FakeStorefront(), FakeStorefront()
        await Runner(profile(), a, seed=99, think_time=ThinkTime.disabled()).run()
        await Runner(profile(), b, seed=99, think_time=ThinkTime.disabled()).run()
        assert a.paths == b.paths

    @pytest.mark.asyncio
    async def test_soak_slow_requests(self):
        profile = ScenarioProfile(
            name="soak",
            description="slow backend",
            scheduler=SharedIterations(iterations=3, vus=3),
            thresholds=thresholds_from_mapping({"degradation_rate": ["rate<0.05"]}),
            catalog=storefront_catalog().only("browse"),
            slow_request_ms=1.0,
        )
        report = await Runner(profile, FakeStorefront(delay=0.01), think_time=ThinkTime.disabled()).run()
        assert report.value("degradation_rate", "rate") == 1.0
        assert report.verdict == "fail"

    @pytest.mark.asyncio
    async def test_mistyped_abort_threshold_fails_before_any_request(self):
        profile = ScenarioProfile(
            name="typo",
            description="percentile on a rate metric",
            scheduler=ConstantArrivalRate(rate=20, duration=1, pre_allocated=2, max_vus=5),
            thresholds=thresholds_from_mapping({
                "http_req_failed": [{"threshold": "p(95)<1", "abortOnFail": True}],
            }),
            catalog=storefront_catalog(),
        )
        storefront = FakeStorefront()
        runner = Runner(profile, storefront, think_time=ThinkTime.disabled(), threshold_interval=0.1)

        with pytest.raises(ThresholdError):
            await runner.run()
        assert storefront.calls == []

    @pytest.mark.asyncio
    async def test_threshold_watcher_survives_evaluation_errors(self):
        class FlakyEvaluator:
            calls = 0

            def check_aborting(self, duration=0.0):
                self.calls += 1
                if self.calls == 1:
                    raise ThresholdError("metric went away")
                return None

        runner = Runner(iterations_profile("browse", 1), FakeStorefront(), threshold_interval=0.05)
        state = RunState()
        state.begin(1.0)
        evaluator = FlakyEvaluator()
        asyncio.get_running_loop().call_later(0.4, state.stop, "done")

        await runner._watch_thresholds(evaluator, state)

        assert evaluator.calls >= 2
        assert not state.aborted
