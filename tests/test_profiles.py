"""Tests for the scenario profiles."""

import pytest

from storefront_load.config import Settings
from storefront_load.exceptions import ConfigError
from storefront_load.profiles import COMMON_THRESHOLDS, PROFILES, build_profile, merge_thresholds
from storefront_load.scheduler import ConstantArrivalRate, RampingArrivalRate, SharedIterations


def selectors(profile):
    return {(str(t.selector), t.condition) for t in profile.thresholds}


class TestProfiles:
    def test_registry(self):
        assert set(PROFILES) == {"smoke", "load", "stress", "soak"}

    def test_unknown_profile(self):
        with pytest.raises(ConfigError):
            build_profile("spike")

    def test_smoke(self):
        profile = build_profile("smoke", Settings())
        assert isinstance(profile.scheduler, ConstantArrivalRate)
        assert profile.scheduler.rate == 1.0
        assert profile.scheduler.duration == 120.0
        assert profile.scheduler.pre_allocated == 2
        assert set(profile.catalog.probabilities().values()) == {0.25}
        assert ("checkout_success_rate", "rate>0.90") in selectors(profile)
        assert ("checkout_success_rate", "rate>0.95") not in selectors(profile)

    def test_load_aborts_on_errors(self):
        profile = build_profile("load", Settings(rate=25, max_vus=80))
        assert profile.scheduler.rate == 25
        assert profile.scheduler.vus_cap == 80
        [aborting] = [t for t in profile.thresholds if t.abort_on_fail]
        assert aborting.metric == "http_req_failed"
        assert profile.catalog.probabilities()["browse"] == pytest.approx(0.4)
        assert ("http_req_duration{step:checkout}", "p(95)<4000") in selectors(profile)

    def test_stress_ramps_and_never_aborts(self):
        profile = build_profile("stress", Settings(stress_max_rate=40, max_vus=100))
        plan = profile.scheduler
        assert isinstance(plan, RampingArrivalRate)
        assert max(s.target for s in plan.stages) == pytest.approx(44)
        assert plan.stages[-1].target == 0
        assert plan.vus_cap == 200
        assert not any(t.abort_on_fail for t in profile.thresholds)
        assert ("http_req_failed", "rate<0.05") in selectors(profile)
        assert ("http_req_failed", "rate<0.01") not in selectors(profile)
        assert ("http_req_duration", "p(99)<10000") in selectors(profile)
        assert ("http_req_duration", "p(95)<2000") not in selectors(profile)

    def test_soak_flags_slow_requests(self):
        profile = build_profile("soak", Settings(soak_duration=600))
        assert profile.slow_request_ms == 2000.0
        assert profile.scheduler.duration == 600
        assert ("degradation_rate", "rate<0.05") in selectors(profile)

    @pytest.mark.parametrize("name", ["stress", "soak"])
    def test_keeps_common_step_thresholds(self, name):
        profile = build_profile(name, Settings())
        found = selectors(profile)
        for step, bound in [("home", "1500"), ("product", "1500"), ("add_to_cart", "2000"),
                            ("view_cart", "1500"), ("checkout", "4000")]:
            assert (f"http_req_duration{{step:{step}}}", f"p(95)<{bound}") in found
        assert ("checkout_duration", "p(95)<6000") in found

    def test_with_iterations_and_journey(self):
        profile = build_profile("load").only_journey("checkout").with_iterations(50, vus=5)
        assert isinstance(profile.scheduler, SharedIterations)
        assert profile.scheduler.iterations == 50
        assert profile.catalog.names == ["checkout"]


class TestMergeThresholds:
    def test_override_replaces_selector(self):
        specs = merge_thresholds({"http_req_failed": ["rate<0.05"]})
        failed = [s.condition for s in specs if s.selector == "http_req_failed"]
        assert failed == ["rate<0.05"]
        assert len(specs) == sum(len(v) for v in COMMON_THRESHOLDS.values())
