"""Tests for argument handling in the command line entry point."""

import pytest

from storefront_load.cli import (
    EXIT_ABORTED,
    EXIT_FAIL,
    EXIT_PASS,
    build_parser,
    exit_code,
    main,
    profile_from_args,
    settings_from_args,
)
from storefront_load.config import Settings
from storefront_load.report import RunReport
from storefront_load.scheduler import SharedIterations


def report_with(verdict):
    return RunReport(
        profile="smoke", verdict=verdict, started_at="", finished_at="",
        duration_seconds=0.0, iterations={}, metrics={},
    )


class TestArguments:
    def test_overrides_apply_to_settings(self):
        args = build_parser().parse_args([
            "load", "--base-url", "http://shop/", "--rate", "30", "--duration", "2m", "--no-think-time", "--seed", "9",
        ])
        settings = settings_from_args(args, Settings())
        assert settings.base_url == "http://shop"
        assert settings.rate == 30
        assert settings.smoke_rate == 30
        assert settings.duration == 120
        assert settings.soak_duration == 120
        assert settings.think_time is False
        assert settings.seed == 9

    def test_unset_flags_keep_settings(self):
        args = build_parser().parse_args(["soak"])
        settings = settings_from_args(args, Settings(soak_rate=3))
        assert settings.soak_rate == 3
        assert settings.think_time is True

    def test_iterations_and_journey(self):
        args = build_parser().parse_args(["smoke", "--iterations", "100", "--journey", "add_to_cart"])
        profile = profile_from_args(args, settings_from_args(args, Settings()))
        assert isinstance(profile.scheduler, SharedIterations)
        assert profile.scheduler.iterations == 100
        assert profile.catalog.names == ["add_to_cart"]

    def test_unknown_profile_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["spike"])

    def test_exit_codes(self):
        assert exit_code(report_with("pass")) == EXIT_PASS
        assert exit_code(report_with("fail")) == EXIT_FAIL
        assert exit_code(report_with("aborted")) == EXIT_ABORTED

    def test_list_profiles(self):
        assert main(["--list-profiles"]) == EXIT_PASS

    def test_profile_required(self):
        with pytest.raises(SystemExit):
            main([])
