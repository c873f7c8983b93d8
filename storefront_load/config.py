"""
Run settings read from the environment.

    BASE_URL=http://localhost:8080 RATE=20 DURATION=10m storefront-load load

CLI flags override individual values through Settings.replace().
"""

import dataclasses
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from storefront_load.exceptions import ConfigError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value) -> float:
    """
    "250ms", "30s", "5m", "1h30m" or a bare number of seconds -> seconds.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if not text:
            raise ConfigError("Empty duration")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ConfigError(f"Invalid duration: {value!r}") from None
    if seconds < 0:
        raise ConfigError(f"Duration must not be negative: {value!r}")
    return seconds


def _get(environ: Mapping[str, str], name: str, default: str) -> str:
    value = environ.get(name)
    return default if value is None or value == "" else value


def _number(environ: Mapping[str, str], name: str, default: str, cast=float):
    raw = _get(environ, name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _duration(environ: Mapping[str, str], name: str, default: str) -> float:
    try:
        return parse_duration(_get(environ, name, default))
    except ConfigError as e:
        raise ConfigError(f"{name}: {e}") from None


@dataclass(frozen=True)
class Settings:
    base_url: str = "http://localhost:8080"
    timeout_connect: float = 5.0
    timeout_read: float = 10.0

    think_time: bool = True
    think_time_min: float = 0.5
    think_time_max: float = 2.0

    # load
    rate: float = 10.0
    duration: float = 300.0
    pre_alloc: int = 20
    max_vus: int = 100

    # smoke
    smoke_vus: int = 2
    smoke_rate: float = 1.0
    smoke_duration: float = 120.0

    # stress
    stress_max_rate: float = 100.0
    stress_stage_scale: float = 1.0

    # soak
    soak_rate: float = 5.0
    soak_duration: float = 1800.0

    graceful_stop: float = 30.0
    seed: Optional[int] = None
    fallback_ids: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        seed = _get(env, "SEED", "")
        fallback = _get(env, "FALLBACK_IDS", "")
        return cls(
            base_url=_get(env, "BASE_URL", cls.base_url).rstrip("/"),
            timeout_connect=_duration(env, "TIMEOUT_CONNECT", "5s"),
            timeout_read=_duration(env, "TIMEOUT_READ", "10s"),
            think_time=_get(env, "THINK_TIME", "1") != "0",
            think_time_min=_number(env, "THINK_TIME_MIN", "0.5"),
            think_time_max=_number(env, "THINK_TIME_MAX", "2"),
            rate=_number(env, "RATE", "10"),
            duration=_duration(env, "DURATION", "5m"),
            pre_alloc=_number(env, "PRE_ALLOC", "20", int),
            max_vus=_number(env, "MAX_VUS", "100", int),
            smoke_vus=_number(env, "SMOKE_VUS", "2", int),
            smoke_rate=_number(env, "SMOKE_RATE", "1"),
            smoke_duration=_duration(env, "SMOKE_DURATION", "2m"),
            stress_max_rate=_number(env, "STRESS_MAX_RATE", "100"),
            stress_stage_scale=_number(env, "STRESS_STAGE_SCALE", "1"),
            soak_rate=_number(env, "SOAK_RATE", "5"),
            soak_duration=_duration(env, "SOAK_DURATION", "30m"),
            graceful_stop=_duration(env, "GRACEFUL_STOP", "30s"),
            seed=_number(env, "SEED", "0", int) if seed else None,
            fallback_ids=tuple(i.strip() for i in fallback.split(",") if i.strip()),
        ).validate()

    def validate(self) -> "Settings":
        if self.think_time_min < 0 or self.think_time_max < self.think_time_min:
            raise ConfigError(
                f"THINK_TIME_MIN/THINK_TIME_MAX out of order: {self.think_time_min}, {self.think_time_max}"
            )
        if self.max_vus < 1 or self.pre_alloc < 1 or self.smoke_vus < 1:
            raise ConfigError("VU counts must be at least 1")
        if self.stress_stage_scale <= 0:
            raise ConfigError("STRESS_STAGE_SCALE must be positive")
        return self

    def replace(self, **overrides) -> "Settings":
        """Copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes).validate()
