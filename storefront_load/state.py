"""
RunState: the mutable bookkeeping of one run.

Created by the Runner, shared by the scheduler and every iteration of that
run, and nothing else. Two runs never share a RunState, so runs in the same
process (tests) stay isolated.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from storefront_load.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

ISSUE_HISTORY = 10000


@dataclass
class RunState:
    registry: MetricsRegistry = field(default_factory=MetricsRegistry)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: float = 0.0
    target_end_at: float = 0.0
    finished_at: float = 0.0

    issued: int = 0
    active: int = 0
    completed: int = 0
    incomplete: int = 0
    interrupted: int = 0
    dropped: int = 0

    aborted: bool = False
    abort_reason: Optional[str] = None
    stop_reason: Optional[str] = None

    # Elapsed seconds at which the most recent iterations were started
    issue_offsets: Deque[float] = field(default_factory=lambda: deque(maxlen=ISSUE_HISTORY))
    abort_offset: Optional[float] = None
    _clock_start: float = 0.0

    def begin(self, duration: float) -> None:
        self.started_at = time.time()
        self._clock_start = time.monotonic()
        self.target_end_at = self.started_at + duration

    def end(self) -> None:
        self.finished_at = time.time()

    def record_issue(self) -> None:
        self.issued += 1
        self.issue_offsets.append(self.offset())

    @property
    def elapsed(self) -> float:
        if not self.started_at:
            return 0.0
        if self.finished_at:
            return self.finished_at - self.started_at
        return self.offset()

    def offset(self) -> float:
        """Monotonic seconds since begin()."""
        return time.monotonic() - self._clock_start if self._clock_start else 0.0

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def stop(self, reason: str, abort: bool = False) -> None:
        """Stop issuing iterations; with abort=True the run is marked failed."""
        if abort and not self.aborted:
            self.aborted = True
            self.abort_reason = reason
            self.abort_offset = self.elapsed
        if not self.stop_event.is_set():
            self.stop_reason = reason
            logger.info("Stopping run: %s", reason)
            self.stop_event.set()
