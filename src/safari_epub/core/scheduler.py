"""Request pacing, penalty escalation and retry timing.

One scheduler gates all traffic of a conversion run. Every outcome feeds
``record_outcome``; the next request may not start before
``now + spacing + penalty``.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Protocol

from safari_epub.models.config import DownloaderConfig

log = logging.getLogger(__name__)

PENALIZED_STATUSES = frozenset({0, 401, 403, 429, 500, 502, 503, 504})
RATE_LIMIT_STATUSES = frozenset({429, 503})
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
FORBIDDEN_STATUSES = frozenset({401, 403})


class Clock(Protocol):
    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock backed by ``time``."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


@dataclass
class ExecutionState:
    """Mutable pacing state; reset at the start of every run."""

    next_request_time: float = 0.0
    penalty_ms: int = 0
    last_session_refresh: float | None = None


class RequestScheduler:
    """Token-gate style scheduler with an injectable clock."""

    def __init__(
        self,
        config: DownloaderConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config or DownloaderConfig()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.state = ExecutionState(next_request_time=self.clock.now())

    def reset(self) -> None:
        self.state = ExecutionState(next_request_time=self.clock.now())

    def wait(self) -> float:
        """Block until the next request is permitted. Returns seconds slept."""
        wait_time = self.state.next_request_time - self.clock.now()
        if wait_time > 0:
            log.debug("Pacing: waiting %.3fs before next request", wait_time)
            self.clock.sleep(wait_time)
            return wait_time
        return 0.0

    def record_outcome(self, status: int) -> int:
        """Adjust the penalty for a request outcome and return it (ms)."""
        cfg = self.config
        penalty = self.state.penalty_ms
        if status in PENALIZED_STATUSES:
            if status in RATE_LIMIT_STATUSES:
                penalty = min(max(penalty * 2, cfg.penalty_floor_ms), cfg.penalty_cap_ms)
            else:
                penalty = min(penalty + cfg.penalty_step_ms, cfg.penalty_step_cap_ms)
        else:
            penalty = max(penalty // 2, 0)
        self.state.penalty_ms = penalty
        delay = cfg.request_spacing_ms + penalty
        self.state.next_request_time = self.clock.now() + delay / 1000
        return penalty

    def should_retry(
        self,
        status: int,
        attempt: int,
        max_attempts: int,
        retry_on_forbidden: bool = True,
    ) -> bool:
        if attempt >= max_attempts - 1:
            return False
        if status == 0 or status in RETRYABLE_STATUSES:
            return True
        return status in FORBIDDEN_STATUSES and retry_on_forbidden

    def retry_delay_ms(
        self,
        attempt: int,
        status: int = 0,
        base_ms: int | None = None,
        cap_ms: int | None = None,
    ) -> float:
        """Exponential backoff with jitter; rate-limit statuses wait longer."""
        base = self.config.base_retry_delay_ms if base_ms is None else base_ms
        cap = self.config.max_retry_delay_ms if cap_ms is None else cap_ms
        growth = min(cap, base * 2**attempt)
        jitter = self.rng.random() * self.config.retry_jitter_ms
        if status in RATE_LIMIT_STATUSES:
            return min(cap, growth + self.config.rate_limit_extra_delay_ms + jitter)
        return min(cap, growth + jitter)

    def defer(self, delay_ms: float) -> None:
        """Push the next permitted time out to at least ``now + delay``."""
        target = self.clock.now() + delay_ms / 1000
        if target > self.state.next_request_time:
            self.state.next_request_time = target

    def session_refresh_due(self, force: bool = False) -> bool:
        if force or self.state.last_session_refresh is None:
            return True
        elapsed_ms = (self.clock.now() - self.state.last_session_refresh) * 1000
        return elapsed_ms >= self.config.session_refresh_cooldown_ms

    def mark_session_refreshed(self) -> None:
        self.state.last_session_refresh = self.clock.now()
