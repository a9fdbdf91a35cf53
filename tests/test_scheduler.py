from __future__ import annotations

import random

import pytest

from safari_epub.core.scheduler import RequestScheduler
from safari_epub.models.config import DownloaderConfig

from conftest import FakeClock


def test_rate_limit_doubles_penalty_within_bounds(scheduler: RequestScheduler) -> None:
    assert scheduler.record_outcome(429) == 500
    assert scheduler.record_outcome(503) == 1000
    for _ in range(10):
        scheduler.record_outcome(429)
    assert scheduler.state.penalty_ms == 8000


def test_other_failures_add_fixed_step(scheduler: RequestScheduler) -> None:
    assert scheduler.record_outcome(500) == 250
    assert scheduler.record_outcome(0) == 500
    assert scheduler.record_outcome(403) == 750
    for _ in range(40):
        scheduler.record_outcome(502)
    assert scheduler.state.penalty_ms == 6000


def test_success_halves_penalty(scheduler: RequestScheduler) -> None:
    scheduler.record_outcome(429)
    scheduler.record_outcome(429)
    assert scheduler.record_outcome(200) == 500
    assert scheduler.record_outcome(200) == 250
    assert scheduler.record_outcome(404) == 125


def test_next_request_time_includes_spacing_and_penalty(
    scheduler: RequestScheduler, clock: FakeClock
) -> None:
    scheduler.record_outcome(429)
    assert scheduler.state.next_request_time == pytest.approx(clock.now() + 0.7)


def test_wait_sleeps_until_permitted(scheduler: RequestScheduler, clock: FakeClock) -> None:
    assert scheduler.wait() == 0.0
    scheduler.record_outcome(200)
    slept = scheduler.wait()
    assert slept == pytest.approx(0.2)
    assert clock.sleeps == [pytest.approx(0.2)]
    assert scheduler.wait() == pytest.approx(0.0, abs=1e-9)


def test_consecutive_requests_are_spaced(scheduler: RequestScheduler, clock: FakeClock) -> None:
    starts = []
    for _ in range(5):
        scheduler.wait()
        starts.append(clock.now())
        scheduler.record_outcome(200)
    assert starts[-1] - starts[0] >= 4 * 0.2 - 1e-9


def test_should_retry(scheduler: RequestScheduler) -> None:
    assert scheduler.should_retry(503, 0, 4)
    assert scheduler.should_retry(0, 0, 4)
    assert scheduler.should_retry(401, 0, 4)
    assert not scheduler.should_retry(401, 0, 4, retry_on_forbidden=False)
    assert not scheduler.should_retry(404, 0, 4)
    assert not scheduler.should_retry(503, 3, 4)


def test_retry_delay_grows_and_caps(clock: FakeClock) -> None:
    config = DownloaderConfig(retry_jitter_ms=0)
    scheduler = RequestScheduler(config, clock=clock, rng=random.Random(1))
    assert scheduler.retry_delay_ms(0) == 750
    assert scheduler.retry_delay_ms(1) == 1500
    assert scheduler.retry_delay_ms(2, status=429) == 4000
    assert scheduler.retry_delay_ms(5) == 8000
    assert scheduler.retry_delay_ms(5, status=503) == 8000


def test_retry_delay_jitter_is_bounded(scheduler: RequestScheduler) -> None:
    for _ in range(20):
        delay = scheduler.retry_delay_ms(0)
        assert 750 <= delay < 1000


def test_defer_only_moves_forward(scheduler: RequestScheduler, clock: FakeClock) -> None:
    scheduler.defer(1000)
    target = scheduler.state.next_request_time
    scheduler.defer(10)
    assert scheduler.state.next_request_time == target
    assert target == pytest.approx(clock.now() + 1.0)


def test_session_refresh_cooldown(scheduler: RequestScheduler, clock: FakeClock) -> None:
    assert scheduler.session_refresh_due()
    scheduler.mark_session_refreshed()
    assert not scheduler.session_refresh_due()
    assert scheduler.session_refresh_due(force=True)
    clock.advance(30)
    assert scheduler.session_refresh_due()


def test_reset_clears_penalty(scheduler: RequestScheduler) -> None:
    scheduler.record_outcome(429)
    scheduler.mark_session_refreshed()
    scheduler.reset()
    assert scheduler.state.penalty_ms == 0
    assert scheduler.state.last_session_refresh is None
