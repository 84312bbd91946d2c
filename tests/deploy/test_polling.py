"""Tests for the bounded poll loop."""

from __future__ import annotations

import pytest
from _support.fake_remote import FakeClock

from rollout.deploy.polling import poll_until
from rollout.deploy.results import BuildStatus


def _sequence(*values):
    remaining = list(values)
    checks = []

    def check():
        value = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        checks.append(value)
        return value

    return check, checks


def _terminal(status):
    return BuildStatus.parse(status).is_terminal


class TestPollUntil:
    def test_three_checks_until_success(self, clock: FakeClock):
        check, checks = _sequence("IN_PROGRESS", "IN_PROGRESS", "SUCCEEDED")
        outcome = poll_until(check, _terminal, interval=30, timeout=1200, clock=clock.as_clock())
        assert outcome.value == "SUCCEEDED"
        assert outcome.attempts == 3
        assert len(checks) == 3
        assert outcome.done and not outcome.timed_out
        assert clock.sleeps == [30, 30]

    def test_two_checks_until_failure(self, clock: FakeClock):
        check, checks = _sequence("IN_PROGRESS", "FAILED")
        outcome = poll_until(check, _terminal, interval=30, timeout=1200, clock=clock.as_clock())
        assert outcome.value == "FAILED"
        assert len(checks) == 2
        assert not outcome.timed_out

    def test_unknown_status_keeps_polling(self, clock: FakeClock):
        check, checks = _sequence("QUEUED_SOMEWHERE_NEW", "SUCCEEDED")
        outcome = poll_until(check, _terminal, interval=30, timeout=1200, clock=clock.as_clock())
        assert outcome.value == "SUCCEEDED"
        assert len(checks) == 2

    def test_observation_at_exact_bound_counts(self, clock: FakeClock):
        # checks at t=0,30,...,600; the 21st sees the terminal state at t=600
        check, checks = _sequence(*(["IN_PROGRESS"] * 20 + ["SUCCEEDED"]))
        outcome = poll_until(check, _terminal, interval=30, timeout=600, clock=clock.as_clock())
        assert outcome.value == "SUCCEEDED"
        assert outcome.attempts == 21
        assert outcome.elapsed == 600
        assert not outcome.timed_out

    def test_times_out_one_check_later(self, clock: FakeClock):
        check, checks = _sequence(*(["IN_PROGRESS"] * 21 + ["SUCCEEDED"]))
        outcome = poll_until(check, _terminal, interval=30, timeout=600, clock=clock.as_clock())
        assert outcome.timed_out
        assert outcome.value == "IN_PROGRESS"
        assert outcome.attempts == 21
        assert len(checks) == 21

    def test_last_sleep_truncated_to_bound(self, clock: FakeClock):
        check, _ = _sequence("IN_PROGRESS")
        outcome = poll_until(check, _terminal, interval=30, timeout=70, clock=clock.as_clock())
        assert outcome.timed_out
        assert clock.sleeps == [30, 30, 10]
        assert outcome.elapsed == 70

    def test_on_poll_called_for_non_terminal_checks(self, clock: FakeClock):
        check, _ = _sequence("IN_PROGRESS", "IN_PROGRESS", "SUCCEEDED")
        seen = []
        poll_until(
            check,
            _terminal,
            interval=30,
            timeout=1200,
            clock=clock.as_clock(),
            on_poll=lambda value, attempt, elapsed: seen.append((value, attempt, elapsed)),
        )
        assert seen == [("IN_PROGRESS", 1, 0), ("IN_PROGRESS", 2, 30)]

    def test_check_errors_propagate(self, clock: FakeClock):
        def check():
            raise RuntimeError("api down")

        with pytest.raises(RuntimeError, match="api down"):
            poll_until(check, bool, interval=1, timeout=10, clock=clock.as_clock())

    @pytest.mark.parametrize("interval, timeout", [(0, 10), (10, 0), (-1, 10)])
    def test_rejects_non_positive_bounds(self, interval, timeout):
        with pytest.raises(ValueError):
            poll_until(lambda: 1, bool, interval=interval, timeout=timeout)
