"""Tests for bulkcerts.core.backoff."""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from bulkcerts.core.backoff import FIRST_INTERVAL, MAX_INTERVAL, Backoff

_SCHEDULE = [
    (timedelta(seconds=10), 3),
    (timedelta(seconds=30), 2),
    (timedelta(minutes=1), 5),
    (timedelta(minutes=5), 2),
    (timedelta(minutes=10), 3),
    (timedelta(minutes=30), 2),
]


class TestBackOff:
    def test_initial_state_is_unthrottled(self):
        backoff = Backoff()
        assert backoff.interval == timedelta(0)
        assert backoff.count == 0
        assert backoff.throttled is False

    def test_first_back_off(self):
        backoff = Backoff()
        backoff.back_off()
        assert backoff.interval == FIRST_INTERVAL
        assert backoff.count == 1
        assert backoff.throttled is True

    def test_full_schedule(self):
        backoff = Backoff()
        for interval, uses in _SCHEDULE:
            for _ in range(uses):
                backoff.back_off()
                assert backoff.interval == interval
        # 3+2+5+2+3+2 calls exhaust every finite interval
        assert backoff.interval == timedelta(minutes=30)
        assert backoff.count == 2

        for _ in range(100):
            backoff.back_off()
            assert backoff.interval == MAX_INTERVAL

    def test_count_keeps_growing_at_terminal_interval(self):
        backoff = Backoff(interval=MAX_INTERVAL, count=7)
        backoff.back_off()
        assert backoff.interval == MAX_INTERVAL
        assert backoff.count == 8

    def test_escalation_resets_count(self):
        backoff = Backoff(interval=timedelta(seconds=10), count=3)
        backoff.back_off()
        assert backoff.interval == timedelta(seconds=30)
        assert backoff.count == 1

    def test_unknown_interval_is_logged_not_raised(self, caplog):
        backoff = Backoff(interval=timedelta(seconds=7), count=1)
        with caplog.at_level(logging.ERROR, logger="bulkcerts.core.backoff"):
            backoff.back_off()
        assert "Unexpected backoff interval" in caplog.text
        assert backoff.interval == timedelta(seconds=7)
        assert backoff.count == 1


class TestResume:
    @pytest.mark.parametrize(
        ("interval", "count"),
        [
            (timedelta(seconds=1), 0),
            (timedelta(seconds=10), 2),
            (MAX_INTERVAL, 250),
        ],
    )
    def test_resume_returns_to_zero(self, interval, count):
        backoff = Backoff(interval=interval, count=count)
        backoff.resume()
        assert backoff.interval == timedelta(0)
        assert backoff.count == 0
        assert backoff.throttled is False

    def test_back_off_after_resume_starts_over(self):
        backoff = Backoff(interval=timedelta(minutes=30), count=2)
        backoff.resume()
        backoff.back_off()
        assert backoff.interval == FIRST_INTERVAL


class TestWait:
    def test_wait_sleeps_for_interval(self):
        sleep = MagicMock()
        backoff = Backoff(sleep=sleep)
        backoff.back_off()
        backoff.wait()
        sleep.assert_called_once_with(10.0)

    def test_wait_blocks_at_least_interval(self):
        backoff = Backoff(interval=timedelta(milliseconds=50))
        start = time.monotonic()
        backoff.wait()
        assert time.monotonic() - start >= 0.05

    def test_repr(self):
        assert "count=0" in repr(Backoff())
