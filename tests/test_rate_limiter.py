#!/usr/bin/env python3
"""
Tests for the list-query throttle.
"""

import pytest

from clinic_scheduler.services.rate_limiter import MinIntervalThrottle


class FakeMonotonic:
    def __init__(self, start=50.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeMonotonic()


@pytest.mark.unit
class TestMinIntervalThrottle:

    def test_first_call_is_served(self, clock):
        throttle = MinIntervalThrottle(0.5, clock=clock)
        assert throttle.allow("prov-1") is True

    def test_call_inside_interval_is_refused(self, clock):
        throttle = MinIntervalThrottle(0.5, clock=clock)
        throttle.allow("prov-1")
        clock.advance(0.2)
        assert throttle.allow("prov-1") is False

    def test_refused_call_does_not_extend_window(self, clock):
        throttle = MinIntervalThrottle(0.5, clock=clock)
        throttle.allow("prov-1")
        clock.advance(0.4)
        assert throttle.allow("prov-1") is False
        clock.advance(0.1)
        assert throttle.allow("prov-1") is True

    def test_keys_are_independent(self, clock):
        throttle = MinIntervalThrottle(0.5, clock=clock)
        assert throttle.allow("prov-1") is True
        assert throttle.allow("prov-2") is True
        assert throttle.allow("prov-1") is False

    def test_zero_interval_disables(self, clock):
        throttle = MinIntervalThrottle(0, clock=clock)
        assert all(throttle.allow("prov-1") for _ in range(5))

    def test_reset(self, clock):
        throttle = MinIntervalThrottle(10, clock=clock)
        throttle.allow("prov-1")
        throttle.allow("prov-2")

        throttle.reset("prov-1")
        assert throttle.allow("prov-1") is True
        assert throttle.allow("prov-2") is False

        throttle.reset()
        assert throttle.allow("prov-2") is True

    def test_default_interval_from_settings(self, monkeypatch):
        from clinic_scheduler.core.config import settings

        monkeypatch.setattr(settings, "QUERY_MIN_INTERVAL_MS", 250)
        assert MinIntervalThrottle().min_interval == 0.25
