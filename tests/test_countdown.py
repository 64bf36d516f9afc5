"""Tests for the 15-minute check countdown"""
from datetime import timedelta

import pytest

from conftest import MORNING, FakeClock

from sleepcheck.services.countdown import ComplianceCountdown, Severity, severity_for


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def countdown(clock, alerts):
    return ComplianceCountdown(lambda message, severity: alerts.append((message, severity)), clock=clock, label="child-1")


def run_ticks(clock: FakeClock, countdown: ComplianceCountdown, seconds: int) -> None:
    for _ in range(seconds):
        clock.advance(seconds=1)
        countdown.tick()


def test_each_threshold_fires_exactly_once(clock, countdown, alerts):
    countdown.start(clock())
    run_ticks(clock, countdown, 900)
    run_ticks(clock, countdown, 120)

    assert alerts == [
        ("Sleep check due in 3 minutes", Severity.WARNING),
        ("Sleep check due in 2 minutes", Severity.WARNING),
        ("Sleep check due in 1 minute", Severity.URGENT),
    ]


def test_threshold_fires_on_the_exact_second(clock, countdown, alerts):
    countdown.start(clock())
    run_ticks(clock, countdown, 719)
    assert alerts == []

    run_ticks(clock, countdown, 1)
    assert len(alerts) == 1
    assert countdown.seconds_remaining() == 180


def test_new_checkpoint_rearms_all_thresholds(clock, countdown, alerts):
    countdown.start(clock())
    run_ticks(clock, countdown, 850)
    assert len(alerts) == 3

    countdown.start(clock())
    snapshot = countdown.snapshot()
    assert snapshot.seconds_remaining == 900
    assert snapshot.fired == {180: False, 120: False, 60: False}

    run_ticks(clock, countdown, 900)
    assert len(alerts) == 6


def test_resume_reports_remaining_without_duplicate_alerts(clock, countdown, alerts):
    countdown.start(MORNING - timedelta(seconds=800))

    snapshot = countdown.snapshot()
    assert snapshot.seconds_remaining == 100
    assert snapshot.fired == {180: True, 120: True, 60: False}

    countdown.tick()
    assert alerts == []

    run_ticks(clock, countdown, 40)
    assert alerts == [("Sleep check due in 1 minute", Severity.URGENT)]


def test_resume_long_past_checkpoint_is_overdue(clock, countdown, alerts):
    countdown.start(MORNING - timedelta(hours=1))
    countdown.tick()

    snapshot = countdown.snapshot()
    assert snapshot.seconds_remaining == 0
    assert snapshot.is_overdue is True
    assert snapshot.severity == Severity.URGENT
    assert alerts == []


def test_jump_over_several_thresholds_fires_each_in_order(clock, countdown, alerts):
    countdown.start(clock())
    clock.advance(seconds=880)
    countdown.tick()

    assert [message for message, _ in alerts] == [
        "Sleep check due in 3 minutes",
        "Sleep check due in 2 minutes",
        "Sleep check due in 1 minute",
    ]


def test_future_checkpoint_is_clamped(clock, countdown):
    countdown.start(MORNING + timedelta(seconds=45))
    assert countdown.seconds_remaining() == 900


def test_teardown_stops_alerts(clock, countdown, alerts):
    countdown.start(clock())
    run_ticks(clock, countdown, 600)
    countdown.teardown()
    run_ticks(clock, countdown, 400)

    assert alerts == []
    assert countdown.is_active is False
    assert countdown.snapshot() is None


@pytest.mark.parametrize("remaining, expected", [
    (900, Severity.NORMAL),
    (181, Severity.NORMAL),
    (180, Severity.WARNING),
    (61, Severity.WARNING),
    (60, Severity.URGENT),
    (0, Severity.URGENT),
])
def test_severity_bands(remaining, expected):
    assert severity_for(remaining) == expected
