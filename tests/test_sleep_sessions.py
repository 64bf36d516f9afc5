"""Tests for folding a day's sleep log into sessions and totals"""
from datetime import timedelta

from conftest import MORNING, make_event

from sleepcheck.utils.sleep_sessions import (
    ABANDONED_SESSION,
    ORPHAN_EVENT,
    SESSION_ID_MISMATCH,
    compliance_summary,
    reconstruct_sleep_day,
)


def test_example_day_single_closed_session(example_day_events):
    day = reconstruct_sleep_day(example_day_events, now=MORNING + timedelta(hours=3))

    assert len(day.sessions) == 1
    session = day.sessions[0]
    assert session.is_active is False
    assert session.end_time == MORNING + timedelta(minutes=45)
    assert session.total_duration_minutes == 45
    assert [e.interval_since_last_minutes for e in session.events[1:]] == [15, 16, 14]
    assert day.open_session is None
    assert day.total_sleep_minutes == 45
    assert day.live_minutes == 0


def test_reconstruction_is_repeatable(example_day_events):
    now = MORNING + timedelta(hours=1)
    assert reconstruct_sleep_day(example_day_events, now=now) == reconstruct_sleep_day(example_day_events, now=now)


def test_empty_log():
    day = reconstruct_sleep_day([])
    assert day.sessions == []
    assert day.open_session is None
    assert day.total_sleep_minutes == 0
    assert day.anomalies == []


def test_unsorted_input_is_ordered_by_timestamp(example_day_events):
    day = reconstruct_sleep_day(list(reversed(example_day_events)), now=MORNING + timedelta(hours=1))
    assert day.total_sleep_minutes == 45
    assert day.sessions[0].events[0].kind.value == "start"


def test_open_session_counts_live_minutes_for_today():
    events = [
        make_event("start", MORNING),
        make_event("check", MORNING + timedelta(minutes=10), interval=10),
    ]
    day = reconstruct_sleep_day(events, now=MORNING + timedelta(minutes=22, seconds=50))

    assert day.open_session is not None
    assert day.open_session.is_active is True
    assert day.checkpoint_time == MORNING + timedelta(minutes=10)
    assert day.live_minutes == 22
    assert day.total_sleep_minutes == 22


def test_past_day_never_includes_live_minutes():
    events = [make_event("start", MORNING)]
    day = reconstruct_sleep_day(events, now=MORNING + timedelta(days=2), include_live=False)

    assert day.open_session is not None
    assert day.live_minutes == 0
    assert day.total_sleep_minutes == 0


def test_live_minutes_never_negative_with_skewed_clock():
    events = [make_event("start", MORNING)]
    day = reconstruct_sleep_day(events, now=MORNING - timedelta(minutes=3))
    assert day.live_minutes == 0


def test_orphan_events_belong_to_no_session():
    events = [
        make_event("check", MORNING, interval=5),
        make_event("stop", MORNING + timedelta(minutes=5), mood="Happy", interval=5),
    ]
    day = reconstruct_sleep_day(events, now=MORNING + timedelta(hours=1))

    assert day.sessions == []
    assert day.total_sleep_minutes == 0
    assert [a.kind for a in day.anomalies] == [ORPHAN_EVENT, ORPHAN_EVENT]


def test_double_start_abandons_first_run():
    events = [
        make_event("start", MORNING, session_id="session_a"),
        make_event("check", MORNING + timedelta(minutes=15), session_id="session_a", interval=15),
        make_event("start", MORNING + timedelta(minutes=20), session_id="session_b"),
    ]
    day = reconstruct_sleep_day(events, now=MORNING + timedelta(minutes=30))

    assert [s.session_id for s in day.sessions] == ["session_a", "session_b"]
    assert day.sessions[0].abandoned is True
    assert day.sessions[0].is_active is False
    assert day.sessions[0].total_duration_minutes is None
    assert day.open_session.session_id == "session_b"
    assert day.closed_minutes == 0
    assert day.live_minutes == 10
    assert day.anomalies[0].kind == ABANDONED_SESSION


def test_every_non_orphan_event_lands_in_exactly_one_session(example_day_events):
    extra = [
        make_event("check", MORNING - timedelta(minutes=30), session_id="stray", interval=3),
        make_event("start", MORNING + timedelta(hours=2), session_id="session_2"),
    ]
    events = example_day_events + extra
    day = reconstruct_sleep_day(events, now=MORNING + timedelta(hours=3))

    grouped = [e.id for s in day.sessions for e in s.events]
    orphaned = [a.event_id for a in day.anomalies if a.kind == ORPHAN_EVENT]
    assert sorted(grouped + orphaned) == sorted(e.id for e in events)
    assert len(set(grouped)) == len(grouped)


def test_adding_a_closed_session_adds_exactly_its_duration(example_day_events):
    now = MORNING + timedelta(hours=6)
    before = reconstruct_sleep_day(example_day_events, now=now).total_sleep_minutes

    afternoon = MORNING + timedelta(hours=4)
    nap = [
        make_event("start", afternoon, session_id="session_2"),
        make_event("stop", afternoon + timedelta(minutes=33, seconds=59), session_id="session_2", mood="Fussy", interval=33),
    ]
    after = reconstruct_sleep_day(example_day_events + nap, now=now).total_sleep_minutes

    assert after - before == 33


def test_mismatched_session_id_is_flagged_but_grouped():
    events = [
        make_event("start", MORNING, session_id="session_a"),
        make_event("check", MORNING + timedelta(minutes=14), session_id="session_x", interval=14),
    ]
    day = reconstruct_sleep_day(events, now=MORNING + timedelta(minutes=20))

    assert len(day.open_session.events) == 2
    assert day.anomalies[0].kind == SESSION_ID_MISMATCH


def test_equal_timestamps_keep_arrival_order():
    events = [
        make_event("start", MORNING, event_id="entry_first"),
        make_event("stop", MORNING, mood="Upset", interval=0, event_id="entry_second"),
    ]
    day = reconstruct_sleep_day(events, now=MORNING)

    assert day.open_session is None
    assert day.sessions[0].total_duration_minutes == 0


def test_compliance_summary_counts_late_checks(example_day_events):
    late = make_event("check", MORNING + timedelta(hours=2), session_id="session_2", interval=22)
    events = example_day_events + [make_event("start", MORNING + timedelta(hours=1, minutes=38), session_id="session_2"), late]
    summary = compliance_summary(reconstruct_sleep_day(events, now=MORNING + timedelta(hours=3)))

    assert summary.checks_recorded == 3
    assert summary.intervals_recorded == 4
    assert summary.late_checks == 2
    assert summary.longest_interval_minutes == 22
    assert summary.average_interval_minutes == 16.8


def test_compliance_summary_for_empty_day():
    summary = compliance_summary(reconstruct_sleep_day([]))
    assert summary.checks_recorded == 0
    assert summary.longest_interval_minutes is None
    assert summary.average_interval_minutes is None
