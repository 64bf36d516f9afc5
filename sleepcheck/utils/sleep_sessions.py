"""Folds a child's ordered daily sleep log into sessions, the open session, and total sleep."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from sleepcheck.core.constants import CHECK_INTERVAL_SECONDS
from sleepcheck.core.utils import utc_now, whole_minutes_between
from sleepcheck.db.models import EventKind, SleepEvent

logger = logging.getLogger(__name__)

ORPHAN_EVENT = "orphan_event"
ABANDONED_SESSION = "abandoned_session"
SESSION_ID_MISMATCH = "session_id_mismatch"


# Used by: reconstruct_sleep_day() return; monitor, api/sleep.py, sleep_analytics.py
@dataclass
class SleepSession:
    session_id: str
    child_id: str
    start_time: datetime
    end_time: Optional[datetime]
    events: List[SleepEvent]
    is_active: bool
    abandoned: bool = False
    total_duration_minutes: Optional[int] = None


# Used by: reconstruct_sleep_day(), malformed-log diagnostics, never raised
@dataclass
class ReconstructionAnomaly:
    kind: str
    event_id: str
    message: str


@dataclass
class SleepDay:
    sessions: List[SleepSession] = field(default_factory=list)
    open_session: Optional[SleepSession] = None
    closed_minutes: int = 0
    live_minutes: int = 0
    anomalies: List[ReconstructionAnomaly] = field(default_factory=list)

    @property
    def total_sleep_minutes(self) -> int:
        return self.closed_minutes + self.live_minutes

    @property
    def checkpoint_time(self) -> Optional[datetime]:
        """Time of the last start/check in the open session; anchors the countdown."""
        if self.open_session is None:
            return None
        return self.open_session.events[-1].timestamp


# Used by: compliance_summary()
@dataclass
class ComplianceSummary:
    checks_recorded: int
    intervals_recorded: int
    late_checks: int
    longest_interval_minutes: Optional[int]
    average_interval_minutes: Optional[float]


# Used by: monitor.py (every snapshot), api/sleep.py (history), sleep_analytics.py
def reconstruct_sleep_day(
    events: Sequence[SleepEvent],
    now: Optional[datetime] = None,
    include_live: bool = True,
) -> SleepDay:
    """Single pass over the day's events.

    A start while a run is still open abandons that run: it stays in the session
    list but never counts toward total sleep. Check/stop events with no open run
    are orphans and belong to no session. Pass include_live=False for past days
    so an unterminated session contributes nothing.
    """
    day = SleepDay()
    if not events:
        return day

    # Stable: arrival order breaks timestamp ties between devices
    ordered = sorted(events, key=lambda e: e.timestamp)

    run: List[SleepEvent] = []
    for event in ordered:
        if event.kind == EventKind.START:
            if run:
                day.sessions.append(_build_session(run, abandoned=True))
                _flag(
                    day,
                    ABANDONED_SESSION,
                    run[0].id,
                    f"Session {run[0].session_id} was never stopped before "
                    f"{event.session_id} started",
                )
            run = [event]
            continue

        if not run:
            _flag(
                day,
                ORPHAN_EVENT,
                event.id,
                f"{event.kind.value} at {event.timestamp.isoformat()} has no open session",
            )
            continue

        if event.session_id != run[0].session_id:
            _flag(
                day,
                SESSION_ID_MISMATCH,
                event.id,
                f"{event.kind.value} carries session {event.session_id}, "
                f"grouped into {run[0].session_id}",
            )

        run.append(event)
        if event.kind == EventKind.STOP:
            session = _build_session(run)
            day.sessions.append(session)
            day.closed_minutes += session.total_duration_minutes or 0
            run = []

    if run:
        open_session = _build_session(run)
        day.sessions.append(open_session)
        day.open_session = open_session
        if include_live:
            current = now or utc_now()
            day.live_minutes = max(whole_minutes_between(open_session.start_time, current), 0)

    return day


# Used by: reconstruct_sleep_day()
def _build_session(run: List[SleepEvent], abandoned: bool = False) -> SleepSession:
    start = run[0]
    last = run[-1]
    closed = last.kind == EventKind.STOP

    return SleepSession(
        session_id=start.session_id,
        child_id=start.child_id,
        start_time=start.timestamp,
        end_time=last.timestamp if closed else None,
        events=list(run),
        is_active=not closed and not abandoned,
        abandoned=abandoned,
        total_duration_minutes=whole_minutes_between(start.timestamp, last.timestamp) if closed else None,
    )


# Used by: reconstruct_sleep_day()
def _flag(day: SleepDay, kind: str, event_id: str, message: str) -> None:
    logger.warning(f"Sleep log anomaly ({kind}) on event {event_id}: {message}")
    day.anomalies.append(ReconstructionAnomaly(kind=kind, event_id=event_id, message=message))


# Used by: api/sleep.py (state + history), sleep_analytics.py
def compliance_summary(day: SleepDay) -> ComplianceSummary:
    """Check-interval statistics over every grouped session of the day."""
    limit_minutes = CHECK_INTERVAL_SECONDS // 60

    checks = 0
    intervals: List[int] = []
    for session in day.sessions:
        for event in session.events:
            if event.kind == EventKind.CHECK:
                checks += 1
            if event.interval_since_last_minutes is not None:
                intervals.append(event.interval_since_last_minutes)

    return ComplianceSummary(
        checks_recorded=checks,
        intervals_recorded=len(intervals),
        late_checks=sum(1 for minutes in intervals if minutes > limit_minutes),
        longest_interval_minutes=max(intervals) if intervals else None,
        average_interval_minutes=round(sum(intervals) / len(intervals), 1) if intervals else None,
    )
