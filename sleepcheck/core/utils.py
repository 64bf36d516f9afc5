"""Shared lookup maps and time helpers."""

from datetime import date, datetime, timezone
from typing import Callable, Dict, FrozenSet

import pytz

# Used by: session_actions.py, api/sleep.py, allowed positions per event kind
POSITIONS_BY_KIND: Dict[str, FrozenSet[str]] = {
    "start": frozenset({"Back", "Side", "Tummy"}),
    "check": frozenset({"Back", "Side", "Tummy"}),
    "stop": frozenset({"Back", "Side", "Tummy", "Seated", "Standing"}),
}

Clock = Callable[[], datetime]


# Used by: default Clock everywhere a "now" is injected
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Used by: event_store.py, monitor.py, sleep_analytics.py, which daily log an instant belongs to
def local_day(instant: datetime, tz_name: str) -> date:
    if instant.tzinfo is None:
        instant = pytz.utc.localize(instant)
    return instant.astimezone(pytz.timezone(tz_name)).date()


# Used by: sleep_sessions.py, session_actions.py, floor of elapsed minutes
def whole_minutes_between(earlier: datetime, later: datetime) -> int:
    return int((later - earlier).total_seconds() // 60)
