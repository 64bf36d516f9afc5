"""Multi-day sleep totals per child, built from the same reconstruction the live view uses."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional

from sleepcheck.core.constants import ANALYTICS_DEFAULT_DAYS
from sleepcheck.core.utils import utc_now
from sleepcheck.services.event_store import EventLogStore
from sleepcheck.utils.sleep_sessions import compliance_summary, reconstruct_sleep_day

logger = logging.getLogger(__name__)


@dataclass
class DailySleepStat:
    day: date
    total_minutes: int
    sessions: int
    late_checks: int


@dataclass
class SleepAnalytics:
    child_id: str
    days: List[DailySleepStat]
    average_sleep_minutes: int
    total_sessions: int
    active_days: int


# Used by: api/sleep.py GET /analytics
async def weekly_sleep_stats(
    store: EventLogStore,
    child_id: str,
    today: date,
    days: int = ANALYTICS_DEFAULT_DAYS,
    now: Optional[datetime] = None,
) -> SleepAnalytics:
    """
    Oldest day first, ending with today. Only today carries live minutes for an
    open session. The average covers days that had any sleep at all.
    """
    now = now or utc_now()
    stats: List[DailySleepStat] = []

    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        events = await store.read(child_id, day)
        sleep_day = reconstruct_sleep_day(events, now=now, include_live=(day == today))
        stats.append(DailySleepStat(
            day=day,
            total_minutes=sleep_day.total_sleep_minutes,
            sessions=len(sleep_day.sessions),
            late_checks=compliance_summary(sleep_day).late_checks,
        ))

    sleeping_days = [s for s in stats if s.total_minutes > 0]
    average = round(sum(s.total_minutes for s in sleeping_days) / len(sleeping_days)) if sleeping_days else 0

    logger.debug(f"Computed {days}-day sleep analytics for child {child_id}")
    return SleepAnalytics(
        child_id=child_id,
        days=stats,
        average_sleep_minutes=average,
        total_sessions=sum(s.sessions for s in stats),
        active_days=len(sleeping_days),
    )
