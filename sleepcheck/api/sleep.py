"""
Sleep check endpoints: staff record start/check/stop and read live state, history and analytics.

Routes (/children/{child_id}/sleep):
  GET    /state          - Today's sessions, countdown and which actions are allowed
  POST   /start          - Put the child down; opens a session and starts the 15 min countdown
  POST   /check          - Record a check; resets the countdown
  POST   /stop           - Child is up; closes the session (mood required)
  GET    /history/{day}  - Sessions and totals for one facility day (YYYY-MM-DD)
  GET    /analytics      - Per-day totals for the last N days (default 7)
  DELETE /monitor        - Stop following this child; tears the countdown down
"""

import logging
from datetime import date
from typing import Optional
from fastapi import APIRouter, HTTPException, Query, status

from .models import (
    AnomalyResponse,
    CheckRequest,
    ComplianceSummaryResponse,
    CountdownResponse,
    DailySleepStatResponse,
    MonitorUnmountResponse,
    SessionResponse,
    SleepAnalyticsResponse,
    SleepDayResponse,
    SleepEventResponse,
    SleepStateResponse,
    StartRequest,
    StopRequest,
)
from ..core.constants import ANALYTICS_DEFAULT_DAYS, ANALYTICS_MAX_DAYS
from ..services.event_store import EventStoreError
from ..services.monitor import ChildSleepMonitor, get_monitor_registry
from ..services.session_actions import (
    InvalidPosition,
    MissingMood,
    NoOpenSession,
    NotesTooLong,
    NotIdentified,
    SessionAlreadyOpen,
    SleepActionError,
    StaticIdentityProvider,
)
from ..services.sleep_analytics import weekly_sleep_stats
from ..utils.sleep_sessions import SleepDay, compliance_summary, reconstruct_sleep_day

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children/{child_id}/sleep", tags=["sleep-checks"])

_ERROR_STATUS = {
    NotIdentified: status.HTTP_403_FORBIDDEN,
    SessionAlreadyOpen: status.HTTP_409_CONFLICT,
    NoOpenSession: status.HTTP_409_CONFLICT,
    MissingMood: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidPosition: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotesTooLong: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _action_error(e: SleepActionError) -> HTTPException:
    code = _ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail={"error": type(e).__name__, "message": e.message})


def _store_error(e: EventStoreError) -> HTTPException:
    logger.error(f"Sleep log store failure: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "EventStoreError", "message": "The sleep log is unavailable, please try again"}
    )


async def _monitor(child_id: str) -> ChildSleepMonitor:
    try:
        return await get_monitor_registry().get_or_mount(child_id)
    except EventStoreError as e:
        logger.warning(f"Could not mount sleep monitor for child {child_id}")
        raise _store_error(e)


def _day_response(child_id: str, day: date, sleep_day: SleepDay) -> dict:
    summary = compliance_summary(sleep_day)
    return dict(
        child_id=child_id,
        day=day,
        sessions=[
            SessionResponse(
                session_id=s.session_id,
                start_time=s.start_time,
                end_time=s.end_time,
                is_active=s.is_active,
                abandoned=s.abandoned,
                total_duration_minutes=s.total_duration_minutes,
                events=s.events,
            )
            for s in sleep_day.sessions
        ],
        open_session_id=sleep_day.open_session.session_id if sleep_day.open_session else None,
        total_sleep_minutes=sleep_day.total_sleep_minutes,
        closed_minutes=sleep_day.closed_minutes,
        live_minutes=sleep_day.live_minutes,
        compliance=ComplianceSummaryResponse(
            checks_recorded=summary.checks_recorded,
            intervals_recorded=summary.intervals_recorded,
            late_checks=summary.late_checks,
            longest_interval_minutes=summary.longest_interval_minutes,
            average_interval_minutes=summary.average_interval_minutes,
        ),
        anomalies=[AnomalyResponse(kind=a.kind, event_id=a.event_id, message=a.message) for a in sleep_day.anomalies],
    )


# Used by: child card, live session view, polled/refreshed by the kiosk
@router.get("/state", response_model=SleepStateResponse)
async def get_sleep_state(child_id: str):
    monitor = await _monitor(child_id)
    sleep_day = monitor.current_day()
    countdown = monitor.countdown.snapshot()
    is_open = sleep_day.open_session is not None

    return SleepStateResponse(
        **_day_response(child_id, monitor.day, sleep_day),
        countdown=CountdownResponse(
            checkpoint_time=countdown.checkpoint_time,
            seconds_remaining=countdown.seconds_remaining,
            severity=countdown.severity.value,
            is_overdue=countdown.is_overdue,
            fired=countdown.fired,
        ) if countdown else None,
        can_start=not is_open,
        can_check=is_open,
        can_stop=is_open,
    )


# Used by: child card, "Start sleep" form
@router.post("/start", response_model=SleepEventResponse, status_code=status.HTTP_201_CREATED)
async def start_sleep(
    child_id: str,
    request: StartRequest,
    staff_id: Optional[str] = Query(None, description="Recording staff member id"),
    staff_initials: Optional[str] = Query(None, description="Recording staff member initials"),
):
    monitor = await _monitor(child_id)
    controller = monitor.controller(StaticIdentityProvider.from_values(staff_id, staff_initials))
    try:
        event = await controller.record_start(request.position, request.breathing, request.notes)
    except SleepActionError as e:
        logger.info(f"Rejected start for child {child_id}: {e.message}")
        raise _action_error(e)
    except EventStoreError as e:
        raise _store_error(e)

    return SleepEventResponse(event=event, message="Sleep session started")


# Used by: child card, "Check" form, every 15 minutes
@router.post("/check", response_model=SleepEventResponse, status_code=status.HTTP_201_CREATED)
async def check_sleep(
    child_id: str,
    request: CheckRequest,
    staff_id: Optional[str] = Query(None, description="Recording staff member id"),
    staff_initials: Optional[str] = Query(None, description="Recording staff member initials"),
):
    monitor = await _monitor(child_id)
    controller = monitor.controller(StaticIdentityProvider.from_values(staff_id, staff_initials))
    try:
        event = await controller.record_check(request.position, request.breathing, request.notes)
    except SleepActionError as e:
        logger.info(f"Rejected check for child {child_id}: {e.message}")
        raise _action_error(e)
    except EventStoreError as e:
        raise _store_error(e)

    return SleepEventResponse(
        event=event,
        message=f"Check recorded ({event.interval_since_last_minutes} min since last)"
    )


# Used by: child card, "Stop sleep" form
@router.post("/stop", response_model=SleepEventResponse, status_code=status.HTTP_201_CREATED)
async def stop_sleep(
    child_id: str,
    request: StopRequest,
    staff_id: Optional[str] = Query(None, description="Recording staff member id"),
    staff_initials: Optional[str] = Query(None, description="Recording staff member initials"),
):
    monitor = await _monitor(child_id)
    controller = monitor.controller(StaticIdentityProvider.from_values(staff_id, staff_initials))
    try:
        event = await controller.record_stop(request.position, request.breathing, request.mood, request.notes)
    except SleepActionError as e:
        logger.info(f"Rejected stop for child {child_id}: {e.message}")
        raise _action_error(e)
    except EventStoreError as e:
        raise _store_error(e)

    return SleepEventResponse(event=event, message="Sleep session ended")


# Used by: daily report page, any day, live minutes only for today
@router.get("/history/{day}", response_model=SleepDayResponse)
async def get_sleep_history(child_id: str, day: date):
    registry = get_monitor_registry()
    try:
        events = await registry.store.read(child_id, day)
    except EventStoreError as e:
        raise _store_error(e)

    sleep_day = reconstruct_sleep_day(events, now=registry.clock(), include_live=(day == registry.today()))
    return SleepDayResponse(**_day_response(child_id, day, sleep_day))


# Used by: analytics page, weekly sleep chart
@router.get("/analytics", response_model=SleepAnalyticsResponse)
async def get_sleep_analytics(
    child_id: str,
    days: int = Query(ANALYTICS_DEFAULT_DAYS, ge=1, le=ANALYTICS_MAX_DAYS, description="Number of days ending today"),
):
    registry = get_monitor_registry()
    try:
        analytics = await weekly_sleep_stats(
            registry.store, child_id, registry.today(), days=days, now=registry.clock()
        )
    except EventStoreError as e:
        raise _store_error(e)

    return SleepAnalyticsResponse(
        child_id=child_id,
        days=[
            DailySleepStatResponse(
                date=s.day,
                total_minutes=s.total_minutes,
                sessions=s.sessions,
                late_checks=s.late_checks,
            )
            for s in analytics.days
        ],
        average_sleep_minutes=analytics.average_sleep_minutes,
        total_sessions=analytics.total_sessions,
        active_days=analytics.active_days,
    )


# Used by: child card unmount, kiosk navigates away from a child
@router.delete("/monitor", response_model=MonitorUnmountResponse)
async def unmount_monitor(child_id: str):
    unmounted = await get_monitor_registry().unmount(child_id)
    return MonitorUnmountResponse(child_id=child_id, unmounted=unmounted)
