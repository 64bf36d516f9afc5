"""Pydantic request/response models for all API endpoints."""

from pydantic import BaseModel
from datetime import datetime, date
from typing import Dict, List, Optional

from sleepcheck.db.models import Breathing, Mood, Position, SleepEvent
from sleepcheck.services.devices import NotificationPermission


# Sleep action models

class StartRequest(BaseModel):
    position: Position
    breathing: Breathing
    notes: Optional[str] = None


class CheckRequest(BaseModel):
    position: Position
    breathing: Breathing
    notes: Optional[str] = None


class StopRequest(BaseModel):
    position: Position
    breathing: Breathing
    mood: Optional[Mood] = None  # required; missing mood is reported by the controller
    notes: Optional[str] = None


class SleepEventResponse(BaseModel):
    event: SleepEvent
    message: str


# Reconstruction models

class SessionResponse(BaseModel):
    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    is_active: bool
    abandoned: bool
    total_duration_minutes: Optional[int] = None
    events: List[SleepEvent]


class AnomalyResponse(BaseModel):
    kind: str
    event_id: str
    message: str


class ComplianceSummaryResponse(BaseModel):
    checks_recorded: int
    intervals_recorded: int
    late_checks: int
    longest_interval_minutes: Optional[int] = None
    average_interval_minutes: Optional[float] = None


class CountdownResponse(BaseModel):
    checkpoint_time: datetime
    seconds_remaining: int
    severity: str
    is_overdue: bool
    fired: Dict[int, bool]


class SleepDayResponse(BaseModel):
    child_id: str
    day: date
    sessions: List[SessionResponse]
    open_session_id: Optional[str] = None
    total_sleep_minutes: int
    closed_minutes: int
    live_minutes: int
    compliance: ComplianceSummaryResponse
    anomalies: List[AnomalyResponse]


class SleepStateResponse(SleepDayResponse):
    countdown: Optional[CountdownResponse] = None
    can_start: bool
    can_check: bool
    can_stop: bool


class MonitorUnmountResponse(BaseModel):
    child_id: str
    unmounted: bool


# Analytics models

class DailySleepStatResponse(BaseModel):
    date: date
    total_minutes: int
    sessions: int
    late_checks: int


class SleepAnalyticsResponse(BaseModel):
    child_id: str
    days: List[DailySleepStatResponse]
    average_sleep_minutes: int
    total_sessions: int
    active_days: int


# Device models

class DeviceCapabilitiesRequest(BaseModel):
    supports_vibration: bool = False


class NotificationPermissionRequest(BaseModel):
    permission: NotificationPermission


class DeviceResponse(BaseModel):
    device_id: str
    supports_vibration: bool
    audio_unlocked: bool
    notification_permission: NotificationPermission
    push_subscribed: bool
    connected: bool


# Push models

class PushSubscriptionRequest(BaseModel):
    endpoint: str
    keys: dict  # p256dh + auth


class PushSubscriptionResponse(BaseModel):
    success: bool
    message: str


class VapidKeyResponse(BaseModel):
    public_key: Optional[str]
    configured: bool
