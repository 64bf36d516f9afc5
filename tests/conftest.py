"""Shared fixtures: controllable clock, recording alert channels, sleep event factory."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest

from sleepcheck.db.models import Breathing, EventKind, Mood, Position, SleepEvent, StaffIdentity
from sleepcheck.services.countdown import Severity

FACILITY_TZ = "America/Los_Angeles"

# 09:00 in Los Angeles (PST) on 2024-03-04
MORNING = datetime(2024, 3, 4, 17, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = MORNING):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class RecordingChannel:
    def __init__(self, name: str = "recording"):
        self.name = name
        self.calls: List[Tuple[str, Severity]] = []

    def deliver(self, message: str, severity: Severity) -> None:
        self.calls.append((message, severity))


class BrokenChannel:
    name = "broken"

    def deliver(self, message: str, severity: Severity) -> None:
        raise RuntimeError("audio device unavailable")


def make_event(
    kind: str,
    at: datetime,
    session_id: str = "session_1",
    child_id: str = "child-1",
    position: str = "Back",
    mood: Optional[str] = None,
    interval: Optional[int] = None,
    event_id: Optional[str] = None,
) -> SleepEvent:
    return SleepEvent(
        id=event_id or f"entry_{int(at.timestamp() * 1000)}_{kind}",
        child_id=child_id,
        timestamp=at,
        kind=EventKind(kind),
        position=Position(position),
        breathing=Breathing.NORMAL,
        mood=Mood(mood) if mood else None,
        interval_since_last_minutes=interval,
        session_id=session_id,
        staff_initials="AB",
        staff_id="staff-1",
    )


async def settle(rounds: int = 5) -> None:
    """Let background subscription tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def staff():
    return StaffIdentity(id="staff-1", initials="AB")


@pytest.fixture
def example_day_events():
    """Start 09:00, checks 09:15 and 09:31, stop 09:45."""
    return [
        make_event("start", MORNING),
        make_event("check", MORNING + timedelta(minutes=15), interval=15),
        make_event("check", MORNING + timedelta(minutes=31), position="Side", interval=16),
        make_event("stop", MORNING + timedelta(minutes=45), mood="Happy", interval=14),
    ]
