"""Pydantic models for the stored sleep log and the staff identity recorded on it."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EventKind(str, Enum):
    START = "start"
    CHECK = "check"
    STOP = "stop"


class Position(str, Enum):
    BACK = "Back"
    SIDE = "Side"
    TUMMY = "Tummy"
    SEATED = "Seated"
    STANDING = "Standing"


class Breathing(str, Enum):
    NORMAL = "Normal"
    LABORED = "Labored"
    CONGESTED = "Congested"


class Mood(str, Enum):
    HAPPY = "Happy"
    NEUTRAL = "Neutral"
    FUSSY = "Fussy"
    UPSET = "Upset"
    CRYING = "Crying"


# Used by: session_actions.py (who recorded it), api/sleep.py (built per request)
class StaffIdentity(BaseModel):
    id: str
    initials: str

    class Config:
        frozen = True


# Used by: everything, one row of sleep_log_entries; never mutated after creation
class SleepEvent(BaseModel):
    id: str
    child_id: str
    timestamp: datetime
    kind: EventKind
    position: Position
    breathing: Breathing
    mood: Optional[Mood] = None
    notes: Optional[str] = None
    interval_since_last_minutes: Optional[int] = None
    session_id: str
    staff_initials: str
    staff_id: str

    class Config:
        frozen = True
        from_attributes = True
