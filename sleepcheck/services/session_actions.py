"""Validates and records start / check / stop events for one child."""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Protocol

from sleepcheck.core.constants import NOTES_MAX_LENGTH
from sleepcheck.core.utils import POSITIONS_BY_KIND, Clock, utc_now, whole_minutes_between
from sleepcheck.db.models import Breathing, EventKind, Mood, Position, SleepEvent, StaffIdentity
from sleepcheck.services.countdown import ComplianceCountdown
from sleepcheck.services.event_store import EventLogStore
from sleepcheck.utils.sleep_sessions import SleepDay, SleepSession

logger = logging.getLogger(__name__)


class SleepActionError(Exception):
    """Precondition failure; message is safe to show to staff as-is."""

    message = "This sleep action could not be recorded"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class NotIdentified(SleepActionError):
    message = "Please set your initials in your profile first"


class SessionAlreadyOpen(SleepActionError):
    message = "A sleep session is already in progress for this child"


class NoOpenSession(SleepActionError):
    message = "No open sleep session to record against"


class MissingMood(SleepActionError):
    message = "Please select the child's mood on waking"


class InvalidPosition(SleepActionError):
    pass


class NotesTooLong(SleepActionError):
    message = f"Notes must be {NOTES_MAX_LENGTH} characters or fewer"


class StaffIdentityProvider(Protocol):
    def current_identity(self) -> Optional[StaffIdentity]:
        ...


# Used by: api/sleep.py, identity comes from the request
class StaticIdentityProvider:
    def __init__(self, identity: Optional[StaffIdentity]):
        self._identity = identity

    @classmethod
    def from_values(cls, staff_id: Optional[str], staff_initials: Optional[str]) -> "StaticIdentityProvider":
        staff_id = (staff_id or "").strip()
        initials = (staff_initials or "").strip()
        if not staff_id or not initials:
            return cls(None)
        return cls(StaffIdentity(id=staff_id, initials=initials.upper()))

    def current_identity(self) -> Optional[StaffIdentity]:
        return self._identity


def _epoch_ms(instant: datetime) -> int:
    return int(instant.timestamp() * 1000)


def new_session_id(instant: datetime) -> str:
    return f"session_{_epoch_ms(instant)}"


def new_entry_id(instant: datetime) -> str:
    # Suffix keeps ids unique when two devices record in the same millisecond
    return f"entry_{_epoch_ms(instant)}_{uuid.uuid4().hex[:6]}"


class SessionActionController:
    """
    Guards run against the latest reconstruction and before any write. The
    lock serialises this child's actions so two near-simultaneous starts
    cannot both pass the open-session guard.
    """

    def __init__(
        self,
        child_id: str,
        store: EventLogStore,
        countdown: ComplianceCountdown,
        identity: StaffIdentityProvider,
        current_day: Callable[[], SleepDay],
        on_recorded: Optional[Callable[[SleepEvent], None]] = None,
        lock: Optional[asyncio.Lock] = None,
        clock: Clock = utc_now,
    ):
        self.child_id = child_id
        self.store = store
        self.countdown = countdown
        self.identity = identity
        self.current_day = current_day
        self.on_recorded = on_recorded
        self.lock = lock or asyncio.Lock()
        self.clock = clock

    async def record_start(self, position: Position, breathing: Breathing, notes: Optional[str] = None) -> SleepEvent:
        async with self.lock:
            staff = self._require_identity()
            if self.current_day().open_session is not None:
                raise SessionAlreadyOpen()
            self._require_position(EventKind.START, position)
            cleaned = self._clean_notes(notes)

            now = self.clock()
            event = SleepEvent(
                id=new_entry_id(now),
                child_id=self.child_id,
                timestamp=now,
                kind=EventKind.START,
                position=position,
                breathing=breathing,
                notes=cleaned,
                session_id=new_session_id(now),
                staff_initials=staff.initials,
                staff_id=staff.id,
            )
            await self._append(event)
            self.countdown.start(event.timestamp)
            return event

    async def record_check(self, position: Position, breathing: Breathing, notes: Optional[str] = None) -> SleepEvent:
        async with self.lock:
            staff = self._require_identity()
            session = self._require_open_session("No open sleep session to check")
            self._require_position(EventKind.CHECK, position)
            cleaned = self._clean_notes(notes)

            event = self._follow_up(session, staff, EventKind.CHECK, position, breathing, None, cleaned)
            await self._append(event)
            self.countdown.start(event.timestamp)
            return event

    async def record_stop(
        self,
        position: Position,
        breathing: Breathing,
        mood: Optional[Mood],
        notes: Optional[str] = None,
    ) -> SleepEvent:
        async with self.lock:
            staff = self._require_identity()
            session = self._require_open_session("No open sleep session to stop")
            if mood is None:
                raise MissingMood()
            self._require_position(EventKind.STOP, position)
            cleaned = self._clean_notes(notes)

            event = self._follow_up(session, staff, EventKind.STOP, position, breathing, mood, cleaned)
            await self._append(event)
            self.countdown.teardown()
            return event

    def _follow_up(
        self,
        session: SleepSession,
        staff: StaffIdentity,
        kind: EventKind,
        position: Position,
        breathing: Breathing,
        mood: Optional[Mood],
        notes: Optional[str],
    ) -> SleepEvent:
        now = self.clock()
        last = session.events[-1]
        return SleepEvent(
            id=new_entry_id(now),
            child_id=self.child_id,
            timestamp=now,
            kind=kind,
            position=position,
            breathing=breathing,
            mood=mood,
            notes=notes,
            interval_since_last_minutes=max(whole_minutes_between(last.timestamp, now), 0),
            session_id=session.session_id,
            staff_initials=staff.initials,
            staff_id=staff.id,
        )

    async def _append(self, event: SleepEvent) -> None:
        # EventStoreError propagates untouched; no retry here
        await self.store.append(event)
        logger.info(
            f"Recorded {event.kind.value} for child {self.child_id} by {event.staff_initials} "
            f"(session {event.session_id})"
        )
        if self.on_recorded is not None:
            self.on_recorded(event)

    def _require_identity(self) -> StaffIdentity:
        staff = self.identity.current_identity()
        if staff is None or not staff.initials.strip():
            raise NotIdentified()
        return staff

    def _require_open_session(self, message: str) -> SleepSession:
        session = self.current_day().open_session
        if session is None:
            raise NoOpenSession(message)
        return session

    @staticmethod
    def _require_position(kind: EventKind, position: Position) -> None:
        if position.value not in POSITIONS_BY_KIND[kind.value]:
            raise InvalidPosition(f"{position.value} is not a valid position for a {kind.value}")

    @staticmethod
    def _clean_notes(notes: Optional[str]) -> Optional[str]:
        if notes is None:
            return None
        cleaned = notes.strip()
        if len(cleaned) > NOTES_MAX_LENGTH:
            raise NotesTooLong()
        return cleaned or None
