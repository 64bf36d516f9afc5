"""Append-only per-child-per-day sleep log with full-snapshot live subscriptions."""

import asyncio
import logging
from datetime import date
from typing import AsyncIterator, Dict, List, Optional, Protocol, Set, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sleepcheck.core.database import DatabaseManager
from sleepcheck.core.settings import settings
from sleepcheck.core.utils import local_day
from sleepcheck.db.models import SleepEvent

logger = logging.getLogger(__name__)

LogKey = Tuple[str, date]

SLEEP_LOG_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS sleep_log_entries (
        seq BIGSERIAL PRIMARY KEY,
        id TEXT NOT NULL UNIQUE,
        child_id TEXT NOT NULL,
        log_date DATE NOT NULL,
        recorded_at TIMESTAMPTZ NOT NULL,
        kind TEXT NOT NULL,
        position TEXT NOT NULL,
        breathing TEXT NOT NULL,
        mood TEXT,
        notes TEXT,
        interval_since_last_minutes INTEGER,
        session_id TEXT NOT NULL,
        staff_initials TEXT NOT NULL,
        staff_id TEXT NOT NULL
    )
    ''',
    '''
    CREATE INDEX IF NOT EXISTS ix_sleep_log_entries_child_day
    ON sleep_log_entries (child_id, log_date, recorded_at, seq)
    ''',
]


class EventStoreError(RuntimeError):
    """Raised when the sleep log cannot be read or appended to."""


# Used by: monitor.py, session_actions.py, api/sleep.py (type hint)
class EventLogStore(Protocol):
    async def append(self, event: SleepEvent) -> None:
        """Persist one event; raises EventStoreError on failure."""
        ...

    async def read(self, child_id: str, day: date) -> List[SleepEvent]:
        """Point-in-time read, ordered by timestamp then arrival."""
        ...

    def subscribe(self, child_id: str, day: date) -> AsyncIterator[List[SleepEvent]]:
        """Current snapshot first, then a complete snapshot after every change."""
        ...


class SnapshotHub:
    """Fans complete snapshots out to in-process subscribers of one child's day."""

    def __init__(self):
        self._queues: Dict[LogKey, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    # Used by: _SubscribableStore.subscribe(), subscriber attaches
    async def register(self, key: LogKey) -> asyncio.Queue:
        # Only the latest snapshot matters; older ones are superseded
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        async with self._lock:
            self._queues.setdefault(key, set()).add(queue)
        logger.debug(f"Snapshot subscriber added for {key[0]} on {key[1]}")
        return queue

    # Used by: _SubscribableStore.subscribe(), subscriber detaches
    async def unregister(self, key: LogKey, queue: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._queues.get(key)
            if queues is not None:
                queues.discard(queue)
                if not queues:
                    del self._queues[key]
        logger.debug(f"Snapshot subscriber removed for {key[0]} on {key[1]}")

    # Used by: InMemoryEventLogStore.append(), SqlEventLogStore.append()
    async def publish(self, key: LogKey, snapshot: List[SleepEvent]) -> None:
        async with self._lock:
            queues = list(self._queues.get(key, set()))
        for queue in queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(list(snapshot))

    def subscriber_count(self, key: LogKey) -> int:
        return len(self._queues.get(key, set()))


class _SubscribableStore:
    def __init__(self, tz_name: Optional[str] = None):
        self.tz_name = tz_name or settings.FACILITY_TIMEZONE
        self.hub = SnapshotHub()

    async def read(self, child_id: str, day: date) -> List[SleepEvent]:
        raise NotImplementedError

    def day_of(self, event: SleepEvent) -> date:
        return local_day(event.timestamp, self.tz_name)

    async def subscribe(self, child_id: str, day: date) -> AsyncIterator[List[SleepEvent]]:
        key = (child_id, day)
        queue = await self.hub.register(key)
        try:
            yield await self.read(child_id, day)
            while True:
                yield await queue.get()
        finally:
            await self.hub.unregister(key, queue)


# Used by: tests, single-process deployments without DB_CONNECTION_STRING
class InMemoryEventLogStore(_SubscribableStore):
    def __init__(self, tz_name: Optional[str] = None):
        super().__init__(tz_name)
        self._logs: Dict[LogKey, List[SleepEvent]] = {}
        self._ids: Set[str] = set()
        self._lock = asyncio.Lock()

    async def append(self, event: SleepEvent) -> None:
        key = (event.child_id, self.day_of(event))
        async with self._lock:
            if event.id in self._ids:
                raise EventStoreError(f"Duplicate sleep log entry id {event.id}")
            self._ids.add(event.id)
            self._logs.setdefault(key, []).append(event)
            snapshot = self._ordered(key)
        await self.hub.publish(key, snapshot)

    async def read(self, child_id: str, day: date) -> List[SleepEvent]:
        async with self._lock:
            return self._ordered((child_id, day))

    def _ordered(self, key: LogKey) -> List[SleepEvent]:
        return sorted(self._logs.get(key, []), key=lambda e: e.timestamp)


# Used by: main.py lifespan when DB_CONNECTION_STRING is set
class SqlEventLogStore(_SubscribableStore):
    """Rows in sleep_log_entries; seq keeps arrival order for equal timestamps."""

    def __init__(self, database: DatabaseManager, tz_name: Optional[str] = None):
        super().__init__(tz_name)
        self.database = database

    async def append(self, event: SleepEvent) -> None:
        log_date = self.day_of(event)
        try:
            async with self.database.session() as session:
                await session.execute(
                    text('''
                        INSERT INTO sleep_log_entries
                        (id, child_id, log_date, recorded_at, kind, position, breathing,
                         mood, notes, interval_since_last_minutes, session_id,
                         staff_initials, staff_id)
                        VALUES (:id, :child_id, :log_date, :recorded_at, :kind, :position,
                                :breathing, :mood, :notes, :interval_since_last_minutes,
                                :session_id, :staff_initials, :staff_id)
                    '''),
                    {
                        "id": event.id,
                        "child_id": event.child_id,
                        "log_date": log_date,
                        "recorded_at": event.timestamp,
                        "kind": event.kind.value,
                        "position": event.position.value,
                        "breathing": event.breathing.value,
                        "mood": event.mood.value if event.mood else None,
                        "notes": event.notes,
                        "interval_since_last_minutes": event.interval_since_last_minutes,
                        "session_id": event.session_id,
                        "staff_initials": event.staff_initials,
                        "staff_id": event.staff_id,
                    }
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to append sleep log entry {event.id} for child {event.child_id}: {e}")
            raise EventStoreError(f"Could not save sleep log entry: {e}") from e

        logger.info(f"Appended {event.kind.value} entry {event.id} for child {event.child_id}")

        # The row is committed; a failed snapshot read must not report the append as failed
        try:
            snapshot = await self.read(event.child_id, log_date)
        except EventStoreError as e:
            logger.warning(f"Entry {event.id} saved but snapshot for child {event.child_id} not published: {e}")
            return
        await self.hub.publish((event.child_id, log_date), snapshot)

    async def read(self, child_id: str, day: date) -> List[SleepEvent]:
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    text('''
                        SELECT id, child_id, recorded_at, kind, position, breathing, mood,
                               notes, interval_since_last_minutes, session_id,
                               staff_initials, staff_id
                        FROM sleep_log_entries
                        WHERE child_id = :child_id AND log_date = :log_date
                        ORDER BY recorded_at, seq
                    '''),
                    {"child_id": child_id, "log_date": day}
                )
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read sleep log for child {child_id} on {day}: {e}")
            raise EventStoreError(f"Could not load sleep log: {e}") from e

        return [
            SleepEvent(
                id=row["id"],
                child_id=row["child_id"],
                timestamp=row["recorded_at"],
                kind=row["kind"],
                position=row["position"],
                breathing=row["breathing"],
                mood=row["mood"],
                notes=row["notes"],
                interval_since_last_minutes=row["interval_since_last_minutes"],
                session_id=row["session_id"],
                staff_initials=row["staff_initials"],
                staff_id=row["staff_id"],
            )
            for row in rows
        ]


_event_store: Optional[EventLogStore] = None


# Used by: main.py lifespan (SQL store when a database is configured)
def set_event_store(store: EventLogStore) -> None:
    global _event_store
    _event_store = store


# Used by: monitor.get_monitor_registry(), api/sleep.py (history, analytics)
def get_event_store() -> EventLogStore:
    global _event_store
    if _event_store is None:
        _event_store = InMemoryEventLogStore()
    return _event_store
