"""Per-child live sleep state: store subscription, reconstruction and countdown. One monitor per watched child."""

import asyncio
import logging
from datetime import date
from typing import AsyncIterator, Dict, List, Optional

from sleepcheck.core.settings import settings
from sleepcheck.core.utils import Clock, local_day, utc_now
from sleepcheck.db.models import SleepEvent
from sleepcheck.services.alert_dispatcher import AlertDispatcher, get_alert_dispatcher
from sleepcheck.services.countdown import ComplianceCountdown, Severity
from sleepcheck.services.event_store import EventLogStore, get_event_store
from sleepcheck.services.session_actions import SessionActionController, StaffIdentityProvider
from sleepcheck.utils.sleep_sessions import SleepDay, reconstruct_sleep_day

logger = logging.getLogger(__name__)


class ChildSleepMonitor:
    """
    Holds the latest snapshot of one child's log for one facility day. Every
    snapshot is folded from scratch; the countdown is rebound only when the
    checkpoint actually moved, so re-delivery of the same log never re-arms alerts.
    """

    def __init__(
        self,
        child_id: str,
        day: date,
        store: EventLogStore,
        dispatcher: AlertDispatcher,
        clock: Clock = utc_now,
    ):
        self.child_id = child_id
        self.day = day
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.countdown = ComplianceCountdown(self._on_threshold, clock=clock, label=child_id)
        self.lock = asyncio.Lock()
        self._events: List[SleepEvent] = []
        self._stream: Optional[AsyncIterator[List[SleepEvent]]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def events(self) -> List[SleepEvent]:
        return list(self._events)

    @property
    def is_mounted(self) -> bool:
        return self._task is not None and not self._task.done()

    # Used by: MonitorRegistry.get_or_mount()
    async def mount(self) -> None:
        """Wait for the first snapshot, then follow the subscription in the background."""
        self._stream = self.store.subscribe(self.child_id, self.day)
        first = await self._stream.__anext__()
        self.apply_snapshot(first)
        self._task = asyncio.create_task(self._follow(), name=f"sleep-monitor-{self.child_id}")
        logger.info(f"Mounted sleep monitor for child {self.child_id} on {self.day}")

    # Used by: MonitorRegistry.get_or_mount(), unmount(), shutdown()
    async def unmount(self) -> None:
        self.countdown.teardown()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._stream is not None:
            await self._stream.aclose()
            self._stream = None
        logger.info(f"Unmounted sleep monitor for child {self.child_id}")

    async def _follow(self) -> None:
        try:
            async for snapshot in self._stream:
                self.apply_snapshot(snapshot)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Without live updates the checkpoint may be stale; stop alerting until remounted
            logger.error(f"Sleep log subscription for child {self.child_id} failed: {e}")
            self.countdown.teardown()

    # Used by: mount(), _follow(), record_local()
    def apply_snapshot(self, events: List[SleepEvent]) -> SleepDay:
        self._events = list(events)
        sleep_day = self.current_day()

        checkpoint = sleep_day.checkpoint_time
        if checkpoint is None:
            self.countdown.teardown()
        elif checkpoint != self.countdown.checkpoint_time:
            self.countdown.start(checkpoint)
        return sleep_day

    # Used by: SessionActionController.on_recorded, so guards see our own write before the subscription does
    def record_local(self, event: SleepEvent) -> None:
        if any(e.id == event.id for e in self._events):
            return
        self.apply_snapshot(self._events + [event])

    def current_day(self) -> SleepDay:
        return reconstruct_sleep_day(self._events, now=self.clock(), include_live=True)

    # Used by: api/sleep.py (start/check/stop), identity is per request
    def controller(self, identity: StaffIdentityProvider) -> SessionActionController:
        return SessionActionController(
            child_id=self.child_id,
            store=self.store,
            countdown=self.countdown,
            identity=identity,
            current_day=self.current_day,
            on_recorded=self.record_local,
            lock=self.lock,
            clock=self.clock,
        )

    def tick(self) -> int:
        return self.countdown.tick()

    def _on_threshold(self, message: str, severity: Severity) -> None:
        self.dispatcher.fire(f"{message} ({self.child_id})", severity)


class MonitorRegistry:
    """Mounted monitors by child id. Children share no mutable state."""

    def __init__(
        self,
        store: EventLogStore,
        dispatcher: AlertDispatcher,
        clock: Clock = utc_now,
        tz_name: Optional[str] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.tz_name = tz_name or settings.FACILITY_TIMEZONE
        self._monitors: Dict[str, ChildSleepMonitor] = {}
        self._mount_locks: Dict[str, asyncio.Lock] = {}

    def today(self) -> date:
        return local_day(self.clock(), self.tz_name)

    def get(self, child_id: str) -> Optional[ChildSleepMonitor]:
        return self._monitors.get(child_id)

    def child_ids(self) -> List[str]:
        return list(self._monitors)

    # Used by: api/sleep.py (every child-scoped request), roll_over_day()
    async def get_or_mount(self, child_id: str) -> ChildSleepMonitor:
        # Per-child lock: a slow store read for one child never holds up another
        async with self._mount_lock(child_id):
            today = self.today()
            monitor = self._monitors.get(child_id)
            if monitor is not None and monitor.day == today and monitor.is_mounted:
                return monitor
            if monitor is not None:
                if not monitor.is_mounted:
                    logger.warning(f"Sleep monitor for child {child_id} lost its subscription, remounting")
                self._monitors.pop(child_id, None)
                await monitor.unmount()

            monitor = ChildSleepMonitor(child_id, today, self.store, self.dispatcher, clock=self.clock)
            await monitor.mount()
            self._monitors[child_id] = monitor
            return monitor

    # Used by: api/sleep.py DELETE /monitor
    async def unmount(self, child_id: str) -> bool:
        async with self._mount_lock(child_id):
            monitor = self._monitors.pop(child_id, None)
            if monitor is None:
                return False
            await monitor.unmount()
            return True

    def _mount_lock(self, child_id: str) -> asyncio.Lock:
        lock = self._mount_locks.get(child_id)
        if lock is None:
            lock = self._mount_locks[child_id] = asyncio.Lock()
        return lock

    # Used by: scheduler.run_countdown_tick(), once per second
    def tick_all(self) -> None:
        for monitor in list(self._monitors.values()):
            if not monitor.is_mounted:
                continue
            try:
                monitor.tick()
            except Exception as e:
                logger.error(f"Countdown tick failed for child {monitor.child_id}: {e}")

    # Used by: scheduler.run_monitor_remount()
    async def roll_over_day(self) -> List[str]:
        """Remount monitors still following yesterday's log or whose subscription failed."""
        today = self.today()
        stale = [
            child_id for child_id, m in list(self._monitors.items())
            if m.day != today or not m.is_mounted
        ]
        if not stale:
            return []

        logger.info(f"Remounting sleep monitors for {today}: {', '.join(stale)}")
        results = await asyncio.gather(*(self.get_or_mount(c) for c in stale), return_exceptions=True)
        for child_id, result in zip(stale, results):
            if isinstance(result, Exception):
                logger.error(f"Remount failed for child {child_id}: {result}")
        return stale

    # Used by: main.py lifespan (shutdown)
    async def shutdown(self) -> None:
        monitors = list(self._monitors.values())
        self._monitors.clear()
        for monitor in monitors:
            await monitor.unmount()


_monitor_registry: Optional[MonitorRegistry] = None


# Used by: api/sleep.py, scheduler.py, main.py
def get_monitor_registry() -> MonitorRegistry:
    global _monitor_registry
    if _monitor_registry is None:
        _monitor_registry = MonitorRegistry(get_event_store(), get_alert_dispatcher())
    return _monitor_registry
