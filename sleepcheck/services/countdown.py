"""Regulatory check countdown bound to a session's latest checkpoint."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from sleepcheck.core.constants import (
    ALERT_THRESHOLDS_SECONDS,
    CHECK_INTERVAL_SECONDS,
    SEVERITY_URGENT_SECONDS,
    SEVERITY_WARNING_SECONDS,
)
from sleepcheck.core.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    URGENT = "urgent"


def severity_for(seconds_remaining: int) -> Severity:
    if seconds_remaining <= SEVERITY_URGENT_SECONDS:
        return Severity.URGENT
    if seconds_remaining <= SEVERITY_WARNING_SECONDS:
        return Severity.WARNING
    return Severity.NORMAL


def threshold_message(threshold_seconds: int) -> str:
    minutes = threshold_seconds // 60
    unit = "minute" if minutes == 1 else "minutes"
    return f"Sleep check due in {minutes} {unit}"


# Used by: ComplianceCountdown.snapshot(); api/sleep.py state response
@dataclass
class CountdownState:
    checkpoint_time: datetime
    seconds_remaining: int
    fired: Dict[int, bool]
    severity: Severity
    is_overdue: bool


ThresholdCallback = Callable[[str, Severity], None]


class ComplianceCountdown:
    """
    Counts down CHECK_INTERVAL_SECONDS from the checkpoint and calls on_threshold
    once per threshold crossing. Remaining time is always recomputed from the clock,
    never decremented, so a late or skipped tick cannot drift.

    Inactive until start(); inactive again after teardown().
    """

    def __init__(self, on_threshold: ThresholdCallback, clock: Clock = utc_now, label: str = ""):
        self.on_threshold = on_threshold
        self.clock = clock
        self.label = label
        self._checkpoint: Optional[datetime] = None
        self._fired: Dict[int, bool] = {}

    @property
    def is_active(self) -> bool:
        return self._checkpoint is not None

    @property
    def checkpoint_time(self) -> Optional[datetime]:
        return self._checkpoint

    # Used by: session_actions.py (after start/check), monitor.py (snapshot rebind)
    def start(self, checkpoint_time: datetime) -> None:
        """Bind to a new checkpoint and re-arm every threshold.

        Thresholds that are already behind us (resuming against an old checkpoint)
        are marked fired without alerting.
        """
        self._checkpoint = checkpoint_time
        remaining = self.seconds_remaining()
        self._fired = {t: remaining <= t for t in ALERT_THRESHOLDS_SECONDS}
        logger.info(f"Countdown {self.label} bound to {checkpoint_time.isoformat()} ({remaining}s remaining)")

    # Used by: session_actions.py (stop), monitor.py (session closed, unmount)
    def teardown(self) -> None:
        if self._checkpoint is not None:
            logger.info(f"Countdown {self.label} torn down")
        self._checkpoint = None
        self._fired = {}

    def seconds_remaining(self) -> int:
        if self._checkpoint is None:
            return CHECK_INTERVAL_SECONDS
        # Clamp: a checkpoint from a device with a fast clock can lie in the future
        elapsed = max((self.clock() - self._checkpoint).total_seconds(), 0.0)
        return max(CHECK_INTERVAL_SECONDS - int(elapsed), 0)

    # Used by: MonitorRegistry.tick_all() every COUNTDOWN_TICK_SECONDS
    def tick(self) -> int:
        """Fire every threshold crossed since the last tick, most distant first."""
        if self._checkpoint is None:
            return CHECK_INTERVAL_SECONDS

        remaining = self.seconds_remaining()
        for threshold in sorted(self._fired, reverse=True):
            if self._fired[threshold] or remaining > threshold:
                continue
            self._fired[threshold] = True
            message = threshold_message(threshold)
            logger.info(f"Countdown {self.label} crossed {threshold}s threshold")
            self.on_threshold(message, severity_for(threshold))
        return remaining

    def snapshot(self) -> Optional[CountdownState]:
        if self._checkpoint is None:
            return None
        remaining = self.seconds_remaining()
        return CountdownState(
            checkpoint_time=self._checkpoint,
            seconds_remaining=remaining,
            fired=dict(self._fired),
            severity=severity_for(remaining),
            is_overdue=remaining == 0,
        )
