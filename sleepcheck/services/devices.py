"""Connected staff devices: SSE delivery, capabilities, audio unlock and notification permission."""

import asyncio
import base64
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from sleepcheck.core.utils import utc_now

logger = logging.getLogger(__name__)


class NotificationPermission(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


class SignalType(str, Enum):
    TONE = "tone"
    HAPTIC = "haptic"
    NOTIFICATION = "notification"


@dataclass
class StaffDevice:
    device_id: str
    supports_vibration: bool = False
    audio_unlocked: bool = False
    notification_permission: NotificationPermission = NotificationPermission.DEFAULT
    push_subscription: Optional[Dict[str, Any]] = None
    last_seen: Optional[datetime] = None


# Used by: alert channels (payload), api/alerts.py (SSE frame)
@dataclass
class DeviceSignal:
    type: SignalType
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["created_at"] = self.created_at.isoformat()
        return data


class DeviceRegistry:
    """
    Everything the server knows about each staff device, plus the SSE queues
    of its open streams. Sending is synchronous so alert channels can run
    inside a countdown tick.
    """

    def __init__(self):
        self._devices: Dict[str, StaffDevice] = {}
        self._queues: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    def get_or_create(self, device_id: str) -> StaffDevice:
        device = self._devices.get(device_id)
        if device is None:
            device = StaffDevice(device_id=device_id)
            self._devices[device_id] = device
        device.last_seen = utc_now()
        return device

    def get(self, device_id: str) -> Optional[StaffDevice]:
        return self._devices.get(device_id)

    def devices(self) -> List[StaffDevice]:
        return list(self._devices.values())

    # Used by: api/alerts.py (SSE stream endpoint - device connects)
    async def connect(self, device_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        async with self._lock:
            self.get_or_create(device_id)
            self._queues.setdefault(device_id, set()).add(queue)
        logger.info(f"SSE stream opened for device {device_id}")
        return queue

    # Used by: api/alerts.py (SSE stream endpoint - device disconnects)
    async def disconnect(self, device_id: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._queues.get(device_id)
            if queues is not None:
                queues.discard(queue)
                if not queues:
                    del self._queues[device_id]
        logger.info(f"SSE stream closed for device {device_id}")

    def is_connected(self, device_id: str) -> bool:
        return bool(self._queues.get(device_id))

    def connected_count(self) -> int:
        return len(self._queues)

    # Used by: api/alerts.py POST /devices/{id}/capabilities
    def update_capabilities(self, device_id: str, supports_vibration: bool) -> StaffDevice:
        device = self.get_or_create(device_id)
        device.supports_vibration = supports_vibration
        logger.info(f"Device {device_id} capabilities: vibration={supports_vibration}")
        return device

    # Used by: api/alerts.py POST /devices/{id}/gesture
    def record_gesture(self, device_id: str) -> StaffDevice:
        device = self.get_or_create(device_id)
        if not device.audio_unlocked:
            logger.info(f"Audio unlocked on device {device_id}")
        device.audio_unlocked = True
        return device

    # Used by: api/alerts.py POST /devices/{id}/notification-permission
    def set_notification_permission(self, device_id: str, permission: NotificationPermission) -> StaffDevice:
        device = self.get_or_create(device_id)
        device.notification_permission = permission
        logger.info(f"Device {device_id} notification permission: {permission.value}")
        return device

    # Used by: api/alerts.py POST /push/subscribe
    def set_push_subscription(self, device_id: str, subscription: Dict[str, Any]) -> StaffDevice:
        device = self.get_or_create(device_id)
        device.push_subscription = subscription
        logger.info(f"Saved push subscription for device {device_id}")
        return device

    # Used by: api/alerts.py POST /push/unsubscribe, push_service (expired endpoint)
    def clear_push_subscription(self, device_id: str) -> bool:
        device = self._devices.get(device_id)
        if device is None or device.push_subscription is None:
            return False
        device.push_subscription = None
        logger.info(f"Removed push subscription for device {device_id}")
        return True

    # Used by: HapticChannel, NotificationChannel, DeviceAudioPipeline
    def send(self, device_id: str, signal: DeviceSignal) -> int:
        """Queue a signal on every open stream of one device; returns streams reached."""
        queues = list(self._queues.get(device_id, set()))
        for queue in queues:
            queue.put_nowait(signal)
        return len(queues)

    def broadcast(self, signal: DeviceSignal, predicate: Callable[[StaffDevice], bool]) -> int:
        delivered = 0
        for device in self.devices():
            if predicate(device):
                delivered += self.send(device.device_id, signal)
        return delivered


class DeviceAudioPipeline:
    """
    Plays rendered audio by streaming it to every device whose audio was
    unlocked by a user gesture. Starts suspended, like a browser audio context
    created outside a gesture.
    """

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry
        self._state = "suspended"

    @property
    def state(self) -> str:
        return self._state

    def resume(self) -> None:
        if self._state == "closed":
            raise RuntimeError("Audio pipeline is closed")
        self._state = "running"

    def suspend(self) -> None:
        if self._state == "running":
            self._state = "suspended"

    def play(self, wav: bytes) -> int:
        if self._state != "running":
            raise RuntimeError(f"Audio pipeline is {self._state}")
        signal = DeviceSignal(
            type=SignalType.TONE,
            payload={"mime_type": "audio/wav", "data": base64.b64encode(wav).decode("ascii")},
        )
        reached = self.registry.broadcast(signal, lambda d: d.audio_unlocked)
        logger.debug(f"Tone streamed to {reached} device stream(s)")
        return reached

    def close(self) -> None:
        self._state = "closed"


_device_registry: Optional[DeviceRegistry] = None


# Used by: api/alerts.py, alert_dispatcher.get_alert_dispatcher(), push_service
def get_device_registry() -> DeviceRegistry:
    global _device_registry
    if _device_registry is None:
        _device_registry = DeviceRegistry()
    return _device_registry
