"""
Alert dispatcher: one coordinated burst of tone, vibration and system
notification per countdown threshold.

Every channel is attempted independently. A missing or failing channel is
logged and skipped; fire() never raises and returns nothing.
"""

import io
import logging
import math
import struct
import wave
from functools import lru_cache
from typing import Callable, List, Optional, Protocol

from sleepcheck.core.constants import (
    NOTIFICATION_TITLE,
    TONE_DURATION_SECONDS,
    TONE_END_GAIN,
    TONE_FREQUENCY_HZ,
    TONE_SAMPLE_RATE,
    TONE_START_GAIN,
    VIBRATION_PATTERN_MS,
)
from sleepcheck.services.countdown import Severity
from sleepcheck.services.devices import (
    DeviceAudioPipeline,
    DeviceRegistry,
    DeviceSignal,
    NotificationPermission,
    SignalType,
    get_device_registry,
)
from sleepcheck.services.push_service import PushService, get_push_service

logger = logging.getLogger(__name__)


class AlertChannel(Protocol):
    name: str

    def deliver(self, message: str, severity: Severity) -> None:
        ...


class AudioPipeline(Protocol):
    @property
    def state(self) -> str:
        ...

    def resume(self) -> None:
        ...

    def suspend(self) -> None:
        ...

    def play(self, wav: bytes) -> int:
        ...

    def close(self) -> None:
        ...


# Used by: ToneChannel.deliver(), rendered once per distinct shape
@lru_cache(maxsize=None)
def synthesize_tone(
    frequency_hz: float = TONE_FREQUENCY_HZ,
    duration_seconds: float = TONE_DURATION_SECONDS,
    start_gain: float = TONE_START_GAIN,
    end_gain: float = TONE_END_GAIN,
    sample_rate: int = TONE_SAMPLE_RATE,
) -> bytes:
    """Sine tone with an exponential gain ramp, as 16-bit mono WAV bytes."""
    frame_count = int(sample_rate * duration_seconds)
    decay = end_gain / start_gain

    frames = bytearray()
    for i in range(frame_count):
        t = i / sample_rate
        gain = start_gain * decay ** (t / duration_seconds)
        sample = gain * math.sin(2 * math.pi * frequency_hz * t)
        frames += struct.pack("<h", int(sample * 32767))

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(bytes(frames))
    return buffer.getvalue()


class AudioResource:
    """
    Process-wide handle on the single audio pipeline. The pipeline is built on
    first acquire() (the earliest user gesture, or the first alert) and reused
    after that; a suspended pipeline is resumed before it is handed out.
    """

    def __init__(self, factory: Callable[[], AudioPipeline]):
        self._factory = factory
        self._pipeline: Optional[AudioPipeline] = None

    @property
    def pipeline(self) -> Optional[AudioPipeline]:
        return self._pipeline

    def acquire(self) -> AudioPipeline:
        if self._pipeline is None or self._pipeline.state == "closed":
            self._pipeline = self._factory()
            logger.info("Audio pipeline created")
        if self._pipeline.state == "suspended":
            self._pipeline.resume()
            logger.info("Audio pipeline resumed")
        return self._pipeline

    def suspend(self) -> None:
        if self._pipeline is not None:
            self._pipeline.suspend()

    def teardown(self) -> None:
        if self._pipeline is not None:
            self._pipeline.close()
            self._pipeline = None
            logger.info("Audio pipeline closed")


class ToneChannel:
    name = "tone"

    def __init__(self, audio: AudioResource):
        self.audio = audio

    def deliver(self, message: str, severity: Severity) -> None:
        pipeline = self.audio.acquire()
        pipeline.play(synthesize_tone())


class HapticChannel:
    name = "haptic"

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry

    def deliver(self, message: str, severity: Severity) -> None:
        signal = DeviceSignal(
            type=SignalType.HAPTIC,
            payload={"pattern": list(VIBRATION_PATTERN_MS), "severity": severity.value},
        )
        # No vibrating device connected is a no-op
        self.registry.broadcast(signal, lambda d: d.supports_vibration)


class NotificationChannel:
    """Persistent notification, only where permission was already granted."""

    name = "notification"

    def __init__(self, registry: DeviceRegistry, push: Optional[PushService] = None):
        self.registry = registry
        self.push = push

    def deliver(self, message: str, severity: Severity) -> None:
        data = {"severity": severity.value}
        for device in self.registry.devices():
            if device.notification_permission != NotificationPermission.GRANTED:
                continue

            if device.push_subscription and self.push is not None and self.push.is_configured:
                self.push.schedule_notification(device.device_id, NOTIFICATION_TITLE, message, data)
                continue

            self.registry.send(
                device.device_id,
                DeviceSignal(
                    type=SignalType.NOTIFICATION,
                    payload={
                        "title": NOTIFICATION_TITLE,
                        "body": message,
                        "requireInteraction": True,
                        "data": data,
                    },
                ),
            )


class AlertDispatcher:
    def __init__(self, channels: List[AlertChannel]):
        self.channels = list(channels)

    # Used by: ComplianceCountdown on_threshold (via monitor.py)
    def fire(self, message: str, severity: Severity) -> None:
        logger.info(f"Dispatching {severity.value} alert: {message}")
        for channel in self.channels:
            try:
                channel.deliver(message, severity)
            except Exception as e:
                logger.warning(f"Alert channel {channel.name} failed: {e}")


_audio_resource: Optional[AudioResource] = None
_alert_dispatcher: Optional[AlertDispatcher] = None


# Used by: api/alerts.py (gesture, stream close), main.py lifespan (shutdown)
def get_audio_resource() -> AudioResource:
    global _audio_resource
    if _audio_resource is None:
        registry = get_device_registry()
        _audio_resource = AudioResource(lambda: DeviceAudioPipeline(registry))
    return _audio_resource


# Used by: monitor.get_monitor_registry()
def get_alert_dispatcher() -> AlertDispatcher:
    global _alert_dispatcher
    if _alert_dispatcher is None:
        registry = get_device_registry()
        _alert_dispatcher = AlertDispatcher([
            ToneChannel(get_audio_resource()),
            HapticChannel(registry),
            NotificationChannel(registry, get_push_service()),
        ])
    return _alert_dispatcher
