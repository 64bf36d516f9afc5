"""Handles Web Push notifications."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from pywebpush import WebPushException, webpush

from sleepcheck.core.constants import NOTIFICATION_ICON
from sleepcheck.core.settings import settings
from sleepcheck.services.devices import DeviceRegistry, get_device_registry

logger = logging.getLogger(__name__)


# Used by: api/alerts.py, alert_dispatcher.NotificationChannel
class PushService:
    def __init__(self, registry: Optional[DeviceRegistry] = None):
        self.registry = registry or get_device_registry()
        self._vapid_private_key: Optional[str] = None
        self._vapid_public_key: Optional[str] = None
        self._vapid_claims: Dict[str, str] = {}
        self._pending: Set[asyncio.Task] = set()
        self._load_vapid_config()

    # Used by: __init__
    def _load_vapid_config(self):
        """Load VAPID config from environment."""
        self._vapid_private_key = settings.VAPID_PRIVATE_KEY or None
        self._vapid_public_key = settings.VAPID_PUBLIC_KEY or None

        if self._vapid_private_key:
            self._vapid_claims = {
                "sub": f"mailto:{settings.VAPID_EMAIL}"
            }
            logger.info("VAPID configuration loaded")
        else:
            logger.warning(
                "VAPID keys not configured. Sleep check alerts will fall back to the SSE stream. "
                "Generate keys with: npx web-push generate-vapid-keys"
            )

    # Used by: alerts, NotificationChannel
    @property
    def is_configured(self) -> bool:
        return bool(self._vapid_private_key) and bool(self._vapid_public_key)

    # Used by: alerts
    @property
    def public_key(self) -> Optional[str]:
        return self._vapid_public_key

    # Used by: NotificationChannel, sync caller inside a countdown tick
    def schedule_notification(self, device_id: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> asyncio.Task:
        """Send in the background; raises RuntimeError when no event loop is running."""
        task = asyncio.get_running_loop().create_task(
            self.send_notification(device_id, title, body, data)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send_notification(
        self,
        device_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        icon: str = NOTIFICATION_ICON
    ) -> bool:
        """Send a persistent push notification to one device."""
        if not self.is_configured:
            logger.warning("Push notifications not configured, skipping")
            return False

        device = self.registry.get(device_id)
        if device is None or not device.push_subscription:
            logger.debug(f"No push subscription found for device {device_id}")
            return False

        payload = json.dumps({
            "title": title,
            "body": body,
            "icon": icon,
            "requireInteraction": True,
            "data": data or {}
        })

        try:
            # webpush is blocking HTTP
            await asyncio.to_thread(
                webpush,
                subscription_info=device.push_subscription,
                data=payload,
                vapid_private_key=self._vapid_private_key,
                vapid_claims=dict(self._vapid_claims)
            )
        except WebPushException as e:
            if e.response is not None and e.response.status_code in (404, 410):
                logger.info(f"Push subscription for device {device_id} is no longer valid, removing")
                self.registry.clear_push_subscription(device_id)
            logger.error(f"Failed to send push notification to device {device_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Error sending push notification to device {device_id}: {e}")
            return False

        logger.info(f"Sent push notification to device {device_id}: {title}")
        return True


_push_service: Optional[PushService] = None


# Used by: alerts, alert_dispatcher
def get_push_service() -> PushService:
    """Push service singleton."""
    global _push_service
    if _push_service is None:
        _push_service = PushService()
    return _push_service
