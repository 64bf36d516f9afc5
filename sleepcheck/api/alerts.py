"""
Alerts API: real-time SSE stream of sleep check signals, device registration, and push subscription.

Routes (/alerts):
  GET    /stream        - SSE stream of tone / haptic / notification signals for one device

Routes (/devices):
  GET    /{device_id}                          - What the server knows about a device
  POST   /{device_id}/capabilities             - Device reports vibration support
  POST   /{device_id}/gesture                  - First user gesture; unlocks audio on this device
  POST   /{device_id}/notification-permission  - Device reports its notification grant state

Routes (/push):
  GET    /vapid-key    - VAPID public key for client subscription
  POST   /subscribe    - Save push subscription for a device
  POST   /unsubscribe  - Remove push subscription for a device
"""

import asyncio
import json
import logging
from fastapi import APIRouter, HTTPException, status, Query
from fastapi.responses import StreamingResponse

from .models import (
    DeviceCapabilitiesRequest,
    DeviceResponse,
    NotificationPermissionRequest,
    PushSubscriptionRequest,
    PushSubscriptionResponse,
    VapidKeyResponse,
)
from ..core.settings import settings
from ..services.alert_dispatcher import get_audio_resource
from ..services.devices import StaffDevice, get_device_registry
from ..services.push_service import get_push_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


def _device_response(device: StaffDevice) -> DeviceResponse:
    return DeviceResponse(
        device_id=device.device_id,
        supports_vibration=device.supports_vibration,
        audio_unlocked=device.audio_unlocked,
        notification_permission=device.notification_permission,
        push_subscribed=device.push_subscription is not None,
        connected=get_device_registry().is_connected(device.device_id),
    )


# Used by: kiosk/phone shell, long-lived SSE stream that plays tones, vibrates and shows notifications
@router.get("/stream")
async def alerts_stream(device_id: str = Query(..., description="Device ID to deliver signals to")):
    registry = get_device_registry()
    queue = await registry.connect(device_id)

    async def event_generator():
        try:
            yield f"event: connected\ndata: {json.dumps({'device_id': device_id})}\n\n"

            while True:
                try:
                    signal = await asyncio.wait_for(queue.get(), timeout=float(settings.SSE_KEEPALIVE_SECONDS))
                    yield f"event: {signal.type.value}\ndata: {json.dumps(signal.to_dict())}\n\n"
                except asyncio.TimeoutError:
                    yield f": keepalive\n\n"
        except asyncio.CancelledError:
            pass
        finally:
            await registry.disconnect(device_id, queue)
            if registry.connected_count() == 0:
                # Nobody left to hear it; resumed again on the next gesture or alert
                get_audio_resource().suspend()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # disable nginx buffering
        }
    )


device_router = APIRouter(prefix="/devices", tags=["devices"])


# Used by: settings screen, shows alert readiness for this device
@device_router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(device_id: str):
    device = get_device_registry().get(device_id)
    if device is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Device {device_id} has not registered"
        )
    return _device_response(device)


# Used by: app shell on load, reports navigator.vibrate support
@device_router.post("/{device_id}/capabilities", response_model=DeviceResponse)
async def update_capabilities(device_id: str, request: DeviceCapabilitiesRequest):
    device = get_device_registry().update_capabilities(device_id, request.supports_vibration)
    return _device_response(device)


# Used by: app shell, first tap/click anywhere; audio may only start inside a user gesture
@device_router.post("/{device_id}/gesture", response_model=DeviceResponse)
async def record_gesture(device_id: str):
    device = get_device_registry().record_gesture(device_id)
    get_audio_resource().acquire()
    return _device_response(device)


# Used by: notification banner, reports the result of the browser permission prompt
@device_router.post("/{device_id}/notification-permission", response_model=DeviceResponse)
async def update_notification_permission(device_id: str, request: NotificationPermissionRequest):
    device = get_device_registry().set_notification_permission(device_id, request.permission)
    return _device_response(device)


push_router = APIRouter(prefix="/push", tags=["push-notifications"])


# Used by: notification banner, fetches VAPID key for push subscription
@push_router.get("/vapid-key", response_model=VapidKeyResponse)
async def get_vapid_public_key():
    push_service = get_push_service()
    return VapidKeyResponse(
        public_key=push_service.public_key,
        configured=push_service.is_configured
    )


# Used by: notification banner, after permission is granted
@push_router.post("/subscribe", response_model=PushSubscriptionResponse)
async def subscribe_to_push(
    request: PushSubscriptionRequest,
    device_id: str = Query(..., description="Device ID")
):
    push_service = get_push_service()

    if not push_service.is_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push notifications are not configured on this server"
        )

    p256dh_key = request.keys.get("p256dh")
    auth_key = request.keys.get("auth")

    if not p256dh_key or not auth_key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid subscription: missing p256dh or auth keys"
        )

    get_device_registry().set_push_subscription(
        device_id,
        {"endpoint": request.endpoint, "keys": {"p256dh": p256dh_key, "auth": auth_key}}
    )

    return PushSubscriptionResponse(
        success=True,
        message="Successfully subscribed to push notifications"
    )


# Used by: settings screen, disable push on this device
@push_router.post("/unsubscribe", response_model=PushSubscriptionResponse)
async def unsubscribe_from_push(
    device_id: str = Query(..., description="Device ID")
):
    removed = get_device_registry().clear_push_subscription(device_id)

    return PushSubscriptionResponse(
        success=True,
        message="Successfully unsubscribed from push notifications" if removed else "No subscription found"
    )
