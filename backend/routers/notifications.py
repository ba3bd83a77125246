"""
Notifications router - current alerts and notification channels.
"""
import logging

from fastapi import APIRouter, HTTPException

from alert_methods import get_method_types
from media_poller import get_poller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


def _notifier():
    notifier = get_poller().notifier
    if notifier is None:
        raise HTTPException(status_code=503, detail="Notifications are not available")
    return notifier


@router.get("")
async def get_notifications():
    """Alerts active right now, recomputed from the live status map."""
    poller = get_poller()
    notifier = _notifier()
    order = [d.id for d in poller.registry.list_enabled()]
    statuses = poller.current_statuses()
    ordered = [statuses[backend_id] for backend_id in order if backend_id in statuses]
    return {"notifications": [n.to_dict() for n in notifier.current(ordered)]}


@router.get("/channels")
async def list_channels():
    """Configured channels with their most recent delivery outcome."""
    dispatcher = _notifier().dispatcher
    records = dispatcher.delivery_records()
    errors = dispatcher.last_errors()
    channels = []
    for name in dispatcher.channel_names:
        method = dispatcher.get_method(name)
        record = records.get(name)
        error = errors.get(name)
        channels.append({
            "name": name,
            "type": method.method_type,
            "lastDelivery": record.to_dict() if record else None,
            "lastError": error.to_dict() if error else None,
        })
    return {"channels": channels}


@router.get("/channel-types")
async def list_channel_types():
    """Available channel types and their config fields."""
    return {"types": get_method_types()}


@router.post("/channels/{name}/test")
async def test_channel(name: str):
    """Send a test notification through one channel."""
    method = _notifier().dispatcher.get_method(name)
    if method is None:
        raise HTTPException(status_code=404, detail=f"Channel '{name}' not found")

    success, message = await method.test_connection()
    logger.info(f"Test notification via {name}: {'ok' if success else message}")
    return {"success": success, "message": message or "Test notification sent"}
