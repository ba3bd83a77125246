"""
Status router - live per-backend status and on-demand poll.
"""
import logging

from fastapi import APIRouter

from media_poller import get_poller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/status", tags=["Status"])


@router.get("")
async def get_status():
    """Current status of every enabled backend, in configured order."""
    poller = get_poller()
    servers = poller.registry.list_enabled()
    statuses = poller.current_statuses()
    return {
        "servers": [d.to_dict() for d in servers],
        "statuses": {d.id: statuses[d.id].to_dict() for d in servers if d.id in statuses},
        "setup": len(servers) == 0,
        "lastPoll": poller.last_poll_meta().to_dict(),
    }


@router.post("/refresh")
async def refresh_status():
    """Run one poll cycle now."""
    poller = get_poller()
    ran = await poller.run_cycle()
    if not ran:
        logger.info("Manual refresh skipped: poll cycle already running")
    return {"refreshed": ran, "lastPoll": poller.last_poll_meta().to_dict()}
