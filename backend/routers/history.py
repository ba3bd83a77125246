"""
History router - query recorded session history.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from media_poller import get_poller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/history", tags=["History"])


@router.get("")
async def get_history(
    server_id: Optional[str] = None,
    user: Optional[str] = None,
    search: Optional[str] = None,
    from_time: Optional[datetime] = None,
    to_time: Optional[datetime] = None,
    sort_by: str = "time",
    order: str = "desc",
    limit: Optional[int] = Query(default=None, ge=1),
):
    """Session history, newest first by default."""
    recorder = get_poller().recorder
    if recorder is None:
        raise HTTPException(status_code=503, detail="History recording is not available")

    try:
        rows = recorder.query(
            server_id=server_id,
            user=user,
            search=search,
            from_time=from_time,
            to_time=to_time,
            sort_by=sort_by,
            order=order,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        logger.error(f"History query failed: {e}")
        raise HTTPException(status_code=503, detail="History database not initialized")

    return {"history": rows, "count": len(rows)}
