"""Buffalo request route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from buffalo.api.routes import domain_error
from buffalo.database.db import get_db_session
from buffalo.services import request_service
from buffalo.api.auth_dependencies import require_player
from buffalo.models.schemas import BuffaloRequestCreate, BuffaloRequestResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/requests", response_model=BuffaloRequestResponse)
async def send_request(
    payload: BuffaloRequestCreate,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Ask another player for a buffalo."""
    try:
        return await request_service.send_request(
            session, player["id"], payload.recipient_id, note=payload.note, period=payload.period
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error sending buffalo request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error sending buffalo request")


@router.get("/api/requests", response_model=List[BuffaloRequestResponse])
async def list_requests(
    direction: str = Query("incoming", pattern="^(incoming|outgoing)$"),
    status: Optional[str] = Query(None, pattern="^(pending|accepted|declined)$"),
    period: Optional[int] = Query(None),
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the current player's incoming or outgoing buffalo requests."""
    try:
        return await request_service.list_requests(
            session, player["id"], direction=direction, status=status, period=period
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error fetching buffalo requests: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching buffalo requests")


@router.post("/api/requests/{request_id}/accept", response_model=BuffaloRequestResponse)
async def accept_request(
    request_id: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept a pending buffalo request, granting the requester one buffalo."""
    try:
        return await request_service.respond_to_request(session, request_id, player["id"], accept=True)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error accepting buffalo request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error accepting buffalo request")


@router.post("/api/requests/{request_id}/decline", response_model=BuffaloRequestResponse)
async def decline_request(
    request_id: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Decline a pending buffalo request."""
    try:
        return await request_service.respond_to_request(session, request_id, player["id"], accept=False)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error declining buffalo request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error declining buffalo request")
