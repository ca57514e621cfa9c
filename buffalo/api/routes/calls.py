"""Buffalo call route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from buffalo.api.routes import limiter, domain_error
from buffalo.database.db import get_db_session
from buffalo.services import call_service
from buffalo.api.auth_dependencies import require_player
from buffalo.models.schemas import CallCreate, CallResponse, ProofUrlSubmit

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_PROOF_BYTES = 50 * 1024 * 1024


@router.post("/api/calls", response_model=CallResponse)
@limiter.limit("30/minute")
async def open_call(
    request: Request,
    payload: CallCreate,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Spend one buffalo and call it on another player."""
    try:
        return await call_service.open_call(
            session,
            player["id"],
            payload.recipient_id,
            duration_minutes=payload.duration_minutes,
            message=payload.message,
            period=payload.period,
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error opening buffalo call: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error opening buffalo call")


@router.get("/api/calls", response_model=List[CallResponse])
async def list_calls(
    period: Optional[int] = Query(None),
    status: Optional[str] = Query(None, pattern="^(pending|completed|expired)$"),
    mine: bool = False,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Call feed, newest first. `mine` limits it to calls involving the current player."""
    try:
        return await call_service.list_calls(
            session,
            period=period,
            player_id=player["id"] if mine else None,
            status=status,
            limit=limit,
            offset=offset,
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error fetching buffalo calls: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching buffalo calls")


@router.get("/api/calls/{call_id}", response_model=CallResponse)
async def get_call(
    call_id: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a single call with its effective status."""
    try:
        return await call_service.get_call(session, call_id)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error fetching buffalo call {call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching buffalo call")


@router.post("/api/calls/{call_id}/proof", response_model=CallResponse)
@limiter.limit("10/minute")
async def upload_proof(
    request: Request,
    call_id: int,
    file: UploadFile = File(...),
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Upload photo or video proof for a call on the current player.

    Accepts JPEG, PNG, HEIC, WebP images and MP4, MOV, WebM videos up to 50MB.
    """
    try:
        file_bytes = await file.read()
        if len(file_bytes) > MAX_PROOF_BYTES:
            raise HTTPException(status_code=400, detail="Proof file is too large (max 50MB)")

        return await call_service.upload_and_submit_proof(
            session, call_id, player["id"], file_bytes, file.content_type
        )
    except HTTPException:
        raise
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error uploading proof for call {call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error uploading proof")


@router.post("/api/calls/{call_id}/proof-url", response_model=CallResponse)
async def submit_proof_url(
    call_id: int,
    payload: ProofUrlSubmit,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Complete a call with proof that is already stored elsewhere."""
    try:
        return await call_service.submit_proof(
            session,
            call_id,
            payload.proof_url,
            proof_kind=payload.proof_kind,
            recipient_id=player["id"],
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error submitting proof for call {call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting proof")
