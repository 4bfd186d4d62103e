"""Verification queue status endpoints."""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from bulkverify.api.deps import get_db
from bulkverify.core.config import settings
from bulkverify.db.models.rate_limit import VerificationMode
from bulkverify.db.modes import parse_mode
from bulkverify.schemas.queue import ProviderBatchResponse, ModeCapacity, QueueStatusResponse
from bulkverify.services.queue import gateway
from bulkverify.services.queue.scheduler import get_scheduler_status

router = APIRouter(prefix="/queue", tags=["Verification Queue"])


@router.get("/status", response_model=QueueStatusResponse)
async def queue_status(db: Session = Depends(get_db)):
    """Scheduler state plus active batches and free capacity per mode."""
    modes = []
    for mode in VerificationMode:
        capacity = gateway.count_active_batches(db, mode)
        if not capacity.ok:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Queue storage unavailable"
            )
        modes.append(ModeCapacity(
            mode=mode,
            active_count=capacity.value.active_count,
            available_capacity=capacity.value.available_capacity,
            max_concurrent=settings.MAX_CONCURRENT_BATCHES,
        ))

    return QueueStatusResponse(scheduler=get_scheduler_status(), modes=modes)


@router.get("/{mode}/batches", response_model=List[ProviderBatchResponse])
async def list_active_batches(mode: str, db: Session = Depends(get_db)):
    """List pending and processing provider batches, oldest first."""
    verification_mode = parse_mode(mode)
    if verification_mode is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown verification mode: {mode}"
        )

    batches = gateway.get_active_provider_batches(db, verification_mode)
    if not batches.ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue storage unavailable"
        )
    return [ProviderBatchResponse.model_validate(b) for b in batches.value]
