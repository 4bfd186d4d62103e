"""Queue status schemas."""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict
from bulkverify.db.models.bouncer_batch import BouncerBatchStatus
from bulkverify.db.models.rate_limit import VerificationMode


class ProviderBatchResponse(BaseModel):
    """Schema for a tracked provider batch."""
    model_config = ConfigDict(from_attributes=True)

    bouncer_batch_id: str
    status: BouncerBatchStatus
    email_count: int
    processed: int
    user_batch_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class ModeCapacity(BaseModel):
    """Active provider batches and free slots for one mode."""
    mode: VerificationMode
    active_count: int
    available_capacity: int
    max_concurrent: int


class SchedulerJob(BaseModel):
    id: str
    name: Optional[str] = None
    next_run: Optional[str] = None


class SchedulerStatus(BaseModel):
    running: bool
    jobs: List[SchedulerJob] = []


class QueueStatusResponse(BaseModel):
    """Schema for the queue overview."""
    scheduler: SchedulerStatus
    modes: List[ModeCapacity]
