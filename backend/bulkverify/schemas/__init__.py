"""Pydantic schemas package."""
from bulkverify.schemas.bouncer import (
    BouncerBatchCreated, BouncerBatchState, BouncerDeliverableResult, BouncerCatchallResult,
)
from bulkverify.schemas.queue import (
    ProviderBatchResponse, ModeCapacity, SchedulerJob, SchedulerStatus, QueueStatusResponse,
)

__all__ = [
    "BouncerBatchCreated", "BouncerBatchState", "BouncerDeliverableResult", "BouncerCatchallResult",
    "ProviderBatchResponse", "ModeCapacity", "SchedulerJob", "SchedulerStatus", "QueueStatusResponse",
]
