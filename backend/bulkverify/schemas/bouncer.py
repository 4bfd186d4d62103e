"""Bouncer API response schemas."""
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, ConfigDict, Field


class BouncerBatchCreated(BaseModel):
    """Response to a batch submission."""
    model_config = ConfigDict(extra="ignore")

    batch_id: str = Field(min_length=1)
    quantity: int = 0
    duplicates: int = 0


class BouncerBatchState(BaseModel):
    """Response to a batch status request."""
    model_config = ConfigDict(extra="ignore")

    batch_id: Optional[str] = None
    status: str
    processed: int = 0
    quantity: int = 0


class BouncerDeliverableResult(BaseModel):
    """One row of a deliverability download."""
    model_config = ConfigDict(extra="ignore")

    email: str
    status: Optional[str] = None
    reason: Optional[str] = None
    is_catchall: Optional[Any] = None
    score: Optional[int] = None
    provider: Optional[str] = None


class BouncerCatchallResult(BaseModel):
    """One row of a catch-all download."""
    model_config = ConfigDict(extra="ignore")

    email: str
    toxicity: Optional[int] = None


def normalize_results(rows: List[Dict[str, Any]], model: type) -> List[Dict[str, Any]]:
    """Validate downloaded rows, dropping the ones without an email."""
    normalized = []
    for row in rows:
        if not isinstance(row, dict) or not row.get("email"):
            continue
        normalized.append(model.model_validate(row).model_dump())
    return normalized
