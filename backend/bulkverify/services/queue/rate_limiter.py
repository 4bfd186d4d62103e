"""Sliding-window rate limiter backed by the bouncer_rate_limit log."""
from datetime import timedelta
from typing import Tuple
import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bulkverify.core.config import settings
from bulkverify.core.result import Result
from bulkverify.db.base import utcnow
from bulkverify.db.models.rate_limit import RateLimitRecord, VerificationMode, RequestType
from bulkverify.services.queue.gateway import prune_rate_limit_records

logger = structlog.get_logger()


def current_count(db: Session, mode: VerificationMode, request_type: RequestType) -> int:
    """Requests recorded for (mode, request type) in the trailing window."""
    window_start = utcnow() - timedelta(seconds=settings.RATE_LIMIT_WINDOW_SECONDS)
    total = (
        db.query(func.coalesce(func.sum(RateLimitRecord.request_count), 0))
        .filter(
            RateLimitRecord.verification_type == VerificationMode(mode),
            RateLimitRecord.request_type == RequestType(request_type),
            RateLimitRecord.window_start >= window_start,
        )
        .scalar()
    )
    return int(total or 0)


def can_proceed(db: Session, mode: VerificationMode, request_type: RequestType) -> Tuple[bool, int]:
    """
    Check whether one more request fits under the safety limit.

    Fails closed: a storage error means not allowed.
    """
    try:
        count = current_count(db, mode, request_type)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Rate limit check failed, denying request",
            mode=VerificationMode(mode).value,
            request_type=RequestType(request_type).value,
            error=str(e),
        )
        return False, 0

    allowed = count + 1 <= settings.RATE_LIMIT_SAFETY_LIMIT
    if not allowed:
        logger.warning(
            "Rate limit reached",
            mode=VerificationMode(mode).value,
            request_type=RequestType(request_type).value,
            current=count,
            limit=settings.RATE_LIMIT_SAFETY_LIMIT,
        )
    return allowed, count


def record(db: Session, mode: VerificationMode, request_type: RequestType, count: int = 1) -> bool:
    """Append a usage record. Returns False if it could not be written."""
    try:
        db.add(RateLimitRecord(
            verification_type=VerificationMode(mode),
            request_type=RequestType(request_type),
            request_count=count,
            window_start=utcnow(),
        ))
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to record rate limit usage",
            mode=VerificationMode(mode).value,
            request_type=RequestType(request_type).value,
            error=str(e),
        )
        return False


def prune(db: Session) -> Result[int]:
    """Delete records older than the retention horizon."""
    older_than = utcnow() - timedelta(seconds=settings.RATE_LIMIT_RECORD_RETENTION_SECONDS)
    return prune_rate_limit_records(db, older_than)
