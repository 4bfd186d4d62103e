"""Provider request log used by the sliding-window rate limiter."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, DateTime, Enum, Index
from bulkverify.db.base import Base, utcnow


class VerificationMode(str, PyEnum):
    """The two independent verification flows."""
    DELIVERABLE = "deliverable"
    CATCHALL = "catchall"


class RequestType(str, PyEnum):
    """Provider operations, each limited independently."""
    CREATE_BATCH = "create_batch"
    CHECK_STATUS = "check_status"
    DOWNLOAD_RESULTS = "download_results"


class RateLimitRecord(Base):
    """Append-only log of provider requests."""

    __tablename__ = "bouncer_rate_limit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    verification_type = Column(Enum(VerificationMode), nullable=False)
    request_type = Column(Enum(RequestType), nullable=False)
    request_count = Column(Integer, default=1, nullable=False)
    window_start = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_rate_limit_lookup', 'verification_type', 'request_type', 'window_start'),
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitRecord(id={self.id}, verification_type='{self.verification_type}', "
            f"request_type='{self.request_type}', request_count={self.request_count})>"
        )
