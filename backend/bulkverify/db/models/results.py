"""Per-email verification outcomes, one table per mode."""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from bulkverify.db.base import Base


class EmailDeliverableResult(Base):
    """Latest deliverability outcome for an email."""

    __tablename__ = "email_deliverable_results"

    email_global_id = Column(Integer, ForeignKey("emails_global.global_id"), primary_key=True)
    status = Column(String(50), nullable=False, default="unknown")  # deliverable, risky, undeliverable, unknown
    reason = Column(String(100), nullable=False, default="unknown")
    is_catchall = Column(Boolean, nullable=False, default=False)
    score = Column(Integer, nullable=False, default=0)
    provider = Column(String(100), nullable=True)  # mailbox provider reported by Bouncer

    def __repr__(self) -> str:
        return f"<EmailDeliverableResult(email_global_id={self.email_global_id}, status='{self.status}')>"


class EmailCatchallResult(Base):
    """Latest catch-all (toxicity) outcome for an email."""

    __tablename__ = "email_catchall_results"

    email_global_id = Column(Integer, ForeignKey("emails_global.global_id"), primary_key=True)
    toxicity = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<EmailCatchallResult(email_global_id={self.email_global_id}, toxicity={self.toxicity})>"
