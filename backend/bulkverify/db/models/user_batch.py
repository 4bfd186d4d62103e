"""User batch (submission) models and their email associations.

Each verification mode has its own pair of tables with identical columns.
"""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import declared_attr
from bulkverify.db.base import Base


class UserBatchStatus(str, PyEnum):
    """User batch status."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_USER_BATCH_STATUSES = (UserBatchStatus.QUEUED, UserBatchStatus.PROCESSING)


class UserBatchColumns:
    """Columns shared by batches_deliverable and batches_catchall."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    title = Column(String(255), nullable=True)
    status = Column(Enum(UserBatchStatus), default=UserBatchStatus.QUEUED, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            Index(f'idx_{cls.__tablename__}_status_created', 'status', 'created_at'),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id}, status='{self.status}')>"


class BatchEmailColumns:
    """Columns shared by the batch-email association tables.

    ``used_cached`` marks emails whose result was already known at submission
    time; they are never sent to the provider. ``did_complete`` is set once the
    email's result has been ingested.
    """

    id = Column(Integer, primary_key=True, autoincrement=True)
    used_cached = Column(Boolean, default=False, nullable=False)
    did_complete = Column(Boolean, default=False, nullable=False)

    @declared_attr
    def batch_id(cls):
        return Column(Integer, ForeignKey(f"{cls.__user_batch_table__}.id", ondelete="CASCADE"), nullable=False)

    @declared_attr
    def email_global_id(cls):
        return Column(Integer, ForeignKey("emails_global.global_id"), nullable=False)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint('batch_id', 'email_global_id', name=f'uq_{cls.__tablename__}_batch_email'),
            Index(f'idx_{cls.__tablename__}_batch_id', 'batch_id'),
            Index(f'idx_{cls.__tablename__}_email_global_id', 'email_global_id'),
        )

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(batch_id={self.batch_id}, email_global_id={self.email_global_id}, "
            f"used_cached={self.used_cached}, did_complete={self.did_complete})>"
        )


class DeliverableUserBatch(UserBatchColumns, Base):
    __tablename__ = "batches_deliverable"


class CatchallUserBatch(UserBatchColumns, Base):
    __tablename__ = "batches_catchall"


class DeliverableBatchEmail(BatchEmailColumns, Base):
    __tablename__ = "batch_emails_deliverable"
    __user_batch_table__ = "batches_deliverable"


class CatchallBatchEmail(BatchEmailColumns, Base):
    __tablename__ = "batch_emails_catchall"
    __user_batch_table__ = "batches_catchall"
