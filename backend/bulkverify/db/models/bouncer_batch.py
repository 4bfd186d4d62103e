"""Provider (Bouncer) batch tracking models."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import declared_attr
from bulkverify.db.base import Base


class BouncerBatchStatus(str, PyEnum):
    """Provider batch status. Completed and failed are terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_BOUNCER_BATCH_STATUSES = (BouncerBatchStatus.PENDING, BouncerBatchStatus.PROCESSING)


class BouncerBatchColumns:
    """One batch submitted to the provider under one mode."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    bouncer_batch_id = Column(String(100), nullable=False, unique=True)
    status = Column(Enum(BouncerBatchStatus), default=BouncerBatchStatus.PENDING, nullable=False)
    email_count = Column(Integer, default=0, nullable=False)
    processed = Column(Integer, default=0, nullable=False)

    @declared_attr
    def user_batch_id(cls):
        # First user batch in the assignment, kept for reference only.
        return Column(Integer, ForeignKey(f"{cls.__user_batch_table__}.id"), nullable=True)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            Index(f'idx_{cls.__tablename__}_status_created', 'status', 'created_at'),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(bouncer_batch_id='{self.bouncer_batch_id}', status='{self.status}')>"


class BouncerBatchEmailColumns:
    """Which email went into which provider batch, and from which user batch.

    This is what lets one provider batch serve several user batches.
    """

    id = Column(Integer, primary_key=True, autoincrement=True)

    @declared_attr
    def bouncer_batch_id(cls):
        return Column(
            String(100),
            ForeignKey(f"{cls.__bouncer_batch_table__}.bouncer_batch_id", ondelete="CASCADE"),
            nullable=False,
        )

    @declared_attr
    def email_global_id(cls):
        return Column(Integer, ForeignKey("emails_global.global_id"), nullable=False)

    @declared_attr
    def user_batch_id(cls):
        return Column(Integer, ForeignKey(f"{cls.__user_batch_table__}.id"), nullable=False)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint(
                'bouncer_batch_id', 'email_global_id', 'user_batch_id',
                name=f'uq_{cls.__tablename__}_assignment',
            ),
            Index(f'idx_{cls.__tablename__}_bouncer_batch_id', 'bouncer_batch_id'),
            Index(f'idx_{cls.__tablename__}_email_global_id', 'email_global_id'),
        )

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(bouncer_batch_id='{self.bouncer_batch_id}', "
            f"email_global_id={self.email_global_id}, user_batch_id={self.user_batch_id})>"
        )


class DeliverableBouncerBatch(BouncerBatchColumns, Base):
    __tablename__ = "bouncer_batches_deliverable"
    __user_batch_table__ = "batches_deliverable"


class CatchallBouncerBatch(BouncerBatchColumns, Base):
    __tablename__ = "bouncer_batches_catchall"
    __user_batch_table__ = "batches_catchall"


class DeliverableBouncerBatchEmail(BouncerBatchEmailColumns, Base):
    __tablename__ = "bouncer_batch_emails_deliverable"
    __user_batch_table__ = "batches_deliverable"
    __bouncer_batch_table__ = "bouncer_batches_deliverable"


class CatchallBouncerBatchEmail(BouncerBatchEmailColumns, Base):
    __tablename__ = "bouncer_batch_emails_catchall"
    __user_batch_table__ = "batches_catchall"
    __bouncer_batch_table__ = "bouncer_batches_catchall"
