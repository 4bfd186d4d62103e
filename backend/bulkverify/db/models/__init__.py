"""Database models package."""
from bulkverify.db.models.email import EmailGlobal, strip_email_modifiers
from bulkverify.db.models.rate_limit import RateLimitRecord, VerificationMode, RequestType
from bulkverify.db.models.user_batch import (
    UserBatchStatus,
    DeliverableUserBatch,
    CatchallUserBatch,
    DeliverableBatchEmail,
    CatchallBatchEmail,
)
from bulkverify.db.models.bouncer_batch import (
    BouncerBatchStatus,
    DeliverableBouncerBatch,
    CatchallBouncerBatch,
    DeliverableBouncerBatchEmail,
    CatchallBouncerBatchEmail,
)
from bulkverify.db.models.results import EmailDeliverableResult, EmailCatchallResult

__all__ = [
    "EmailGlobal",
    "strip_email_modifiers",
    "RateLimitRecord",
    "VerificationMode",
    "RequestType",
    "UserBatchStatus",
    "DeliverableUserBatch",
    "CatchallUserBatch",
    "DeliverableBatchEmail",
    "CatchallBatchEmail",
    "BouncerBatchStatus",
    "DeliverableBouncerBatch",
    "CatchallBouncerBatch",
    "DeliverableBouncerBatchEmail",
    "CatchallBouncerBatchEmail",
    "EmailDeliverableResult",
    "EmailCatchallResult",
]
