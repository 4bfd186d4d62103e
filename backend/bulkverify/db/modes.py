"""Mode lookup: resolves a verification mode to its tables and outcome fields."""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

from bulkverify.db.models.rate_limit import VerificationMode
from bulkverify.db.models.user_batch import (
    DeliverableUserBatch, CatchallUserBatch, DeliverableBatchEmail, CatchallBatchEmail,
)
from bulkverify.db.models.bouncer_batch import (
    DeliverableBouncerBatch, CatchallBouncerBatch, DeliverableBouncerBatchEmail, CatchallBouncerBatchEmail,
)
from bulkverify.db.models.results import EmailDeliverableResult, EmailCatchallResult

_FALSE_FLAGS = {"no", "false", "0", ""}


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _catchall_flag(value: Any) -> bool:
    """
    Parse the provider's is_catchall field.

    Only a truthy value ("yes", "true", 1) counts as catch-all. A missing,
    empty or "false" field is stored as False, so results that carry no
    catch-all information (undeliverable, unknown) are not flagged.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in _FALSE_FLAGS


def build_deliverable_outcome(email_global_id: int, result: Dict[str, Any]) -> Dict[str, Any]:
    """Outcome row for a deliverability result."""
    return {
        "email_global_id": email_global_id,
        "status": result.get("status") or "unknown",
        "reason": result.get("reason") or "unknown",
        "is_catchall": _catchall_flag(result.get("is_catchall")),
        "score": _as_int(result.get("score")),
        "provider": result.get("provider") or None,
    }


def build_catchall_outcome(email_global_id: int, result: Dict[str, Any]) -> Dict[str, Any]:
    """Outcome row for a catch-all (toxicity) result."""
    return {
        "email_global_id": email_global_id,
        "toxicity": _as_int(result.get("toxicity")),
    }


@dataclass(frozen=True)
class ModeSchema:
    """Tables and outcome builder used by one verification mode."""
    mode: VerificationMode
    user_batch: Type
    batch_email: Type
    bouncer_batch: Type
    bouncer_batch_email: Type
    result: Type
    outcome_fields: Tuple[str, ...]
    build_outcome: Callable[[int, Dict[str, Any]], Dict[str, Any]]


_MODE_SCHEMAS: Dict[VerificationMode, ModeSchema] = {
    VerificationMode.DELIVERABLE: ModeSchema(
        mode=VerificationMode.DELIVERABLE,
        user_batch=DeliverableUserBatch,
        batch_email=DeliverableBatchEmail,
        bouncer_batch=DeliverableBouncerBatch,
        bouncer_batch_email=DeliverableBouncerBatchEmail,
        result=EmailDeliverableResult,
        outcome_fields=("status", "reason", "is_catchall", "score", "provider"),
        build_outcome=build_deliverable_outcome,
    ),
    VerificationMode.CATCHALL: ModeSchema(
        mode=VerificationMode.CATCHALL,
        user_batch=CatchallUserBatch,
        batch_email=CatchallBatchEmail,
        bouncer_batch=CatchallBouncerBatch,
        bouncer_batch_email=CatchallBouncerBatchEmail,
        result=EmailCatchallResult,
        outcome_fields=("toxicity",),
        build_outcome=build_catchall_outcome,
    ),
}


def parse_mode(value: Any) -> Optional[VerificationMode]:
    """Coerce a job payload or path value into a mode, None if unknown."""
    if isinstance(value, VerificationMode):
        return value
    try:
        return VerificationMode(str(value).lower())
    except ValueError:
        return None


def get_mode_schema(mode: VerificationMode) -> ModeSchema:
    """Get the schema descriptor for a mode."""
    return _MODE_SCHEMAS[VerificationMode(mode)]
