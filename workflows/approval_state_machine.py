"""Approval state machine: the only writer of a requisition's approval status."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from database.models import ApprovalStatus, Requisition
from database.requisition_store import UPDATABLE_FIELDS, RequisitionStore
from utils.errors import ConflictError, ValidationError
from utils.helpers import to_decimal
from utils.validation import normalize_candidate, validate

logger = logging.getLogger(__name__)

# a lost compare-and-set re-reads at most this many times before giving up
MAX_CAS_ATTEMPTS = 3

# status_reason is NVARCHAR(500)
MAX_REASON_LENGTH = 500


@dataclass
class TransitionResult:
    requisition: Requisition
    changed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "id": self.requisition.id,
            "approvalStatus": self.requisition.approval_status.value,
            "changed": self.changed,
        }


class ApprovalStateMachine:
    """Guarded transitions over a RequisitionStore.

    PENDING and REVIEW_REQUIRED are open; APPROVED and REJECTED are terminal.
    Every write is a compare-and-set on the status just read, so of two racing
    callers only one commits; the other re-reads and ends in an idempotent
    success, a retry, or a ConflictError.
    """

    def __init__(self, store: RequisitionStore):
        self.store = store

    def approve(self, requisition_id: str) -> TransitionResult:
        return self._transition(requisition_id, ApprovalStatus.APPROVED)

    def risk_reject(self, requisition_id: str, reason: str) -> TransitionResult:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(
                "A reason is required to reject a requisition",
                details=[{"field": "reason", "message": "Reason must not be empty"}],
            )
        if len(reason.strip()) > MAX_REASON_LENGTH:
            raise ValidationError(
                "Reject reason is too long",
                details=[{"field": "reason", "message": f"Must be at most {MAX_REASON_LENGTH} characters"}],
            )
        return self._transition(requisition_id, ApprovalStatus.REJECTED, reason.strip())

    def bulk_review(self, threshold_amount: Any) -> int:
        """Move every PENDING requisition with amount >= threshold to REVIEW_REQUIRED."""
        threshold = to_decimal(threshold_amount)
        if threshold is None or threshold < 0:
            raise ValidationError(
                "Bulk review threshold must be a non-negative amount",
                details=[{"field": "threshold_amount", "message": "Must be a number of zero or more"}],
            )
        updated = self.store.bulk_transition(
            ApprovalStatus.PENDING,
            ApprovalStatus.REVIEW_REQUIRED,
            threshold,
            reason=f"Bulk review at threshold {threshold}",
        )
        logger.info(f"Bulk review at {threshold}: {updated} requisition(s) moved to REVIEW_REQUIRED")
        return updated

    def update_requisition(self, requisition_id: str, changes: Mapping[str, Any]) -> Requisition:
        """Validate and write data fields of an open requisition.

        High-value flag, status and risk score are left as they were at
        creation, even when the amount crosses the threshold.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                details=[{"field": name, "message": "Field is not updatable"} for name in sorted(unknown)],
            )
        if not changes:
            return self.store.get(requisition_id)

        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            current = self.store.get(requisition_id)
            if current.approval_status.is_terminal:
                raise ConflictError(
                    f"Requisition {requisition_id} is {current.approval_status.value} and can no longer be edited"
                )
            merged = {
                "description": current.description,
                "amount": current.amount,
                "currency": current.currency,
                "vendor_id": current.vendor_id,
                **changes,
            }
            validate(merged).raise_for_failures()
            normalized = normalize_candidate(merged)
            fields = {name: normalized[name] for name in changes}
            if self.store.update_fields(requisition_id, current.approval_status, fields):
                logger.info(f"Requisition {requisition_id} updated: {', '.join(sorted(fields))}")
                return self.store.get(requisition_id)
            logger.info(f"Requisition {requisition_id} changed during update (attempt {attempt}), re-reading")

        raise ConflictError(f"Requisition {requisition_id} kept changing; update not applied")

    def _transition(
        self,
        requisition_id: str,
        target: ApprovalStatus,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            current = self.store.get(requisition_id)
            status = current.approval_status

            if status == target:
                logger.info(f"Requisition {requisition_id} already {target.value}; nothing to do")
                return TransitionResult(current, changed=False)
            if status.is_terminal:
                logger.warning(f"Rejected transition {status.value} -> {target.value} for {requisition_id}")
                raise ConflictError(
                    f"Requisition {requisition_id} is {status.value} and cannot become {target.value}",
                    details=[{"field": "approval_status", "message": status.value}],
                )

            if self.store.compare_and_set_status(requisition_id, status, target, reason):
                logger.info(f"Requisition {requisition_id}: {status.value} -> {target.value}")
                return TransitionResult(self.store.get(requisition_id), changed=True)

            logger.info(
                f"Requisition {requisition_id} moved away from {status.value} "
                f"(attempt {attempt}/{MAX_CAS_ATTEMPTS}), re-reading"
            )

        raise ConflictError(
            f"Requisition {requisition_id} kept changing; {target.value} transition not applied"
        )
