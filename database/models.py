"""Requisition entity and its transition audit record."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED})
OPEN_STATUSES = frozenset({ApprovalStatus.PENDING, ApprovalStatus.REVIEW_REQUIRED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Requisition:
    """One purchase request moving through the approval lifecycle."""

    id: str
    description: str
    amount: Decimal
    currency: str
    vendor_id: str
    approval_status: ApprovalStatus
    high_value_flag: bool
    risk_score: int = 0
    status_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialise with the camelCase keys of the command surface."""
        return {
            "id": self.id,
            "description": self.description,
            # string keeps the decimal exact over JSON
            "amount": str(self.amount),
            "currency": self.currency,
            "vendorId": self.vendor_id,
            "approvalStatus": self.approval_status.value,
            "highValueFlag": self.high_value_flag,
            "riskScore": self.risk_score,
            "statusReason": self.status_reason,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class TransitionRecord:
    """Audit row written in the same atomic unit as a status change."""

    requisition_id: str
    from_status: ApprovalStatus
    to_status: ApprovalStatus
    reason: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requisitionId": self.requisition_id,
            "fromStatus": self.from_status.value,
            "toStatus": self.to_status.value,
            "reason": self.reason,
            "occurredAt": _iso(self.occurred_at),
        }
