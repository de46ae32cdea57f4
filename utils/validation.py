"""Validation engine and high-value derivation.

Both are pure: no I/O, no clock, no shared state. Validation runs before a
requisition is created and before any field-mutating update; derivation runs
exactly once, at creation.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Tuple

from database.models import ApprovalStatus
from utils.errors import ValidationError
from utils.helpers import to_decimal

HIGH_VALUE_THRESHOLD = Decimal("50000")

# storage limits: DECIMAL(18, 2), NVARCHAR(1000), VARCHAR(64)
AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999999999.99")
MAX_DESCRIPTION_LENGTH = 1000
MAX_VENDOR_ID_LENGTH = 64

_CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")


@dataclass
class FieldFailure:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    failures: List[FieldFailure] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            fields = ", ".join(f.field for f in self.failures)
            raise ValidationError(
                f"Validation failed for: {fields}",
                details=[f.to_dict() for f in self.failures],
            )


def validate(candidate: Mapping[str, Any]) -> ValidationResult:
    """Check a candidate requisition and report every failing field."""
    result = ValidationResult()

    raw_amount = candidate.get("amount")
    amount = to_decimal(raw_amount)
    if raw_amount is None or (isinstance(raw_amount, str) and not raw_amount.strip()):
        result.failures.append(FieldFailure("amount", "Amount is required"))
    elif amount is None:
        result.failures.append(FieldFailure("amount", "Amount must be a number"))
    elif amount <= 0:
        result.failures.append(FieldFailure("amount", "Amount must be greater than zero"))
    elif amount > MAX_AMOUNT:
        result.failures.append(FieldFailure("amount", f"Amount must not exceed {MAX_AMOUNT}"))
    elif amount != amount.quantize(AMOUNT_QUANTUM):
        result.failures.append(FieldFailure("amount", "Amount must have at most 2 decimal places"))

    description = candidate.get("description")
    if not isinstance(description, str) or not description.strip():
        result.failures.append(FieldFailure("description", "Description must not be empty"))
    elif len(description.strip()) > MAX_DESCRIPTION_LENGTH:
        result.failures.append(
            FieldFailure("description", f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
        )

    currency = candidate.get("currency")
    if not isinstance(currency, str) or not currency.strip():
        result.failures.append(FieldFailure("currency", "Currency is required"))
    elif not _CURRENCY_PATTERN.match(currency.strip()):
        result.failures.append(FieldFailure("currency", "Currency must be a 3-letter code"))

    vendor_id = candidate.get("vendor_id")
    if vendor_id is None or not str(vendor_id).strip():
        result.failures.append(FieldFailure("vendor_id", "Vendor id is required"))
    elif len(str(vendor_id).strip()) > MAX_VENDOR_ID_LENGTH:
        result.failures.append(
            FieldFailure("vendor_id", f"Vendor id must be at most {MAX_VENDOR_ID_LENGTH} characters")
        )

    return result


def normalize_candidate(candidate: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the typed field values of an already validated candidate."""
    return {
        "description": candidate["description"].strip(),
        "amount": to_decimal(candidate["amount"]).quantize(AMOUNT_QUANTUM),
        "currency": candidate["currency"].strip().upper(),
        "vendor_id": str(candidate["vendor_id"]).strip(),
    }


def derive(amount: Decimal) -> Tuple[bool, ApprovalStatus]:
    """Initial (high_value_flag, approval_status) for a new requisition."""
    if amount >= HIGH_VALUE_THRESHOLD:
        return True, ApprovalStatus.REVIEW_REQUIRED
    return False, ApprovalStatus.PENDING
