"""Requisition store interface and the in-memory reference implementation."""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from database.models import ApprovalStatus, Requisition, TransitionRecord, utcnow
from utils.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class RequisitionStore(ABC):
    """Durable keyed storage for requisitions.

    Every status write is a compare-and-set against the status the caller read,
    and writes its TransitionRecord in the same atomic unit. Only the approval
    state machine calls the status-writing methods.
    """

    @abstractmethod
    def insert(
        self,
        requisition: Requisition,
        idempotency_key: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> Tuple[Requisition, bool]:
        """Persist a new requisition; returns (stored, created).

        With an idempotency key already seen, returns the original record and
        ``created=False`` when the fingerprint matches, else ConflictError.
        """

    @abstractmethod
    def get(self, requisition_id: str) -> Requisition:
        """Point read; NotFoundError when the id is unknown."""

    @abstractmethod
    def list(
        self,
        status: Optional[ApprovalStatus] = None,
        vendor_id: Optional[str] = None,
    ) -> List[Requisition]:
        """Requisitions ordered by creation time, optionally filtered."""

    @abstractmethod
    def update_fields(
        self,
        requisition_id: str,
        expected_status: ApprovalStatus,
        fields: Mapping[str, Any],
    ) -> bool:
        """Write data fields if the status is still ``expected_status``."""

    @abstractmethod
    def compare_and_set_status(
        self,
        requisition_id: str,
        expected: ApprovalStatus,
        new: ApprovalStatus,
        reason: Optional[str] = None,
    ) -> bool:
        """Move ``expected`` -> ``new``; False when the status moved meanwhile."""

    @abstractmethod
    def bulk_transition(
        self,
        from_status: ApprovalStatus,
        to_status: ApprovalStatus,
        min_amount: Decimal,
        reason: Optional[str] = None,
    ) -> int:
        """Atomically move every ``from_status`` row with amount >= min_amount."""

    @abstractmethod
    def set_risk_score(self, requisition_id: str, risk_score: int) -> None:
        """Record advisory risk metadata."""

    @abstractmethod
    def history(self, requisition_id: str) -> List[TransitionRecord]:
        """Transition records of one requisition, oldest first."""

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        """Number of requisitions per approval status."""

    def close(self) -> None:
        """Release any held resources."""


UPDATABLE_FIELDS = frozenset({"description", "amount", "currency", "vendor_id"})


class InMemoryRequisitionStore(RequisitionStore):
    """Process-local store; one lock makes each read-modify-write atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[str, Requisition] = {}
        self._transitions: Dict[str, List[TransitionRecord]] = {}
        self._idempotency: Dict[str, Tuple[str, str]] = {}

    def insert(self, requisition, idempotency_key=None, fingerprint=None):
        with self._lock:
            if idempotency_key:
                seen = self._idempotency.get(idempotency_key)
                if seen is not None:
                    seen_fingerprint, seen_id = seen
                    if seen_fingerprint != fingerprint:
                        raise ConflictError(
                            f"Idempotency key {idempotency_key} was already used with a different payload"
                        )
                    logger.info(f"Idempotent replay of {idempotency_key} -> {seen_id}")
                    return replace(self._rows[seen_id]), False

            if requisition.id in self._rows:
                raise ConflictError(f"Requisition {requisition.id} already exists")

            now = utcnow()
            stored = replace(requisition, created_at=now, updated_at=now)
            self._rows[stored.id] = stored
            self._transitions[stored.id] = []
            if idempotency_key:
                self._idempotency[idempotency_key] = (fingerprint, stored.id)
            return replace(stored), True

    def get(self, requisition_id):
        with self._lock:
            return replace(self._require(requisition_id))

    def list(self, status=None, vendor_id=None):
        with self._lock:
            rows = [
                replace(r) for r in self._rows.values()
                if (status is None or r.approval_status == status)
                and (vendor_id is None or r.vendor_id == vendor_id)
            ]
        return sorted(rows, key=lambda r: r.created_at)

    def update_fields(self, requisition_id, expected_status, fields):
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        with self._lock:
            current = self._require(requisition_id)
            if current.approval_status != expected_status:
                return False
            self._rows[requisition_id] = replace(current, updated_at=utcnow(), **fields)
            return True

    def compare_and_set_status(self, requisition_id, expected, new, reason=None):
        with self._lock:
            current = self._require(requisition_id)
            if current.approval_status != expected:
                return False
            self._rows[requisition_id] = replace(
                current,
                approval_status=new,
                status_reason=reason if reason is not None else current.status_reason,
                updated_at=utcnow(),
            )
            self._transitions[requisition_id].append(
                TransitionRecord(requisition_id, expected, new, reason)
            )
            return True

    def bulk_transition(self, from_status, to_status, min_amount, reason=None):
        with self._lock:
            qualifying = [
                r for r in self._rows.values()
                if r.approval_status == from_status and r.amount >= min_amount
            ]
            now = utcnow()
            for row in qualifying:
                self._rows[row.id] = replace(
                    row,
                    approval_status=to_status,
                    status_reason=reason if reason is not None else row.status_reason,
                    updated_at=now,
                )
                self._transitions[row.id].append(
                    TransitionRecord(row.id, from_status, to_status, reason, now)
                )
            return len(qualifying)

    def set_risk_score(self, requisition_id, risk_score):
        with self._lock:
            current = self._require(requisition_id)
            self._rows[requisition_id] = replace(
                current, risk_score=int(risk_score), updated_at=utcnow()
            )

    def history(self, requisition_id):
        with self._lock:
            self._require(requisition_id)
            return list(self._transitions[requisition_id])

    def count_by_status(self):
        with self._lock:
            counts = {status.value: 0 for status in ApprovalStatus}
            for row in self._rows.values():
                counts[row.approval_status.value] += 1
            return counts

    def _require(self, requisition_id: str) -> Requisition:
        row = self._rows.get(requisition_id)
        if row is None:
            raise NotFoundError(requisition_id)
        return row
