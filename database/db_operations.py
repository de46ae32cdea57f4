"""SQL Server persistence for requisitions (pymssql)."""
import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import pymssql

from database.models import ApprovalStatus, Requisition, TransitionRecord, utcnow
from database.requisition_store import RequisitionStore, UPDATABLE_FIELDS
from utils.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, description, amount, currency, vendor_id, approval_status, "
    "high_value_flag, risk_score, status_reason, created_at, updated_at"
)

_FIELD_COLUMNS = {
    "description": "description",
    "amount": "amount",
    "currency": "currency",
    "vendor_id": "vendor_id",
}


class DatabaseManager:
    """Opens pymssql connections from the DB_* settings."""

    def __init__(
        self,
        server: str,
        database: str,
        user: str,
        password: str,
        port: int = 1433,
        connect: Callable[..., Any] = pymssql.connect,
    ):
        self.server = server
        self.database = database
        self.user = user
        self.password = password
        self.port = port
        self._connect = connect

    @classmethod
    def from_config(cls, config) -> "DatabaseManager":
        missing = config.missing_db_settings()
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
        return cls(
            server=config.db_server,
            database=config.db_database,
            user=config.db_username,
            password=config.db_password,
            port=config.db_port,
        )

    @contextmanager
    def get_connection(self) -> Iterator[Any]:
        conn = self._connect(
            server=self.server,
            user=self.user,
            password=self.password,
            database=self.database,
            port=self.port,
        )
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a dict cursor; commit on success, roll back on any error."""
        with self.get_connection() as conn:
            cursor = conn.cursor(as_dict=True)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        logger.info(f"Database manager for {self.server}/{self.database} closed")


def _to_db_time(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _row_to_requisition(row: Dict[str, Any]) -> Requisition:
    return Requisition(
        id=row["id"],
        description=row["description"],
        amount=row["amount"],
        currency=row["currency"],
        vendor_id=row["vendor_id"],
        approval_status=ApprovalStatus(row["approval_status"]),
        high_value_flag=bool(row["high_value_flag"]),
        risk_score=int(row["risk_score"] or 0),
        status_reason=row.get("status_reason"),
        created_at=_from_db_time(row.get("created_at")),
        updated_at=_from_db_time(row.get("updated_at")),
    )


class SqlRequisitionStore(RequisitionStore):
    """Requisitions table with conditional UPDATEs for every status change.

    The WHERE clause on approval_status is the compare-and-set; SQL Server's
    row locking makes each statement atomic, and the transition rows are
    written in the same transaction.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def insert(self, requisition, idempotency_key=None, fingerprint=None):
        now = _to_db_time(utcnow())
        with self.db.transaction() as cursor:
            if idempotency_key:
                cursor.execute(
                    f"SELECT {_COLUMNS}, request_fingerprint FROM Requisitions WITH (UPDLOCK, HOLDLOCK) "
                    "WHERE idempotency_key = %s",
                    (idempotency_key,),
                )
                seen = cursor.fetchone()
                if seen:
                    if seen["request_fingerprint"] != fingerprint:
                        raise ConflictError(
                            f"Idempotency key {idempotency_key} was already used with a different payload"
                        )
                    logger.info(f"Idempotent replay of {idempotency_key} -> {seen['id']}")
                    return _row_to_requisition(seen), False

            cursor.execute(
                "INSERT INTO Requisitions (id, description, amount, currency, vendor_id, approval_status, "
                "high_value_flag, risk_score, status_reason, created_at, updated_at, idempotency_key, "
                "request_fingerprint) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    requisition.id,
                    requisition.description,
                    requisition.amount,
                    requisition.currency,
                    requisition.vendor_id,
                    requisition.approval_status.value,
                    1 if requisition.high_value_flag else 0,
                    requisition.risk_score,
                    requisition.status_reason,
                    now,
                    now,
                    idempotency_key,
                    fingerprint,
                ),
            )
        stored_at = _from_db_time(now)
        return replace(requisition, created_at=stored_at, updated_at=stored_at), True

    def get(self, requisition_id):
        with self.db.transaction() as cursor:
            cursor.execute(f"SELECT {_COLUMNS} FROM Requisitions WHERE id = %s", (requisition_id,))
            row = cursor.fetchone()
        if not row:
            raise NotFoundError(requisition_id)
        return _row_to_requisition(row)

    def list(self, status=None, vendor_id=None):
        clauses: List[str] = []
        params: List[Any] = []
        if status is not None:
            clauses.append("approval_status = %s")
            params.append(status.value)
        if vendor_id is not None:
            clauses.append("vendor_id = %s")
            params.append(vendor_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.db.transaction() as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM Requisitions{where} ORDER BY created_at, id",
                tuple(params),
            )
            rows = cursor.fetchall() or []
        return [_row_to_requisition(r) for r in rows]

    def update_fields(self, requisition_id, expected_status, fields):
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        assignments = ", ".join(f"{_FIELD_COLUMNS[name]} = %s" for name in fields)
        params: Tuple[Any, ...] = (
            *fields.values(),
            _to_db_time(utcnow()),
            requisition_id,
            expected_status.value,
        )
        with self.db.transaction() as cursor:
            cursor.execute(
                f"UPDATE Requisitions SET {assignments}, updated_at = %s "
                "WHERE id = %s AND approval_status = %s",
                params,
            )
            if cursor.rowcount == 1:
                return True
            self._require_exists(cursor, requisition_id)
            return False

    def compare_and_set_status(self, requisition_id, expected, new, reason=None):
        now = _to_db_time(utcnow())
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE Requisitions SET approval_status = %s, "
                "status_reason = COALESCE(%s, status_reason), updated_at = %s "
                "WHERE id = %s AND approval_status = %s",
                (new.value, reason, now, requisition_id, expected.value),
            )
            if cursor.rowcount != 1:
                self._require_exists(cursor, requisition_id)
                return False
            self._record_transitions(cursor, [requisition_id], expected, new, reason, now)
            return True

    def bulk_transition(self, from_status, to_status, min_amount, reason=None):
        now = _to_db_time(utcnow())
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE Requisitions SET approval_status = %s, "
                "status_reason = COALESCE(%s, status_reason), updated_at = %s "
                "OUTPUT inserted.id "
                "WHERE approval_status = %s AND amount >= %s",
                (to_status.value, reason, now, from_status.value, min_amount),
            )
            changed = [row["id"] for row in (cursor.fetchall() or [])]
            if changed:
                self._record_transitions(cursor, changed, from_status, to_status, reason, now)
        return len(changed)

    def set_risk_score(self, requisition_id, risk_score):
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE Requisitions SET risk_score = %s, updated_at = %s WHERE id = %s",
                (int(risk_score), _to_db_time(utcnow()), requisition_id),
            )
            if cursor.rowcount != 1:
                raise NotFoundError(requisition_id)

    def history(self, requisition_id):
        with self.db.transaction() as cursor:
            self._require_exists(cursor, requisition_id)
            cursor.execute(
                "SELECT requisition_id, from_status, to_status, reason, occurred_at "
                "FROM RequisitionTransitions WHERE requisition_id = %s ORDER BY transition_id",
                (requisition_id,),
            )
            rows = cursor.fetchall() or []
        return [
            TransitionRecord(
                requisition_id=r["requisition_id"],
                from_status=ApprovalStatus(r["from_status"]),
                to_status=ApprovalStatus(r["to_status"]),
                reason=r.get("reason"),
                occurred_at=_from_db_time(r["occurred_at"]),
            )
            for r in rows
        ]

    def count_by_status(self):
        counts = {status.value: 0 for status in ApprovalStatus}
        with self.db.transaction() as cursor:
            cursor.execute(
                "SELECT approval_status, COUNT(*) AS total FROM Requisitions GROUP BY approval_status"
            )
            for row in cursor.fetchall() or []:
                counts[row["approval_status"]] = int(row["total"])
        return counts

    def close(self):
        self.db.close()

    @staticmethod
    def _require_exists(cursor, requisition_id: str) -> None:
        cursor.execute("SELECT 1 AS ok FROM Requisitions WHERE id = %s", (requisition_id,))
        if not cursor.fetchone():
            raise NotFoundError(requisition_id)

    @staticmethod
    def _record_transitions(cursor, requisition_ids, from_status, to_status, reason, occurred_at) -> None:
        cursor.executemany(
            "INSERT INTO RequisitionTransitions (requisition_id, from_status, to_status, reason, occurred_at) "
            "VALUES (%s, %s, %s, %s, %s)",
            [(rid, from_status.value, to_status.value, reason, occurred_at) for rid in requisition_ids],
        )
