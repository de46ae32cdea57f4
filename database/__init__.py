"""
Persistence package.

Exposes
-------
Requisition, ApprovalStatus, TransitionRecord : the workflow entity and its audit row
RequisitionStore                              : storage interface used by the state machine
InMemoryRequisitionStore                      : process-local reference implementation

The SQL Server store lives in ``database.db_operations`` and is imported on demand.
"""

from .models import ApprovalStatus, Requisition, TransitionRecord          # noqa: F401
from .requisition_store import InMemoryRequisitionStore, RequisitionStore  # noqa: F401

__all__: list[str] = [
    "ApprovalStatus",
    "Requisition",
    "TransitionRecord",
    "RequisitionStore",
    "InMemoryRequisitionStore",
]
