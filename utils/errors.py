"""Error taxonomy for the requisition workflow."""
from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for every error scoped to a single command invocation."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        """Shape used by the MCP tools when a command fails."""
        return {
            "error": True,
            "errorType": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(WorkflowError):
    """Bad input; details carry one {field, message} entry per failing field."""


class NotFoundError(WorkflowError):
    """Unknown requisition id."""

    def __init__(self, requisition_id: str):
        super().__init__(f"Requisition {requisition_id} not found")
        self.requisition_id = requisition_id


class ConflictError(WorkflowError):
    """Illegal or racing transition."""


class ExternalServiceError(WorkflowError):
    """Risk enrichment failed or timed out while a fresh result was mandatory."""


class CommandTimeoutError(WorkflowError):
    """A gateway command did not finish within the latency ceiling."""


class UnknownCommandError(WorkflowError):
    """The gateway has no handler registered under the requested name."""
