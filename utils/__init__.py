"""
Utility helpers that are reused across the code-base.
Importing this module is *not* required, but it makes common helpers
one `import` away:

>>> from utils import generate_requisition_id, ValidationError
"""

from .helpers import (                               # noqa: F401
    DataManager,
    generate_requisition_id,
    format_currency,
    to_decimal,
)
from .errors import (                                # noqa: F401
    WorkflowError,
    ValidationError,
    NotFoundError,
    ConflictError,
    ExternalServiceError,
    CommandTimeoutError,
    UnknownCommandError,
)

__all__: list[str] = [
    "DataManager",
    "generate_requisition_id",
    "format_currency",
    "to_decimal",
    "WorkflowError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "CommandTimeoutError",
    "UnknownCommandError",
]
