"""Helper functions for the requisition workflow."""
import json
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

class DataManager:
    """Reads the bundled vendor history and sample requisitions."""

    @staticmethod
    def load_json_data(file_path: str) -> Any:
        """Parsed contents of *file_path*, or {} when it is missing or unreadable.

        Callers treat an empty result as "no data" (no vendor history, no
        sample run) rather than failing at import time.
        """
        path = Path(file_path)
        if not path.exists():
            logger.warning(f"Data file not found: {file_path}")
            return {}
        try:
            with open(path, 'r') as file:
                return json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read data file {file_path}: {e}")
            return {}

def generate_requisition_id() -> str:
    """New requisition id, REQ- followed by 12 upper-case hex digits."""
    return f"REQ-{uuid.uuid4().hex[:12].upper()}"

def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a number or numeric string to Decimal; None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, float):
        # go through str() so 49999.99 does not pick up binary noise
        value = str(value)
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None

def format_currency(amount: Any, currency: str = "USD") -> str:
    """Amount with thousands separators and two decimals, prefixed by the currency code."""
    value = to_decimal(amount) or Decimal("0")
    return f"{currency} {value:,.2f}"
