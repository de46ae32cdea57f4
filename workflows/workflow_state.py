"""State definitions for the requisition creation pipeline."""
from typing import TypedDict, Annotated, List, Dict, Any, Optional
from langgraph.graph import add_messages
from langchain_core.messages import BaseMessage

from database.models import Requisition


class RequisitionWorkflowState(TypedDict, total=False):
    """State carried through validate -> derive -> persist."""

    # LangGraph message accumulator, one entry per completed stage
    messages: Annotated[List[BaseMessage], add_messages]

    # Request as received
    candidate: Dict[str, Any]
    idempotency_key: Optional[str]

    # validate
    validation_failures: List[Dict[str, str]]
    fields: Dict[str, Any]

    # derive
    high_value_flag: bool
    initial_status: str

    # persist
    requisition: Requisition
    created: bool
