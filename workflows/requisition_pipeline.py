"""Requisition creation pipeline implemented with LangGraph."""
import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

from langchain_core.messages import HumanMessage, SystemMessage
from langgraph.graph import END, StateGraph

from database.models import ApprovalStatus, Requisition
from database.requisition_store import RequisitionStore
from utils.errors import ValidationError
from utils.helpers import format_currency, generate_requisition_id
from utils.validation import derive, normalize_candidate, validate
from workflows.command_scope import run_write
from workflows.workflow_state import RequisitionWorkflowState

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 128


def request_fingerprint(fields: Dict[str, Any]) -> str:
    """Stable hash of the normalized request, used to check idempotent replays."""
    canonical = json.dumps(
        {name: str(value) for name, value in sorted(fields.items())},
        sort_keys=True,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class RequisitionPipeline:
    """Explicit, ordered creation stages: validate -> derive -> persist.

    A validation failure ends the graph before anything is derived or
    written; the caller gets a ValidationError with every failing field.
    """

    def __init__(self, store: RequisitionStore):
        self.store = store
        self.workflow = None

    async def validate_candidate(self, state: RequisitionWorkflowState) -> Dict[str, Any]:
        """Run the validation engine on the raw request."""
        result = validate(state["candidate"])
        if not result.is_valid:
            failures = [f.to_dict() for f in result.failures]
            logger.warning(f"Requisition validation failed: {failures}")
            return {
                "validation_failures": failures,
                "messages": [SystemMessage(content=f"Validation failed: {', '.join(f['field'] for f in failures)}")],
            }
        fields = normalize_candidate(state["candidate"])
        return {
            "validation_failures": [],
            "fields": fields,
            "messages": [SystemMessage(content=f"Validated {format_currency(fields['amount'], fields['currency'])}")],
        }

    async def derive_flags(self, state: RequisitionWorkflowState) -> Dict[str, Any]:
        """Compute the high-value flag and initial status from the amount."""
        high_value, status = derive(state["fields"]["amount"])
        return {
            "high_value_flag": high_value,
            "initial_status": status.value,
            "messages": [SystemMessage(content=f"High value: {high_value}; initial status {status.value}")],
        }

    async def persist(self, state: RequisitionWorkflowState) -> Dict[str, Any]:
        """Write the new requisition to the store."""
        fields = state["fields"]
        requisition = Requisition(
            id=generate_requisition_id(),
            description=fields["description"],
            amount=fields["amount"],
            currency=fields["currency"],
            vendor_id=fields["vendor_id"],
            approval_status=ApprovalStatus(state["initial_status"]),
            high_value_flag=state["high_value_flag"],
        )
        stored, created = await run_write(
            self.store.insert,
            requisition,
            state.get("idempotency_key"),
            request_fingerprint(fields),
        )
        verb = "Created" if created else "Replayed"
        return {
            "requisition": stored,
            "created": created,
            "messages": [SystemMessage(content=f"{verb} requisition {stored.id}")],
        }

    def should_continue(self, state: RequisitionWorkflowState) -> str:
        if state.get("validation_failures"):
            return "END"
        return "derive"

    def _build_workflow(self):
        """Build the LangGraph workflow."""
        workflow = StateGraph(RequisitionWorkflowState)

        workflow.add_node("validate", self.validate_candidate)
        workflow.add_node("derive", self.derive_flags)
        workflow.add_node("persist", self.persist)

        workflow.set_entry_point("validate")
        workflow.add_conditional_edges(
            "validate",
            self.should_continue,
            {
                "derive": "derive",
                "END": END,
            },
        )
        workflow.add_edge("derive", "persist")
        workflow.add_edge("persist", END)

        self.workflow = workflow.compile()
        logger.info("Requisition pipeline built")

    async def create(
        self,
        candidate: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Tuple[Requisition, bool]:
        """Run a create request through every stage; returns (requisition, created)."""
        start_time = time.time()
        if idempotency_key is not None and len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(
                "Idempotency key is too long",
                details=[{
                    "field": "idempotency_key",
                    "message": f"Must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters",
                }],
            )
        if self.workflow is None:
            self._build_workflow()

        initial_state: RequisitionWorkflowState = {
            "messages": [HumanMessage(content=f"Create requisition for vendor {candidate.get('vendor_id')}")],
            "candidate": dict(candidate),
            "idempotency_key": idempotency_key,
        }
        result = await self.workflow.ainvoke(initial_state)

        failures = result.get("validation_failures") or []
        if failures:
            raise ValidationError(
                f"Validation failed for: {', '.join(f['field'] for f in failures)}",
                details=failures,
            )

        requisition = result["requisition"]
        logger.info(
            f"Requisition {requisition.id} ({requisition.approval_status.value}) "
            f"processed in {time.time() - start_time:.3f}s"
        )
        return requisition, result["created"]
