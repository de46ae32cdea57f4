"""Command gateway: named external commands mapped onto the workflow core."""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from database.models import ApprovalStatus, OPEN_STATUSES
from database.requisition_store import RequisitionStore
from utils.errors import (
    CommandTimeoutError,
    ConflictError,
    UnknownCommandError,
    ValidationError,
    WorkflowError,
)
from utils.risk_client import RiskEnrichmentClient
from workflows.approval_state_machine import ApprovalStateMachine
from workflows.command_scope import enter_scope, exit_scope, run_write
from workflows.requisition_pipeline import RequisitionPipeline

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Dict[str, Any]]]


class CommandGateway:
    """Dispatches commands by name under a latency ceiling.

    Blocking store work runs in a worker thread. The ceiling cancels a
    command only while it has written nothing; once a write has started it
    cannot be stopped, so the command finishes and its real outcome is
    returned. Repeating a command against a record that is already in the
    resulting state has no further side effects.
    """

    def __init__(
        self,
        store: RequisitionStore,
        pipeline: RequisitionPipeline,
        state_machine: ApprovalStateMachine,
        risk_client: RiskEnrichmentClient,
        command_timeout_seconds: float = 2.0,
    ):
        self.store = store
        self.pipeline = pipeline
        self.state_machine = state_machine
        self.risk_client = risk_client
        self.command_timeout_seconds = command_timeout_seconds
        self._handlers: Dict[str, Handler] = {
            "create_requisition": self._create_requisition,
            "update_requisition": self._update_requisition,
            "approve": self._approve,
            "bulk_review": self._bulk_review,
            "fetch_vendor_risk": self._fetch_vendor_risk,
            "risk_reject": self._risk_reject,
            "get_requisition": self._get_requisition,
            "list_requisitions": self._list_requisitions,
            "diagnostics": self._diagnostics,
        }

    @property
    def commands(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, command: str, arguments: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Run one command and return its JSON-friendly response."""
        handler = self._handlers.get(command)
        if handler is None:
            raise UnknownCommandError(f"Unknown command: {command}")

        try:
            pending = handler(**dict(arguments or {}))
        except TypeError as e:
            raise ValidationError(f"Invalid arguments for {command}: {e}")

        start_time = time.monotonic()
        scope, token = enter_scope(command)
        try:
            task = asyncio.ensure_future(pending)
        finally:
            exit_scope(token)

        ceiling_ms = int(self.command_timeout_seconds * 1000)
        try:
            done, _ = await asyncio.wait({task}, timeout=self.command_timeout_seconds)
        except asyncio.CancelledError:
            if not scope.writing:
                task.cancel()
            raise

        if not done:
            if not scope.writing:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                logger.error(f"Command {command} exceeded the {ceiling_ms}ms ceiling before writing")
                raise CommandTimeoutError(f"Command {command} did not complete within {ceiling_ms}ms")
            # a started write still commits, so report its real outcome
            logger.warning(f"Command {command} passed the {ceiling_ms}ms ceiling with a write in flight")

        try:
            result = await task
        except WorkflowError as e:
            logger.warning(f"Command {command} failed: {type(e).__name__}: {e.message}")
            raise

        logger.info(f"Command {command} completed in {time.monotonic() - start_time:.3f}s")
        return result

    async def create_requisition(self, description, amount, currency, vendor_id, idempotency_key=None):
        return await self.dispatch("create_requisition", {
            "description": description,
            "amount": amount,
            "currency": currency,
            "vendor_id": vendor_id,
            "idempotency_key": idempotency_key,
        })

    async def update_requisition(self, requisition_id, **changes):
        return await self.dispatch("update_requisition", {"requisition_id": requisition_id, **changes})

    async def approve(self, requisition_id):
        return await self.dispatch("approve", {"requisition_id": requisition_id})

    async def bulk_review(self, threshold_amount):
        return await self.dispatch("bulk_review", {"threshold_amount": threshold_amount})

    async def fetch_vendor_risk(self, vendor_id=None, requisition_id=None, require_fresh=False):
        return await self.dispatch("fetch_vendor_risk", {
            "vendor_id": vendor_id,
            "requisition_id": requisition_id,
            "require_fresh": require_fresh,
        })

    async def risk_reject(self, requisition_id, reason):
        return await self.dispatch("risk_reject", {"requisition_id": requisition_id, "reason": reason})

    async def get_requisition(self, requisition_id):
        return await self.dispatch("get_requisition", {"requisition_id": requisition_id})

    async def list_requisitions(self, status=None, vendor_id=None):
        return await self.dispatch("list_requisitions", {"status": status, "vendor_id": vendor_id})

    async def diagnostics(self):
        return await self.dispatch("diagnostics")

    async def _create_requisition(self, description=None, amount=None, currency=None, vendor_id=None,
                                  idempotency_key=None) -> Dict[str, Any]:
        requisition, _ = await self.pipeline.create(
            {
                "description": description,
                "amount": amount,
                "currency": currency,
                "vendor_id": vendor_id,
            },
            idempotency_key=idempotency_key,
        )
        return requisition.to_dict()

    async def _update_requisition(self, requisition_id, description=None, amount=None, currency=None,
                                  vendor_id=None) -> Dict[str, Any]:
        changes = {
            name: value
            for name, value in (
                ("description", description),
                ("amount", amount),
                ("currency", currency),
                ("vendor_id", vendor_id),
            )
            if value is not None
        }
        requisition = await run_write(self.state_machine.update_requisition, requisition_id, changes)
        return requisition.to_dict()

    async def _approve(self, requisition_id) -> Dict[str, Any]:
        result = await run_write(self.state_machine.approve, requisition_id)
        return result.to_dict()

    async def _bulk_review(self, threshold_amount) -> Dict[str, Any]:
        updated = await run_write(self.state_machine.bulk_review, threshold_amount)
        return {"updatedCount": updated}

    async def _risk_reject(self, requisition_id, reason) -> Dict[str, Any]:
        result = await run_write(self.state_machine.risk_reject, requisition_id, reason)
        return result.to_dict()

    async def _fetch_vendor_risk(self, vendor_id=None, requisition_id=None, require_fresh=False) -> Dict[str, Any]:
        """Look up vendor risk; record the score and reject on HIGH.

        With ``requisition_id`` only that requisition is affected and a
        conflicting reject surfaces as ConflictError. Otherwise every open
        requisition of the vendor is affected and conflicts are reported in
        the response.
        """
        if requisition_id:
            requisition = await asyncio.to_thread(self.store.get, requisition_id)
            if vendor_id and vendor_id != requisition.vendor_id:
                raise ValidationError(
                    f"Requisition {requisition_id} belongs to vendor {requisition.vendor_id}, not {vendor_id}",
                    details=[{"field": "vendor_id", "message": "Does not match the requisition"}],
                )
            vendor_id = requisition.vendor_id
            targets = [requisition]
        elif vendor_id and str(vendor_id).strip():
            vendor_id = str(vendor_id).strip()
            rows = await asyncio.to_thread(self.store.list, None, vendor_id)
            targets = [r for r in rows if r.approval_status in OPEN_STATUSES]
        else:
            raise ValidationError(
                "vendor_id or requisition_id is required",
                details=[{"field": "vendor_id", "message": "Vendor id is required"}],
            )

        assessment = await self.risk_client.fetch_risk(vendor_id, require_fresh=bool(require_fresh))
        response = {**assessment.to_dict(), "rejected": [], "conflicts": []}
        if assessment.degraded:
            return response

        reason = f"Vendor {vendor_id} risk level HIGH (score {assessment.risk_score})"
        for target in targets:
            # reject before recording the score so a conflict leaves the record untouched
            if assessment.is_high_risk:
                try:
                    result = await run_write(self.state_machine.risk_reject, target.id, reason)
                except ConflictError as e:
                    if requisition_id:
                        raise
                    logger.warning(f"Risk reject skipped for {target.id}: {e.message}")
                    response["conflicts"].append({"id": target.id, "message": e.message})
                    continue
                if result.changed:
                    response["rejected"].append(target.id)
            if target.risk_score != assessment.risk_score:
                await run_write(self.store.set_risk_score, target.id, assessment.risk_score)
        return response

    async def _get_requisition(self, requisition_id) -> Dict[str, Any]:
        requisition = await asyncio.to_thread(self.store.get, requisition_id)
        history = await asyncio.to_thread(self.store.history, requisition_id)
        return {**requisition.to_dict(), "history": [h.to_dict() for h in history]}

    async def _list_requisitions(self, status=None, vendor_id=None) -> Dict[str, Any]:
        status_filter = None
        if status:
            try:
                status_filter = ApprovalStatus(str(status).upper())
            except ValueError:
                raise ValidationError(
                    f"Unknown approval status: {status}",
                    details=[{"field": "status", "message": f"One of {', '.join(s.value for s in ApprovalStatus)}"}],
                )
        rows = await asyncio.to_thread(self.store.list, status_filter, vendor_id)
        return {"count": len(rows), "requisitions": [r.to_dict() for r in rows]}

    async def _diagnostics(self) -> Dict[str, Any]:
        """Informational only; never changes state."""
        counts = await asyncio.to_thread(self.store.count_by_status)
        return {
            "store": type(self.store).__name__,
            "commands": self.commands,
            "statusCounts": counts,
            "riskTimeoutMs": int(self.risk_client.timeout_seconds * 1000),
            "commandTimeoutMs": int(self.command_timeout_seconds * 1000),
        }
