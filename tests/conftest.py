import asyncio

import pytest

from database.requisition_store import InMemoryRequisitionStore
from utils.risk_client import RiskEnrichmentClient, RiskScoringService
from workflows.approval_state_machine import ApprovalStateMachine
from workflows.command_gateway import CommandGateway
from workflows.requisition_pipeline import RequisitionPipeline


class StaticRiskService(RiskScoringService):
    """Deterministic scoring collaborator; unknown vendors raise KeyError."""

    def __init__(self):
        self.scores = {
            "VND-LOW": {"risk_score": 10, "level": "LOW"},
            "VND-NORMAL": {"risk_score": 55},
            "VND-HIGH": {"risk_score": 91, "level": "HIGH"},
        }
        self.delay = 0.0
        self.error = None
        self.calls = []

    async def score_vendor(self, vendor_id):
        self.calls.append(vendor_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.scores[vendor_id]


@pytest.fixture
def store():
    return InMemoryRequisitionStore()


@pytest.fixture
def state_machine(store):
    return ApprovalStateMachine(store)


@pytest.fixture
def pipeline(store):
    return RequisitionPipeline(store)


@pytest.fixture
def risk_service():
    return StaticRiskService()


@pytest.fixture
def risk_client(risk_service):
    return RiskEnrichmentClient(risk_service, timeout_seconds=0.2)


@pytest.fixture
def gateway(store, pipeline, state_machine, risk_client):
    return CommandGateway(
        store=store,
        pipeline=pipeline,
        state_machine=state_machine,
        risk_client=risk_client,
        command_timeout_seconds=2.0,
    )


@pytest.fixture
def make_requisition(store):
    """Insert a requisition directly, bypassing the pipeline."""
    from decimal import Decimal

    from database.models import ApprovalStatus, Requisition
    from utils.helpers import generate_requisition_id

    def _make(amount="100.00", status=ApprovalStatus.PENDING, vendor_id="VND-LOW", **overrides):
        requisition = Requisition(
            id=generate_requisition_id(),
            description=overrides.pop("description", "Office chairs"),
            amount=Decimal(amount),
            currency=overrides.pop("currency", "USD"),
            vendor_id=vendor_id,
            approval_status=status,
            high_value_flag=Decimal(amount) >= Decimal("50000"),
            **overrides,
        )
        stored, _ = store.insert(requisition)
        return stored

    return _make
