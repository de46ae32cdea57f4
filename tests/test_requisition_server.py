import json

import pytest

from config.workflow_config import WorkflowConfig
from database.requisition_store import InMemoryRequisitionStore
from main import RequisitionApp
from mcp_servers import requisition_server


@pytest.fixture
async def app(monkeypatch, risk_service):
    app = RequisitionApp(config=WorkflowConfig(), store=InMemoryRequisitionStore(), risk_service=risk_service)
    await app.initialize()
    monkeypatch.setattr(requisition_server, "_app", app)
    return app


async def _call(tool, **arguments):
    result = await requisition_server.mcp.call_tool(tool, arguments)
    # newer FastMCP releases return (content, structured_content)
    content = result[0] if isinstance(result, tuple) else result
    return json.loads(content[0].text)


async def test_tools_are_published():
    tools = await requisition_server.mcp.list_tools()
    assert sorted(t.name for t in tools) == [
        "approve",
        "bulk_review",
        "create_requisition",
        "diagnostics",
        "fetch_vendor_risk",
        "get_requisition",
        "list_requisitions",
        "risk_reject",
        "update_requisition",
    ]


class TestCreateTool:
    async def test_integer_amount_at_threshold(self, app):
        created = await _call("create_requisition", description="Lathe", amount=50000, currency="USD",
                              vendor_id="VND-LOW")
        assert created["approvalStatus"] == "REVIEW_REQUIRED"
        assert created["amount"] == "50000.00"

    async def test_float_amount_just_below_threshold(self, app):
        created = await _call("create_requisition", description="Lathe", amount=49999.99, currency="USD",
                              vendor_id="VND-LOW")
        assert created["approvalStatus"] == "PENDING"
        assert created["amount"] == "49999.99"

    async def test_string_amount(self, app):
        created = await _call("create_requisition", description="Lathe", amount="120.5", currency="usd",
                              vendor_id="VND-LOW")
        assert created["amount"] == "120.50"
        assert created["currency"] == "USD"

    async def test_validation_failure_is_returned_as_error(self, app):
        result = await _call("create_requisition", description=" ", amount=-4, currency="USD", vendor_id="VND-LOW")
        assert result["error"] is True
        assert result["errorType"] == "ValidationError"
        assert [d["field"] for d in result["details"]] == ["amount", "description"]
        assert app.store.list() == []


class TestCommandTools:
    async def test_approve_unknown_id(self, app):
        result = await _call("approve", requisition_id="REQ-MISSING")
        assert result["errorType"] == "NotFoundError"

    async def test_approve_then_get(self, app):
        created = await _call("create_requisition", description="Pallets", amount="900", currency="USD",
                              vendor_id="VND-LOW")
        approved = await _call("approve", requisition_id=created["id"])
        assert approved["changed"] is True

        detail = await _call("get_requisition", requisition_id=created["id"])
        assert detail["approvalStatus"] == "APPROVED"
        assert [h["toStatus"] for h in detail["history"]] == ["APPROVED"]

    async def test_bulk_review_accepts_a_number(self, app):
        await _call("create_requisition", description="Pallets", amount="900", currency="USD", vendor_id="VND-LOW")
        assert await _call("bulk_review", threshold_amount=500) == {"updatedCount": 1}
        assert await _call("bulk_review", threshold_amount=500.0) == {"updatedCount": 0}

    async def test_update_with_numeric_amount(self, app):
        created = await _call("create_requisition", description="Pallets", amount="900", currency="USD",
                              vendor_id="VND-LOW")
        updated = await _call("update_requisition", requisition_id=created["id"], amount=950.25)
        assert updated["amount"] == "950.25"

    async def test_high_risk_vendor_is_rejected(self, app):
        created = await _call("create_requisition", description="Harnesses", amount="4000", currency="EUR",
                              vendor_id="VND-HIGH")
        risk = await _call("fetch_vendor_risk", requisition_id=created["id"])
        assert risk["level"] == "HIGH"
        assert risk["rejected"] == [created["id"]]

        listed = await _call("list_requisitions", status="rejected")
        assert listed["count"] == 1

    async def test_diagnostics(self, app):
        report = await _call("diagnostics")
        assert report["store"] == "InMemoryRequisitionStore"
        assert report["commandTimeoutMs"] == 2000


class TestUnexpectedFailures:
    async def test_unexpected_exception_becomes_error_shape(self, app, monkeypatch):
        async def broken(requisition_id):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(app.gateway, "approve", broken)

        result = await _call("approve", requisition_id="REQ-1")

        assert result == {
            "error": True,
            "errorType": "RuntimeError",
            "message": "approve failed: connection reset",
            "details": [],
        }

    async def test_failed_startup_is_reported_per_call(self, monkeypatch):
        class BrokenApp:
            def __init__(self, *args, **kwargs):
                pass

            async def initialize(self):
                raise ValueError("Store backend 'mssql' is not configured")

        monkeypatch.setattr(requisition_server, "_app", None)
        monkeypatch.setattr(requisition_server, "RequisitionApp", BrokenApp)

        result = await _call("diagnostics")

        assert result["errorType"] == "ValueError"
        assert "not configured" in result["message"]
        assert requisition_server._app is None

    async def test_app_is_built_once(self, monkeypatch, risk_service):
        built = []

        class CountingApp(RequisitionApp):
            def __init__(self):
                super().__init__(config=WorkflowConfig(), store=InMemoryRequisitionStore(), risk_service=risk_service)
                built.append(self)

        monkeypatch.setattr(requisition_server, "_app", None)
        monkeypatch.setattr(requisition_server, "RequisitionApp", CountingApp)

        await _call("diagnostics")
        await _call("list_requisitions")

        assert len(built) == 1
        assert requisition_server._app is built[0]
