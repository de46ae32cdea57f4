import json

import pytest

import main
from config.workflow_config import WorkflowConfig
from database.requisition_store import InMemoryRequisitionStore
from main import RequisitionApp


@pytest.fixture
async def app(risk_service):
    app = RequisitionApp(config=WorkflowConfig(), risk_service=risk_service)
    await app.initialize()
    yield app
    await app.close()


class TestInitialize:
    async def test_memory_store_is_the_default(self, app):
        assert app.is_initialized
        assert isinstance(app.store, InMemoryRequisitionStore)
        assert app.gateway.command_timeout_seconds == 2.0
        assert app.gateway.risk_client.timeout_seconds == 0.8

    async def test_unconfigured_sql_backend_fails(self, risk_service):
        app = RequisitionApp(config=WorkflowConfig(store_backend="mssql"), risk_service=risk_service)
        with pytest.raises(ValueError, match="not configured"):
            await app.initialize()
        assert not app.is_initialized
        assert app.gateway is None


class TestProcessRequisition:
    async def test_high_risk_vendor_ends_rejected(self, app):
        result = await app.process_requisition({
            "description": "Custom wiring harnesses",
            "amount": "49999.99",
            "currency": "EUR",
            "vendor_id": "VND-HIGH",
        })

        assert result["errors"] == []
        assert result["requisition"]["approvalStatus"] == "REJECTED"
        assert result["requisition"]["riskScore"] == 91
        assert [h["toStatus"] for h in result["requisition"]["history"]] == ["REJECTED"]
        assert result["risk"]["level"] == "HIGH"

    async def test_initializes_on_first_use(self, risk_service):
        app = RequisitionApp(config=WorkflowConfig(), risk_service=risk_service)
        result = await app.process_requisition({
            "description": "Desk lamps",
            "amount": 80,
            "currency": "USD",
            "vendor_id": "VND-LOW",
        })
        assert app.is_initialized
        assert result["requisition"]["approvalStatus"] == "PENDING"

    async def test_invalid_request_is_reported(self, app):
        result = await app.process_requisition({"description": "", "amount": "12.345", "currency": "USD",
                                                "vendor_id": "VND-LOW"})

        assert result["requisition"] is None
        assert result["errors"][0]["errorType"] == "ValidationError"
        assert app.store.list() == []


class TestSummaryAndSamples:
    async def test_summary_shows_status_and_reason(self, app, capsys):
        result = await app.process_requisition({
            "description": "Harnesses",
            "amount": "1200",
            "currency": "USD",
            "vendor_id": "VND-HIGH",
        })

        app.print_processing_summary(result)

        out = capsys.readouterr().out
        assert "STATUS: REJECTED" in out
        assert "REASON: Vendor VND-HIGH risk level HIGH (score 91)" in out
        assert "USD 1,200.00" in out
        assert "Vendor Risk:  91 (HIGH)" in out

    def test_summary_lists_errors(self, capsys):
        RequisitionApp(config=WorkflowConfig()).print_processing_summary({
            "requisition": None,
            "risk": None,
            "errors": [{"errorType": "ValidationError", "message": "Invalid requisition",
                        "details": [{"field": "amount", "message": "Amount is required"}]}],
        })
        out = capsys.readouterr().out
        assert "Error: ValidationError: Invalid requisition" in out
        assert "  - amount: Amount is required" in out

    async def test_sample_run(self, app, monkeypatch, tmp_path, capsys):
        samples = tmp_path / "samples.json"
        samples.write_text(json.dumps([
            {"description": "Chairs", "amount": "12500.00", "currency": "USD", "vendor_id": "VND-LOW"},
            {"description": "Spindle", "amount": "50000.00", "currency": "USD", "vendor_id": "VND-NORMAL"},
            {"description": "Harnesses", "amount": "900", "currency": "EUR", "vendor_id": "VND-HIGH"},
        ]))
        monkeypatch.setattr(main, "SAMPLE_DATA_PATH", str(samples))

        await app.run_sample_scenarios()

        out = capsys.readouterr().out
        assert "Processing requisition 3/3" in out
        assert "0 moved to review" in out
        assert app.store.count_by_status() == {"PENDING": 1, "REVIEW_REQUIRED": 1, "APPROVED": 0, "REJECTED": 1}

    async def test_missing_sample_file(self, app, monkeypatch, tmp_path, capsys):
        monkeypatch.setattr(main, "SAMPLE_DATA_PATH", str(tmp_path / "absent.json"))
        await app.run_sample_scenarios()
        assert "No sample requisitions found" in capsys.readouterr().out
        assert app.store.list() == []
