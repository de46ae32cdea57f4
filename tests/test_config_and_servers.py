import json

import pytest

from config.workflow_config import WorkflowConfig
from mcp_servers import server_definitions
from mcp_servers import risk_server

_ENV_VARS = (
    "STORE_BACKEND", "RISK_TIMEOUT_MS", "COMMAND_TIMEOUT_MS", "LOG_LEVEL",
    "DB_SERVER", "DB_DATABASE", "DB_USERNAME", "DB_PASSWORD", "DB_PORT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the way
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestWorkflowConfig:
    def test_defaults(self, clean_env, tmp_path):
        config = WorkflowConfig.from_env(dotenv_path=str(tmp_path / "missing.env"))
        assert config.store_backend == "memory"
        assert config.risk_timeout_seconds == 0.8
        assert config.command_timeout_seconds == 2.0
        assert config.is_configured

    def test_env_overrides(self, clean_env, tmp_path):
        clean_env.setenv("STORE_BACKEND", "MSSQL")
        clean_env.setenv("RISK_TIMEOUT_MS", "250")
        clean_env.setenv("LOG_LEVEL", "debug")
        config = WorkflowConfig.from_env(dotenv_path=str(tmp_path / "missing.env"))
        assert config.store_backend == "mssql"
        assert config.risk_timeout_ms == 250
        assert config.log_level == "DEBUG"
        assert not config.is_configured
        assert config.missing_db_settings() == ["DB_SERVER", "DB_DATABASE", "DB_USERNAME", "DB_PASSWORD"]

    def test_dotenv_file_is_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "STORE_BACKEND=mssql\nDB_SERVER=sql01\nDB_DATABASE=procurement\n"
            "DB_USERNAME=svc\nDB_PASSWORD=secret\nDB_PORT=14330\n"
        )
        config = WorkflowConfig.from_env(dotenv_path=str(env_file))
        assert config.db_port == 14330
        assert config.is_configured

    def test_unknown_backend_is_not_configured(self):
        assert not WorkflowConfig(store_backend="redis").is_configured


def test_server_definitions_use_short_names(tmp_path):
    path = tmp_path / "mcp_config.json"
    path.write_text(json.dumps({
        "mcpServers": {
            "risk-service": {"command": "python", "args": ["mcp_servers/risk_server.py"], "transport": "stdio"},
            "requisition-service": {"command": "python", "args": ["mcp_servers/requisition_server.py"], "transport": "stdio"},
        }
    }))
    definitions = server_definitions(str(path))
    assert set(definitions) == {"risk", "requisition"}
    assert definitions["risk"]["transport"] == "stdio"


class TestRiskServer:
    def test_perfect_history_is_low_risk(self):
        result = risk_server.compute_vendor_risk("VND-1", {})
        assert (result["risk_score"], result["level"]) == (0, "LOW")

    @pytest.mark.parametrize(
        "vendor_id, score, level",
        [("VND-100", 2, "LOW"), ("VND-200", 44, "NORMAL"), ("VND-300", 75, "HIGH")],
    )
    def test_sample_vendors(self, vendor_id, score, level):
        metrics = {
            "VND-100": {"fulfillment_ratio": 0.99, "ontime_rate": 0.96, "quality_ok_rate": 0.98,
                        "invoice_rejection_rate": 0.01, "payment_failure_rate": 0.0},
            "VND-200": {"fulfillment_ratio": 0.6, "ontime_rate": 0.4, "quality_ok_rate": 0.5,
                        "invoice_rejection_rate": 0.3, "payment_failure_rate": 0.2},
            "VND-300": {"fulfillment_ratio": 0.3, "ontime_rate": 0.1, "quality_ok_rate": 0.25,
                        "invoice_rejection_rate": 0.7, "payment_failure_rate": 0.6},
        }[vendor_id]
        result = risk_server.compute_vendor_risk(vendor_id, metrics)
        assert (result["risk_score"], result["level"]) == (score, level)

    async def test_score_vendor_tool(self, monkeypatch):
        monkeypatch.setattr(risk_server, "VENDORS", {
            "VND-9": {"name": "Tailspin Toys", "metrics": {"fulfillment_ratio": 0.0, "ontime_rate": 0.0}},
        })
        result = await risk_server.score_vendor("VND-9")
        assert result["name"] == "Tailspin Toys"
        assert result["risk_score"] == 60
        assert result["level"] == "NORMAL"

    async def test_unknown_vendor_is_an_error(self, monkeypatch):
        monkeypatch.setattr(risk_server, "VENDORS", {})
        assert (await risk_server.score_vendor("VND-0"))["error"] is True
        assert (await risk_server.score_vendor("  "))["error"] is True

    async def test_only_the_scoring_tool_is_published(self):
        tools = await risk_server.mcp.list_tools()
        assert [t.name for t in tools] == ["score_vendor"]


class TestDataManager:
    def test_missing_file_reads_as_empty(self, tmp_path):
        from utils.helpers import DataManager
        assert DataManager.load_json_data(str(tmp_path / "absent.json")) == {}

    def test_unreadable_file_reads_as_empty(self, tmp_path):
        from utils.helpers import DataManager
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        assert DataManager.load_json_data(str(path)) == {}
