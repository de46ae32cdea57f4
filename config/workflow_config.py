"""Workflow configuration loaded from the environment."""
import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv


@dataclass
class WorkflowConfig:
    """Settings for the requisition workflow process."""

    store_backend: str = "memory"
    risk_timeout_ms: int = 800
    command_timeout_ms: int = 2000
    mcp_config_path: str = "config/mcp_config.json"
    risk_server_name: str = "risk"
    log_level: str = "INFO"
    log_file: str = "requisition_workflow.log"
    db_server: Optional[str] = None
    db_database: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_port: int = 1433

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "WorkflowConfig":
        """Read settings from the environment after loading ``.env``."""
        load_dotenv(dotenv_path=dotenv_path)
        return cls(
            store_backend=os.getenv("STORE_BACKEND", "memory").strip().lower(),
            risk_timeout_ms=int(os.getenv("RISK_TIMEOUT_MS", "800")),
            command_timeout_ms=int(os.getenv("COMMAND_TIMEOUT_MS", "2000")),
            mcp_config_path=os.getenv("MCP_CONFIG_PATH", "config/mcp_config.json"),
            risk_server_name=os.getenv("RISK_SERVER_NAME", "risk"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE", "requisition_workflow.log"),
            db_server=os.getenv("DB_SERVER"),
            db_database=os.getenv("DB_DATABASE"),
            db_username=os.getenv("DB_USERNAME"),
            db_password=os.getenv("DB_PASSWORD"),
            db_port=int(os.getenv("DB_PORT", "1433")),
        )

    @property
    def risk_timeout_seconds(self) -> float:
        return self.risk_timeout_ms / 1000.0

    @property
    def command_timeout_seconds(self) -> float:
        return self.command_timeout_ms / 1000.0

    def missing_db_settings(self) -> List[str]:
        required = {
            "DB_SERVER": self.db_server,
            "DB_DATABASE": self.db_database,
            "DB_USERNAME": self.db_username,
            "DB_PASSWORD": self.db_password,
        }
        return [name for name, value in required.items() if not value]

    @property
    def is_configured(self) -> bool:
        """True when the selected store backend has everything it needs."""
        if self.store_backend == "memory":
            return True
        if self.store_backend == "mssql":
            return not self.missing_db_settings()
        return False
