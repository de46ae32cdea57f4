"""
MCP servers of the requisition workflow.

``risk_server``        : VendorRiskService, scores vendors from their delivery history
``requisition_server`` : RequisitionService, the command gateway published as tools

The workflow reaches the risk server through the client returned by
:func:`get_local_mcp_client`, which reads its stdio launch definitions from
``config/mcp_config.json``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping, Any

from langchain_mcp_adapters.client import MultiServerMCPClient


def _load_mcp_config(config_path: str | Path = "config/mcp_config.json") -> Mapping[str, Any]:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"MCP config file not found: {path.resolve()}")
    return json.loads(path.read_text())


def server_definitions(config_path: str | Path = "config/mcp_config.json") -> dict[str, Any]:
    """Server definitions keyed by short name ("risk-service" -> "risk")."""
    cfg = _load_mcp_config(config_path)
    return {
        key.split("-")[0]: value for key, value in cfg.get("mcpServers", {}).items()
    }


def get_local_mcp_client(config_path: str | Path = "config/mcp_config.json") -> MultiServerMCPClient:
    """Client for every server in *config_path*; tools are fetched per server name.

    The risk lookup asks it for ``get_tools(server_name="risk")``.
    """
    return MultiServerMCPClient(server_definitions(config_path))


__all__: list[str] = ["get_local_mcp_client", "server_definitions"]
