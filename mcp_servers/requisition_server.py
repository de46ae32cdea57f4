"""Requisition workflow MCP server: the command gateway as MCP tools."""
import sys, pathlib
root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path: sys.path.insert(0, str(root))

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from mcp.server.fastmcp import FastMCP

from main import RequisitionApp
from utils.errors import WorkflowError
from workflows.command_gateway import CommandGateway

# Initialize MCP server
mcp = FastMCP("RequisitionService")
logger = logging.getLogger(__name__)

# Components are built on first use, once per server process
_app: Optional[RequisitionApp] = None


async def _get_gateway() -> CommandGateway:
    global _app
    if _app is None:
        app = RequisitionApp()
        await app.initialize()
        _app = app
    return _app.gateway


async def _run(command: str, call: Callable[[CommandGateway], Awaitable[Dict[str, Any]]]) -> dict:
    """Turn workflow errors into the tool error shape instead of raising."""
    try:
        gateway = await _get_gateway()
        return await call(gateway)
    except WorkflowError as e:
        return e.to_dict()
    except Exception as e:
        logger.exception(f"{command} failed")
        return {"error": True, "errorType": type(e).__name__, "message": f"{command} failed: {e}", "details": []}


@mcp.tool()
async def create_requisition(description: str, amount: Union[str, float], currency: str, vendor_id: str,
                             idempotency_key: str = None) -> dict:
    """Create a requisition; amounts of 50000 or more start in REVIEW_REQUIRED."""
    return await _run("create_requisition", lambda gateway: gateway.create_requisition(
        description, amount, currency, vendor_id, idempotency_key=idempotency_key
    ))


@mcp.tool()
async def update_requisition(requisition_id: str, description: str = None,
                             amount: Optional[Union[str, float]] = None,
                             currency: str = None, vendor_id: str = None) -> dict:
    """Edit the data fields of an open requisition."""
    changes = {
        "description": description,
        "amount": amount,
        "currency": currency,
        "vendor_id": vendor_id,
    }
    return await _run("update_requisition", lambda gateway: gateway.update_requisition(requisition_id, **changes))


@mcp.tool()
async def approve(requisition_id: str) -> dict:
    """Approve a PENDING or REVIEW_REQUIRED requisition; repeat calls are no-ops."""
    return await _run("approve", lambda gateway: gateway.approve(requisition_id))


@mcp.tool()
async def bulk_review(threshold_amount: Union[str, float]) -> dict:
    """Move every PENDING requisition at or above the threshold to REVIEW_REQUIRED."""
    return await _run("bulk_review", lambda gateway: gateway.bulk_review(threshold_amount))


@mcp.tool()
async def fetch_vendor_risk(vendor_id: str = None, requisition_id: str = None,
                            require_fresh: bool = False) -> dict:
    """Look up vendor risk; a HIGH level rejects the associated open requisitions."""
    return await _run("fetch_vendor_risk", lambda gateway: gateway.fetch_vendor_risk(
        vendor_id=vendor_id, requisition_id=requisition_id, require_fresh=require_fresh
    ))


@mcp.tool()
async def risk_reject(requisition_id: str, reason: str) -> dict:
    """Reject an open requisition for risk, recording the reason."""
    return await _run("risk_reject", lambda gateway: gateway.risk_reject(requisition_id, reason))


@mcp.tool()
async def get_requisition(requisition_id: str) -> dict:
    """Return a requisition with its transition history."""
    return await _run("get_requisition", lambda gateway: gateway.get_requisition(requisition_id))


@mcp.tool()
async def list_requisitions(status: str = None, vendor_id: str = None) -> dict:
    """List requisitions, optionally by approval status and vendor."""
    return await _run("list_requisitions", lambda gateway: gateway.list_requisitions(status=status, vendor_id=vendor_id))


@mcp.tool()
async def diagnostics() -> dict:
    """Store type, status counts and configured timeouts."""
    return await _run("diagnostics", lambda gateway: gateway.diagnostics())

if __name__ == "__main__":
    mcp.run(transport="stdio")
