"""Vendor risk scoring MCP server."""
import sys, pathlib
root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path: sys.path.insert(0, str(root))

import asyncio
import logging
import os
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from utils.helpers import DataManager
from utils.risk_client import level_for_score

# Initialize MCP server
mcp = FastMCP("VendorRiskService")
logger = logging.getLogger(__name__)

# Load vendor performance history
DATA_PATH = os.getenv("VENDOR_RISK_DATA_PATH", "data/vendor_risk.json")
VENDORS = DataManager.load_json_data(DATA_PATH)

# Artificial latency for exercising the caller's timeout
RESPONSE_DELAY_MS = int(os.getenv("RISK_SERVER_DELAY_MS", "0"))


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def compute_vendor_risk(vendor_id: str, metrics: Dict[str, Any]) -> Dict[str, Any]:
    """
    Risk 0..100 is the complement of a weighted performance score:

      • Delivery fulfillment ratio.......... 35%
      • On-time delivery rate............... 25%
      • Quality OK rate..................... 20%
      • Invoice rejection rate.............. 10% (penalty)
      • Payment failure rate................ 10% (penalty)
    """
    fulfillment = _clamp(float(metrics.get("fulfillment_ratio", 1.0)), 0.0, 1.0)
    ontime_rate = _clamp(float(metrics.get("ontime_rate", 1.0)), 0.0, 1.0)
    quality_rate = _clamp(float(metrics.get("quality_ok_rate", 1.0)), 0.0, 1.0)
    inv_rej_rate = _clamp(float(metrics.get("invoice_rejection_rate", 0.0)), 0.0, 1.0)
    pay_fail_rate = _clamp(float(metrics.get("payment_failure_rate", 0.0)), 0.0, 1.0)

    performance = (
        35.0 * fulfillment +
        25.0 * ontime_rate +
        20.0 * quality_rate +
        10.0 * (1.0 - inv_rej_rate) +
        10.0 * (1.0 - pay_fail_rate)
    )
    risk_score = int(round(_clamp(100.0 - performance, 0.0, 100.0)))

    return {
        "vendor_id": vendor_id,
        "risk_score": risk_score,
        "level": level_for_score(risk_score).value,
        "metrics": {
            "fulfillment_ratio": round(fulfillment, 3),
            "ontime_rate": round(ontime_rate, 3),
            "quality_ok_rate": round(quality_rate, 3),
            "invoice_rejection_rate": round(inv_rej_rate, 3),
            "payment_failure_rate": round(pay_fail_rate, 3),
        },
    }


@mcp.tool()
async def score_vendor(vendor_id: str) -> dict:
    """Score a vendor's risk 0..100 from its delivery and payment history."""
    if RESPONSE_DELAY_MS:
        await asyncio.sleep(RESPONSE_DELAY_MS / 1000.0)

    vid = (vendor_id or "").strip()
    if not vid:
        return {"error": True, "message": "vendor_id is required"}

    vendor = VENDORS.get(vid)
    if not vendor:
        return {"error": True, "message": f"Vendor {vid} has no risk history"}

    try:
        result = compute_vendor_risk(vid, vendor.get("metrics", {}))
    except (TypeError, ValueError) as e:
        logger.exception("score_vendor failed")
        return {"error": True, "message": f"score_vendor failed: {e}"}
    result["name"] = vendor.get("name", vid)
    return result


if __name__ == "__main__":
    mcp.run(transport="stdio")
