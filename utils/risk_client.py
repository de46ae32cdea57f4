"""Vendor risk enrichment with a bounded-latency call to the scoring service."""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from langchain_mcp_adapters.client import MultiServerMCPClient

from utils.errors import ExternalServiceError

logger = logging.getLogger(__name__)

FRESH = "fresh"
STALE_UNKNOWN = "stale/unknown"

HIGH_RISK_SCORE = 70
NORMAL_RISK_SCORE = 40


class RiskLevel(str, Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


def level_for_score(score: int) -> RiskLevel:
    if score >= HIGH_RISK_SCORE:
        return RiskLevel.HIGH
    if score >= NORMAL_RISK_SCORE:
        return RiskLevel.NORMAL
    return RiskLevel.LOW


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of one lookup; degraded results carry no score or level."""

    vendor_id: str
    risk_score: Optional[int]
    level: Optional[RiskLevel]
    status: str = FRESH

    @property
    def degraded(self) -> bool:
        return self.status != FRESH

    @property
    def is_high_risk(self) -> bool:
        return not self.degraded and self.level == RiskLevel.HIGH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendorId": self.vendor_id,
            "riskScore": self.risk_score,
            "level": self.level.value if self.level else None,
            "status": self.status,
        }


class RiskScoringService(ABC):
    """External collaborator that scores a vendor."""

    @abstractmethod
    async def score_vendor(self, vendor_id: str) -> Dict[str, Any]:
        """Return at least ``risk_score``; ``level`` is optional."""


class McpRiskScoringService(RiskScoringService):
    """Calls the ``score_vendor`` tool on the vendor risk MCP server."""

    TOOL_NAME = "score_vendor"

    def __init__(self, mcp_client: MultiServerMCPClient, server_name: str = "risk"):
        self.mcp_client = mcp_client
        self.server_name = server_name

    async def get_tools_safe(self) -> Dict[str, Any]:
        """Get tools from the MCP server keyed by tool name."""
        tools = await self.mcp_client.get_tools(server_name=self.server_name)
        logger.debug(f"Raw tools from {self.server_name}: {type(tools)}")
        if isinstance(tools, dict):
            return tools
        tool_dict = {}
        for tool in tools or []:
            if hasattr(tool, 'name'):
                tool_dict[tool.name] = tool
            elif hasattr(tool, '__name__'):
                tool_dict[tool.__name__] = tool
        return tool_dict

    @staticmethod
    def _handle_tool_response(response, tool_name: str) -> Dict[str, Any]:
        """Handle the different shapes MCP tool results arrive in."""
        if isinstance(response, str):
            try:
                return json.loads(response)
            except (json.JSONDecodeError, ValueError):
                logger.warning(f"{tool_name} returned unparseable string response: {response}")
                return {"error": True, "message": response}
        if isinstance(response, dict):
            return response
        if isinstance(response, (list, tuple)) and len(response) > 0:
            first = response[0]
            if isinstance(first, dict) and "text" in first:
                return McpRiskScoringService._handle_tool_response(first["text"], tool_name)
            if hasattr(first, "text"):
                return McpRiskScoringService._handle_tool_response(first.text, tool_name)
            return first if isinstance(first, dict) else {"error": True, "message": str(response)}
        logger.warning(f"{tool_name} returned unexpected response type: {type(response)}")
        return {"error": True, "message": f"Unexpected response type: {type(response)}"}

    async def score_vendor(self, vendor_id: str) -> Dict[str, Any]:
        tools = await self.get_tools_safe()
        tool = tools.get(self.TOOL_NAME)
        if tool is None:
            raise ExternalServiceError(
                f"Tool {self.TOOL_NAME} not found on {self.server_name}. Available: {list(tools.keys())}"
            )
        raw = await tool.ainvoke({"vendor_id": vendor_id})
        result = self._handle_tool_response(raw, self.TOOL_NAME)
        if result.get("error", False):
            raise ExternalServiceError(result.get("message", "Risk service error"))
        return result


class RiskEnrichmentClient:
    """Looks up vendor risk within a fixed time budget.

    A slow or failing collaborator yields a degraded ``stale/unknown`` result,
    unless the caller requires a fresh one, in which case ExternalServiceError
    is raised. Nothing is cached between calls.
    """

    def __init__(self, service: RiskScoringService, timeout_seconds: float = 0.8):
        self.service = service
        self.timeout_seconds = timeout_seconds

    async def fetch_risk(self, vendor_id: str, require_fresh: bool = False) -> RiskAssessment:
        try:
            raw = await asyncio.wait_for(
                self.service.score_vendor(vendor_id), timeout=self.timeout_seconds
            )
            assessment = self._normalize(vendor_id, raw)
        except asyncio.TimeoutError:
            failure = f"timed out after {int(self.timeout_seconds * 1000)}ms"
        except Exception as e:
            failure = str(e) or type(e).__name__
        else:
            logger.info(
                f"Vendor {vendor_id} risk {assessment.risk_score} ({assessment.level.value})"
            )
            return assessment

        if require_fresh:
            logger.error(f"Risk lookup for vendor {vendor_id} failed: {failure}")
            raise ExternalServiceError(f"Risk lookup for vendor {vendor_id} failed: {failure}")
        logger.warning(f"Risk lookup for vendor {vendor_id} degraded: {failure}")
        return RiskAssessment(vendor_id=vendor_id, risk_score=None, level=None, status=STALE_UNKNOWN)

    @staticmethod
    def _normalize(vendor_id: str, raw: Dict[str, Any]) -> RiskAssessment:
        if not isinstance(raw, dict) or raw.get("error", False):
            raise ExternalServiceError(f"Malformed risk response: {raw}")
        try:
            score = float(raw["risk_score"])
        except (KeyError, TypeError, ValueError):
            raise ExternalServiceError(f"Risk response without a numeric risk_score: {raw}")
        if score != score:
            raise ExternalServiceError("Risk response carried NaN risk_score")
        score = int(round(max(0.0, min(100.0, score))))

        level = raw.get("level")
        try:
            level = RiskLevel(str(level).upper()) if level else level_for_score(score)
        except ValueError:
            raise ExternalServiceError(f"Unknown risk level: {level}")
        return RiskAssessment(vendor_id=vendor_id, risk_score=score, level=level)
