"""Main application entry point for the requisition approval workflow."""
import asyncio
import logging
from typing import Dict, Any, Optional

from config.workflow_config import WorkflowConfig
from database.requisition_store import InMemoryRequisitionStore, RequisitionStore
from mcp_servers import get_local_mcp_client
from utils.errors import WorkflowError
from utils.helpers import DataManager, format_currency
from utils.risk_client import McpRiskScoringService, RiskEnrichmentClient, RiskScoringService
from utils.validation import HIGH_VALUE_THRESHOLD
from workflows.approval_state_machine import ApprovalStateMachine
from workflows.command_gateway import CommandGateway
from workflows.requisition_pipeline import RequisitionPipeline

logger = logging.getLogger(__name__)

SAMPLE_DATA_PATH = "data/sample_requisitions.json"


def configure_logging(config: WorkflowConfig) -> None:
    """Send log records to the configured file and to stderr."""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler()
        ]
    )


class RequisitionApp:
    """Builds the workflow components once and runs commands through them."""

    def __init__(
        self,
        config: Optional[WorkflowConfig] = None,
        store: Optional[RequisitionStore] = None,
        risk_service: Optional[RiskScoringService] = None,
    ):
        self.config = config or WorkflowConfig.from_env()
        self.store = store
        self.risk_service = risk_service
        self.gateway: Optional[CommandGateway] = None
        self.is_initialized = False

    def _build_store(self) -> RequisitionStore:
        if self.config.store_backend == "mssql":
            # pymssql is only needed when the SQL Server backend is selected
            from database.db_operations import DatabaseManager, SqlRequisitionStore
            return SqlRequisitionStore(DatabaseManager.from_config(self.config))
        return InMemoryRequisitionStore()

    async def initialize(self):
        """Initialize the application components."""
        try:
            logger.info("Initializing requisition workflow...")

            if not self.config.is_configured:
                raise ValueError(
                    f"Store backend '{self.config.store_backend}' is not configured"
                )

            if self.store is None:
                self.store = self._build_store()
            if self.risk_service is None:
                self.risk_service = McpRiskScoringService(
                    get_local_mcp_client(self.config.mcp_config_path),
                    server_name=self.config.risk_server_name,
                )

            self.gateway = CommandGateway(
                store=self.store,
                pipeline=RequisitionPipeline(self.store),
                state_machine=ApprovalStateMachine(self.store),
                risk_client=RiskEnrichmentClient(
                    self.risk_service, timeout_seconds=self.config.risk_timeout_seconds
                ),
                command_timeout_seconds=self.config.command_timeout_seconds,
            )

            self.is_initialized = True
            logger.info(f"Requisition workflow initialized with {type(self.store).__name__}")

        except Exception as e:
            logger.error(f"Failed to initialize application: {e}")
            raise

    async def process_requisition(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Create one requisition and enrich it with the vendor's risk."""
        if not self.is_initialized:
            await self.initialize()

        logger.info(f"Processing requisition for vendor {request.get('vendor_id', 'Unknown')}")

        try:
            requisition = await self.gateway.create_requisition(
                description=request.get("description"),
                amount=request.get("amount"),
                currency=request.get("currency"),
                vendor_id=request.get("vendor_id"),
                idempotency_key=request.get("idempotency_key"),
            )
            risk = await self.gateway.fetch_vendor_risk(requisition_id=requisition["id"])
            current = await self.gateway.get_requisition(requisition["id"])
            return {"requisition": current, "risk": risk, "errors": []}

        except WorkflowError as e:
            return {"requisition": None, "risk": None, "errors": [e.to_dict()]}

    def print_processing_summary(self, result: Dict[str, Any]):
        """Print a formatted summary of the processing result."""
        print("\n" + "=" * 60)
        print("REQUISITION PROCESSING SUMMARY")
        print("=" * 60)

        requisition = result.get("requisition")
        if requisition:
            print(f"Requisition:  {requisition['id']}")
            print(f"Description:  {requisition['description']}")
            print(f"Vendor:       {requisition['vendorId']}")
            print(f"Amount:       {format_currency(requisition['amount'], requisition['currency'])}")
            print(f"High value:   {'YES' if requisition['highValueFlag'] else 'no'}")
            print(f"\nSTATUS: {requisition['approvalStatus']}")
            if requisition.get("statusReason"):
                print(f"REASON: {requisition['statusReason']}")

        risk = result.get("risk")
        if risk:
            if risk["status"] == "fresh":
                print(f"\nVendor Risk:  {risk['riskScore']} ({risk['level']})")
            else:
                print(f"\nVendor Risk:  unavailable ({risk['status']})")

        for error in result.get("errors", []):
            print(f"\nError: {error['errorType']}: {error['message']}")
            for detail in error.get("details", []):
                print(f"  - {detail.get('field')}: {detail.get('message')}")

        print("=" * 60)

    async def run_sample_scenarios(self):
        """Run the sample requisitions, then a bulk review."""
        print("Starting Requisition Workflow - Sample Mode")
        print("=" * 60)

        requests = DataManager.load_json_data(SAMPLE_DATA_PATH)
        if not requests:
            print("⚠ No sample requisitions found.")
            return

        for i, request in enumerate(requests, 1):
            print(f"\nProcessing requisition {i}/{len(requests)}")
            print("-" * 40)
            result = await self.process_requisition(request)
            self.print_processing_summary(result)

        review = await self.gateway.bulk_review(HIGH_VALUE_THRESHOLD)
        print(f"\nBulk review at {format_currency(HIGH_VALUE_THRESHOLD)}: {review['updatedCount']} moved to review")

        diagnostics = await self.gateway.diagnostics()
        print(f"Status counts: {diagnostics['statusCounts']}")

    async def close(self):
        """Clean up application resources."""
        if self.store:
            self.store.close()
        logger.info("Requisition workflow closed")


async def main():
    """Main application entry point."""
    config = WorkflowConfig.from_env()
    configure_logging(config)
    app = RequisitionApp(config)

    try:
        await app.initialize()
        await app.run_sample_scenarios()

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.error(f"Application error: {e}")
    finally:
        await app.close()


if __name__ == "__main__":
    asyncio.run(main())
