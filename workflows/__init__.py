"""
Workflow package.

Exposes
-------
RequisitionPipeline  : ordered creation stages (validate -> derive -> persist)
ApprovalStateMachine : guarded status transitions
CommandGateway       : named commands with a latency ceiling
"""

from .requisition_pipeline import RequisitionPipeline      # noqa: F401
from .approval_state_machine import ApprovalStateMachine   # noqa: F401
from .command_gateway import CommandGateway                # noqa: F401

__all__: list[str] = ["RequisitionPipeline", "ApprovalStateMachine", "CommandGateway"]
