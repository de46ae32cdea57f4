"""
Configuration package.

Re-exports
----------
WorkflowConfig : settings for the workflow process, built with ``WorkflowConfig.from_env()``
"""

from .workflow_config import WorkflowConfig  # noqa: F401

__all__: list[str] = ["WorkflowConfig"]
