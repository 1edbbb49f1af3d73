"""
Durable per-candidate extraction workflow.
"""

from app.workflow.engine import STEPS, WorkflowEngine

__all__ = ["STEPS", "WorkflowEngine"]
