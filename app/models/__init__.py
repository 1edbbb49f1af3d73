"""
Database models package.
"""

from app.models.candidate import Candidate, CandidateStatus, Decision, FileStatus
from app.models.workflow_run import WorkflowRun, WorkflowCheckpoint, WorkflowState

__all__ = [
    "Candidate",
    "CandidateStatus",
    "Decision",
    "FileStatus",
    "WorkflowRun",
    "WorkflowCheckpoint",
    "WorkflowState",
]
