"""
Durable workflow state.

A WorkflowRun is one execution of the CV extraction pipeline for a candidate.
Each finished step leaves a WorkflowCheckpoint row; a resumed run skips every
step that already has one.
"""

import enum
import uuid
from sqlalchemy import Column, Integer, String, ForeignKey, Enum, Text, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from app.core.database import Base, utcnow
from app.models.candidate import JSONType


class WorkflowState(str, enum.Enum):
    """
    QUEUED -> RETRIEVING -> SUMMARIZING -> GRADING -> FINALIZING -> COMPLETED

    FAILED is reachable from every non-terminal state.
    """
    QUEUED = "queued"
    RETRIEVING = "retrieving"
    SUMMARIZING = "summarizing"
    GRADING = "grading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (WorkflowState.COMPLETED, WorkflowState.FAILED)


class WorkflowRun(Base):
    __tablename__ = "workflow_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    candidate_id = Column(String(36), ForeignKey("candidates.id"), nullable=False, index=True)
    file_name = Column(String, nullable=False)

    state = Column(
        Enum(WorkflowState, name="workflow_state", values_callable=lambda e: [m.value for m in e]),
        default=WorkflowState.QUEUED,
        nullable=False,
        index=True
    )

    # Run-identity key: the candidate id while the run is live, NULL once terminal.
    # The unique constraint allows any number of NULLs, so it only limits live runs.
    active_key = Column(String(36), nullable=True, unique=True)

    attempts = Column(Integer, nullable=False, default=0)  # number of claims
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    heartbeat_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    checkpoints = relationship(
        "WorkflowCheckpoint",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="WorkflowCheckpoint.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def __repr__(self):
        return f"<WorkflowRun(id={self.id}, candidate_id={self.candidate_id}, state={self.state.value})>"


class WorkflowCheckpoint(Base):
    __tablename__ = "workflow_checkpoints"
    __table_args__ = (UniqueConstraint("run_id", "step", name="uq_workflow_checkpoints_run_step"),)

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(String(36), ForeignKey("workflow_runs.id"), nullable=False, index=True)
    step = Column(String(32), nullable=False)
    result = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    run = relationship("WorkflowRun", back_populates="checkpoints")
