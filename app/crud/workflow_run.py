"""
CRUD operations for workflow runs and their checkpoints.

A run is "live" while its active_key holds the candidate id. The unique
constraint on active_key is what guarantees at most one live run per
candidate, even when two processes race to start one.
"""

import logging
import uuid
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.core.database import utcnow
from app.core.exceptions import RunOwnershipLostError
from app.models.workflow_run import TERMINAL_STATES, WorkflowCheckpoint, WorkflowRun, WorkflowState

logger = logging.getLogger(__name__)


def get_by_id(db: Session, run_id: str) -> Optional[WorkflowRun]:
    return db.query(WorkflowRun).filter(WorkflowRun.id == run_id).first()


def get_active_for_candidate(db: Session, candidate_id: str) -> Optional[WorkflowRun]:
    return db.query(WorkflowRun).filter(WorkflowRun.active_key == candidate_id).first()


def get_stale_live(db: Session, stale_after_seconds: int) -> List[WorkflowRun]:
    """
    Find live runs whose heartbeat is older than stale_after_seconds.

    Args:
        db: Database session
        stale_after_seconds: Heartbeat age after which the owner is presumed dead

    Returns:
        List of stale runs, oldest heartbeat first
    """
    cutoff = utcnow() - timedelta(seconds=stale_after_seconds)
    return (
        db.query(WorkflowRun)
        .filter(
            WorkflowRun.active_key.isnot(None),
            WorkflowRun.state.notin_(TERMINAL_STATES),
            WorkflowRun.heartbeat_at < cutoff,
        )
        .order_by(WorkflowRun.heartbeat_at)
        .all()
    )


def start(db: Session, candidate_id: str, file_name: str) -> Tuple[WorkflowRun, bool]:
    """
    Create a queued run for a candidate unless a live one already exists.

    Flushes but does not commit. If another process inserted a live run
    between the lookup and the flush, the unique violation rolls the session
    back and the winner's run is returned.

    Returns:
        (run, created) where created is False when an existing live run was returned
    """
    existing = get_active_for_candidate(db, candidate_id)
    if existing:
        return existing, False

    now = utcnow()
    run = WorkflowRun(
        id=str(uuid.uuid4()),
        candidate_id=candidate_id,
        file_name=file_name,
        state=WorkflowState.QUEUED,
        active_key=candidate_id,
        attempts=0,
        created_at=now,
        heartbeat_at=now,
    )
    db.add(run)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = get_active_for_candidate(db, candidate_id)
        if existing is None:
            raise
        logger.info(f"Run {existing.id} already live for candidate {candidate_id}")
        return existing, False
    return run, True


def claim(db: Session, run_id: str, state: WorkflowState, stale_after_seconds: int) -> Optional[int]:
    """
    Take ownership of a run for execution and commit.

    Succeeds only if the run is queued, or live with a heartbeat older than
    stale_after_seconds (its previous owner is presumed dead). Every claim
    bumps `attempts`, and the new value is the owner's fencing token: the
    guarded writes below only apply while it still matches.

    Returns:
        The fencing token, or None if the run could not be claimed
    """
    now = utcnow()
    cutoff = now - timedelta(seconds=stale_after_seconds)
    claimed = (
        db.query(WorkflowRun)
        .filter(
            WorkflowRun.id == run_id,
            or_(
                WorkflowRun.state == WorkflowState.QUEUED,
                and_(
                    WorkflowRun.state.notin_(TERMINAL_STATES),
                    WorkflowRun.heartbeat_at < cutoff,
                ),
            ),
        )
        .update(
            {
                WorkflowRun.state: state,
                WorkflowRun.heartbeat_at: now,
                WorkflowRun.attempts: WorkflowRun.attempts + 1,
            },
            synchronize_session=False,
        )
    )
    token = None
    if claimed == 1:
        # Read inside the claiming transaction, while the row is still ours
        token = db.query(WorkflowRun.attempts).filter(WorkflowRun.id == run_id).scalar()
    db.commit()
    return token


def requeue_if_stale(db: Session, run_id: str, stale_after_seconds: int) -> bool:
    """
    Put a live run with an expired heartbeat back into QUEUED and commit.

    Only one caller can win for a given heartbeat, so concurrent rescans
    dispatch a stale run at most once.
    """
    now = utcnow()
    cutoff = now - timedelta(seconds=stale_after_seconds)
    requeued = (
        db.query(WorkflowRun)
        .filter(
            WorkflowRun.id == run_id,
            WorkflowRun.state.notin_(TERMINAL_STATES),
            WorkflowRun.heartbeat_at < cutoff,
        )
        .update(
            {WorkflowRun.state: WorkflowState.QUEUED, WorkflowRun.heartbeat_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    return requeued == 1


def _update_owned(db: Session, run_id: str, token: int, values: dict) -> None:
    """
    Apply values to a run only while the caller still owns it.

    Raises:
        RunOwnershipLostError: the run was claimed again or is already terminal
    """
    updated = (
        db.query(WorkflowRun)
        .filter(
            WorkflowRun.id == run_id,
            WorkflowRun.attempts == token,
            WorkflowRun.state.notin_(TERMINAL_STATES),
        )
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise RunOwnershipLostError(f"Run {run_id} is no longer owned by claim {token}")


def touch(db: Session, run_id: str, token: int) -> None:
    """Refresh the heartbeat of an owned run, without committing."""
    _update_owned(db, run_id, token, {WorkflowRun.heartbeat_at: utcnow()})


def set_state(db: Session, run_id: str, token: int, state: WorkflowState) -> None:
    """Advance an owned run and refresh its heartbeat, without committing."""
    _update_owned(db, run_id, token, {WorkflowRun.state: state, WorkflowRun.heartbeat_at: utcnow()})


def finish(
    db: Session,
    run_id: str,
    token: int,
    state: WorkflowState,
    error_message: Optional[str] = None,
) -> None:
    """Move an owned run to a terminal state and release its run-identity key, without committing."""
    now = utcnow()
    _update_owned(
        db,
        run_id,
        token,
        {
            WorkflowRun.state: state,
            WorkflowRun.error_message: error_message,
            WorkflowRun.active_key: None,
            WorkflowRun.heartbeat_at: now,
            WorkflowRun.finished_at: now,
        },
    )


def get_checkpoints(db: Session, run_id: str) -> Dict[str, dict]:
    """Checkpoint results of a run keyed by step name."""
    run = get_by_id(db, run_id)
    if run is None:
        return {}
    return {checkpoint.step: checkpoint.result for checkpoint in run.checkpoints}


def record_checkpoint(db: Session, run_id: str, step: str, result: Optional[dict]) -> WorkflowCheckpoint:
    """Insert or overwrite the checkpoint of one step, without committing."""
    checkpoint = (
        db.query(WorkflowCheckpoint)
        .filter(WorkflowCheckpoint.run_id == run_id, WorkflowCheckpoint.step == step)
        .first()
    )
    if checkpoint:
        checkpoint.result = result
        checkpoint.created_at = utcnow()
    else:
        checkpoint = WorkflowCheckpoint(run_id=run_id, step=step, result=result, created_at=utcnow())
        db.add(checkpoint)
    db.flush()
    return checkpoint


def count_by_state(db: Session) -> dict:
    counts = {state.value: 0 for state in WorkflowState}
    for state, total in db.query(WorkflowRun.state, func.count(WorkflowRun.id)).group_by(WorkflowRun.state).all():
        counts[state.value] = total
    return counts
