"""
Workflow endpoints: run status lookup and the rescan trigger.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.exceptions import NotFoundError, PersistenceError, ValidationError
from app.crud import workflow_run as run_crud
from app.schemas.workflow import RescanResponse
from app.services.rescan import rescan

router = APIRouter(tags=["Workflows"])
logger = logging.getLogger(__name__)


@router.post("/rescan", response_model=RescanResponse)
def rescan_candidates(db: Session = Depends(get_db)):
    """
    Restart processing for every candidate whose CV is pending, failed or
    still unsummarized. Runs are queued in the background; returns how many.
    """
    try:
        count = rescan(db)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Rescan failed: {e}")
        raise PersistenceError("Candidate store unavailable") from e

    if count == 0:
        return RescanResponse(message="No CVs need processing", count=0)
    return RescanResponse(message=f"Processing {count} CVs", count=count)


@router.get("/workflow-status", response_class=PlainTextResponse)
def workflow_status(
    instance_id: Optional[str] = Query(None, alias="instanceId"),
    db: Session = Depends(get_db),
):
    """Plain-text state of one workflow run, e.g. `Workflow status: grading`."""
    if not instance_id:
        raise ValidationError("Missing instanceId")

    run = run_crud.get_by_id(db, instance_id)
    if not run:
        raise NotFoundError("Workflow not found")

    status_text = f"Workflow status: {run.state.value}"
    if run.error_message:
        status_text += f" ({run.error_message})"
    return status_text
