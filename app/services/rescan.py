"""
Rescan Reconciler: restart extraction for candidates whose processing is
missing, stuck or failed.

For every candidate that is pending, failed, or still has no summary:
- no live run: start a fresh run and mark the CV processing (one commit)
- live run with a stale heartbeat: re-queue it so it resumes from its checkpoints
- live run with a fresh heartbeat: leave it alone

Live runs with a stale heartbeat are re-queued even when their candidate no
longer matches the filter above.

Scheduled runs are handed to the dispatcher without waiting. Calling this
while earlier runs are still going is safe: the run-identity key on
workflow_runs never lets a candidate have two live runs.
"""

import logging
from typing import List, Optional
from sqlalchemy.orm import Session
from app.core import celery_utils
from app.core.config import settings
from app.crud import candidate as candidate_crud
from app.crud import workflow_run as run_crud
from app.models.candidate import FileStatus

logger = logging.getLogger(__name__)


def schedule_rescan(db: Session, stale_after_seconds: Optional[int] = None) -> List[str]:
    """
    Find candidates needing processing and prepare runs for them.

    Returns:
        Ids of the runs that should be dispatched
    """
    stale_after = settings.WORKFLOW_STALE_AFTER_SECONDS if stale_after_seconds is None else stale_after_seconds
    candidates = candidate_crud.get_needing_processing(db)
    # Detach from the ORM objects; start() may roll the session back
    targets = [(candidate.id, candidate.file_name) for candidate in candidates]

    run_ids = []
    for candidate_id, file_name in targets:
        run, created = run_crud.start(db, candidate_id, file_name)
        if created:
            candidate_crud.update_pipeline_fields(
                db,
                candidate_id,
                file_status=FileStatus.PROCESSING,
                error_message=None,
            )
            db.commit()
            logger.info(f"Rescan started run {run.id} for candidate {candidate_id}")
            run_ids.append(run.id)
            continue

        run_id = run.id
        db.commit()
        if run_crud.requeue_if_stale(db, run_id, stale_after):
            logger.warning(f"Rescan re-queued stale run {run_id} for candidate {candidate_id}")
            run_ids.append(run_id)
        else:
            logger.debug(f"Candidate {candidate_id} already has live run {run_id}")

    # Runs that died after writing a summary no longer match the candidate filter
    handled = {candidate_id for candidate_id, _ in targets}
    stale_runs = [
        run.id for run in run_crud.get_stale_live(db, stale_after)
        if run.candidate_id not in handled
    ]
    db.commit()
    for run_id in stale_runs:
        if run_crud.requeue_if_stale(db, run_id, stale_after):
            logger.warning(f"Rescan re-queued stale run {run_id}")
            run_ids.append(run_id)

    return run_ids


def rescan(db: Session, stale_after_seconds: Optional[int] = None) -> int:
    """
    Schedule and dispatch runs for every candidate needing processing.

    Returns:
        Number of runs scheduled
    """
    run_ids = schedule_rescan(db, stale_after_seconds)
    celery_utils.dispatch_workflow_runs(run_ids)
    logger.info(f"Rescan scheduled {len(run_ids)} workflow runs")
    return len(run_ids)
