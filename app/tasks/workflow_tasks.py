"""
Celery entry point for the CV extraction workflow.

The task only carries a run id. All progress lives in the database, so a
redelivered or re-dispatched task resumes the run from its last checkpoint.
"""

import logging
from app.core.celery_app import celery_app
from app.core.database import SessionLocal
from app.core.storage import get_storage
from app.services.extraction import get_extraction_service
from app.workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)


def build_engine() -> WorkflowEngine:
    return WorkflowEngine(SessionLocal, get_storage(), get_extraction_service())


@celery_app.task(name="app.tasks.workflow_tasks.run_candidate_workflow_task", bind=True)
def run_candidate_workflow_task(self, run_id: str):
    """
    Execute or resume one workflow run.

    Args:
        self: Celery task instance (when bind=True)
        run_id: The workflow run (instance) id

    Returns:
        dict: run id and the state the run ended in
    """
    logger.info(f"[Task {self.request.id}] Executing workflow run {run_id}")

    state = build_engine().execute(run_id)

    if state is None:
        logger.info(f"[Task {self.request.id}] Run {run_id} was not executed by this worker")
        return {"run_id": run_id, "state": None}

    logger.info(f"[Task {self.request.id}] Run {run_id} finished as {state.value}")
    return {"run_id": run_id, "state": state.value}
