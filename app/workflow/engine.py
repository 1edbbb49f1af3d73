"""
Durable, resumable CV extraction workflow.

A run walks four steps for one candidate:

    retrieve -> summarize -> grade -> finalize

Each step does its external work first (blob read, LLM call), then writes its
side effect on the candidate and its checkpoint row in a single transaction.
On resume the engine loads the checkpoints and starts at the first step that
has none, so finished steps never run twice. Side effects are plain field
overwrites, so replaying a step whose checkpoint was lost is harmless.

Transient errors are retried with exponential backoff up to a fixed number of
attempts per step. Fatal errors, exhausted retries and unexpected exceptions
end the run in FAILED with `cv.file_status = failed` and the reason recorded.
Nothing is raised to the caller.

A claim hands the worker a fencing token (the run's new `attempts` value).
All later writes are conditional on it, so a worker whose run was taken over
after a stale heartbeat stops without touching the run or the candidate.
"""

import hashlib
import logging
import time
from typing import Callable, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from app.core.config import settings
from app.core.exceptions import FatalProcessingError, RunOwnershipLostError, TransientProcessingError
from app.core.storage import StorageBackend, StorageError, blob_key
from app.crud import candidate as candidate_crud
from app.crud import workflow_run as run_crud
from app.models.candidate import Decision, FileStatus
from app.models.workflow_run import WorkflowRun, WorkflowState
from app.services.document_text import DocumentTextError, extract_text
from app.services.extraction import ExtractionService
from app.services.grading import aggregate_decision

logger = logging.getLogger(__name__)

STEPS = ("retrieve", "summarize", "grade", "finalize")

STEP_STATES = {
    "retrieve": WorkflowState.RETRIEVING,
    "summarize": WorkflowState.SUMMARIZING,
    "grade": WorkflowState.GRADING,
    "finalize": WorkflowState.FINALIZING,
}


class WorkflowEngine:
    """
    Executes workflow runs against the Candidate Store and Blob Store.

    The engine holds no per-run state between calls; everything it needs to
    resume lives in the workflow_runs and workflow_checkpoints tables.

    Args:
        session_factory: callable returning a new SQLAlchemy session
        storage: blob store holding the uploaded documents
        extractor: summary/grading service
        max_attempts: attempts per step before the run fails
        backoff_base: delay before the second attempt, doubled each retry
        backoff_max: upper bound for a single delay
        stale_after_seconds: heartbeat age after which a live run may be taken over
        sleep: delay function, replaceable in tests
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        storage: StorageBackend,
        extractor: ExtractionService,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        stale_after_seconds: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.extractor = extractor
        self.max_attempts = max_attempts or settings.WORKFLOW_MAX_ATTEMPTS
        self.backoff_base = settings.WORKFLOW_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        self.backoff_max = settings.WORKFLOW_BACKOFF_MAX_SECONDS if backoff_max is None else backoff_max
        self.stale_after_seconds = (
            settings.WORKFLOW_STALE_AFTER_SECONDS if stale_after_seconds is None else stale_after_seconds
        )
        self.sleep = sleep

        self._steps = {
            "retrieve": self._retrieve,
            "summarize": self._summarize,
            "grade": self._grade,
            "finalize": self._finalize,
        }
        self._side_effects = {
            "retrieve": self._apply_retrieve,
            "summarize": self._apply_summarize,
            "grade": self._apply_grade,
            "finalize": self._apply_finalize,
        }

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    # ------------------------------------------------------------------
    # Run execution
    # ------------------------------------------------------------------

    def execute(self, run_id: str) -> Optional[WorkflowState]:
        """
        Execute (or resume) one run to a terminal state.

        Every write the engine makes is fenced by the token returned from the
        claim. If another worker takes the run over, or it is already
        terminal, this worker stops without touching the run or candidate.

        Returns:
            The final state, or None if the run is unknown or owned by another worker
        """
        db = self.session_factory()
        run = None
        token = None
        try:
            run = run_crud.get_by_id(db, run_id)
            if not run:
                logger.error(f"[Run {run_id}] Workflow run not found")
                return None
            if run.is_terminal:
                logger.info(f"[Run {run_id}] Already {run.state.value}, nothing to do")
                return run.state

            checkpoints = run_crud.get_checkpoints(db, run_id)
            pending = [step for step in STEPS if step not in checkpoints]
            first_state = STEP_STATES[pending[0]] if pending else WorkflowState.FINALIZING

            token = run_crud.claim(db, run_id, first_state, self.stale_after_seconds)
            if token is None:
                logger.info(f"[Run {run_id}] Run is owned by another worker, skipping")
                return None
            db.refresh(run)

            if checkpoints:
                logger.info(
                    f"[Run {run_id}] Resuming candidate {run.candidate_id} after {', '.join(sorted(checkpoints))}",
                    extra={"run_id": run_id, "candidate_id": run.candidate_id},
                )
            else:
                logger.info(
                    f"[Run {run_id}] Starting pipeline for candidate {run.candidate_id}",
                    extra={"run_id": run_id, "candidate_id": run.candidate_id},
                )

            context: Dict[str, dict] = dict(checkpoints)
            for step in STEPS:
                if step in checkpoints:
                    logger.debug(f"[Run {run_id}] Step '{step}' already checkpointed, skipping")
                    continue

                run_crud.set_state(db, run_id, token, STEP_STATES[step])
                db.commit()

                try:
                    context[step] = self._run_step(db, run, token, step, context)
                except (FatalProcessingError, TransientProcessingError) as e:
                    return self._fail(db, run, token, f"{step}: {e.message}")

            logger.info(f"[Run {run_id}] Pipeline completed for candidate {run.candidate_id}")
            return WorkflowState.COMPLETED

        except RunOwnershipLostError as e:
            db.rollback()
            logger.warning(f"[Run {run_id}] Stopping: {e.message}")
            return None

        except Exception as e:
            logger.error(f"[Run {run_id}] Unexpected error: {e}", exc_info=True)
            if token is not None:
                db.rollback()
                return self._fail(db, run, token, f"Unexpected error: {e}")
            raise

        finally:
            db.close()

    def _run_step(self, db: Session, run: WorkflowRun, token: int, step: str, context: Dict[str, dict]) -> dict:
        """Run one step with retries; returns its checkpointed result."""
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                run_crud.touch(db, run.id, token)
                db.commit()
            try:
                result = self._steps[step](run, context)
                self._checkpoint(db, run, token, step, result)
                logger.info(f"[Run {run.id}] Step '{step}' checkpointed (attempt {attempt})")
                return result

            except TransientProcessingError as e:
                db.rollback()
                if attempt == self.max_attempts:
                    logger.error(f"[Run {run.id}] Step '{step}' failed after {attempt} attempts: {e.message}")
                    raise TransientProcessingError(
                        f"{e.message} (gave up after {attempt} attempts)"
                    ) from e

                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"[Run {run.id}] Step '{step}' attempt {attempt}/{self.max_attempts} failed: {e.message}. "
                    f"Retrying in {delay:.1f}s"
                )
                self.sleep(delay)

            except FatalProcessingError as e:
                db.rollback()
                logger.error(f"[Run {run.id}] Step '{step}' failed permanently: {e.message}")
                raise

        raise TransientProcessingError(f"Step '{step}' made no attempts")

    def _checkpoint(self, db: Session, run: WorkflowRun, token: int, step: str, result: dict) -> None:
        """Write the step's side effect and checkpoint in one transaction."""
        try:
            # Also refreshes the heartbeat; raises if the run changed hands
            run_crud.touch(db, run.id, token)
            self._side_effects[step](db, run, result)
            run_crud.record_checkpoint(db, run.id, step, result)
            if step == STEPS[-1]:
                run_crud.finish(db, run.id, token, WorkflowState.COMPLETED)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise TransientProcessingError(f"Could not record checkpoint: {e}") from e

    def _fail(self, db: Session, run: WorkflowRun, token: int, reason: str) -> Optional[WorkflowState]:
        """
        Record a failed run and mark the candidate's CV as failed.

        Returns FAILED, or None if the run is no longer ours to fail.
        """
        try:
            run_crud.finish(db, run.id, token, WorkflowState.FAILED, error_message=reason)
        except RunOwnershipLostError as e:
            db.rollback()
            logger.warning(f"[Run {run.id}] Not recording failure '{reason}': {e.message}")
            return None
        candidate_crud.update_pipeline_fields(
            db,
            run.candidate_id,
            file_status=FileStatus.FAILED,
            error_message=reason,
        )
        db.commit()
        logger.warning(
            f"[Run {run.id}] Candidate {run.candidate_id} marked failed: {reason}",
            extra={"run_id": run.id, "candidate_id": run.candidate_id},
        )
        return WorkflowState.FAILED

    # ------------------------------------------------------------------
    # Steps: external work only, no database writes
    # ------------------------------------------------------------------

    def _retrieve(self, run: WorkflowRun, context: Dict[str, dict]) -> dict:
        key = blob_key(run.candidate_id, run.file_name)
        try:
            data = self.storage.get(key)
        except StorageError as e:
            raise TransientProcessingError(str(e)) from e
        if data is None:
            raise FatalProcessingError(f"CV not found in storage at {key}")

        try:
            text = extract_text(run.file_name, data)
        except DocumentTextError as e:
            raise FatalProcessingError(str(e)) from e

        return {
            "text": text,
            "file_hash": hashlib.sha256(data).hexdigest(),
            "size": len(data),
        }

    def _summarize(self, run: WorkflowRun, context: Dict[str, dict]) -> dict:
        summary = self.extractor.summarize(context["retrieve"]["text"])
        if not summary or not summary.strip():
            raise TransientProcessingError("Extraction service returned an empty summary")
        return {"summary": summary.strip()}

    def _grade(self, run: WorkflowRun, context: Dict[str, dict]) -> dict:
        evals = self.extractor.grade(context["retrieve"]["text"])
        if not evals:
            raise TransientProcessingError("Extraction service returned no evaluations")
        return {"grades_eval": evals, "ai_decision": aggregate_decision(evals).value}

    def _finalize(self, run: WorkflowRun, context: Dict[str, dict]) -> dict:
        return {"file_status": FileStatus.COMPLETED.value}

    # ------------------------------------------------------------------
    # Side effects: idempotent overwrites, committed with the checkpoint
    # ------------------------------------------------------------------

    def _apply_retrieve(self, db: Session, run: WorkflowRun, result: dict) -> None:
        # Reading the blob changes nothing on the candidate
        pass

    def _apply_summarize(self, db: Session, run: WorkflowRun, result: dict) -> None:
        candidate_crud.update_pipeline_fields(db, run.candidate_id, summary=result["summary"])

    def _apply_grade(self, db: Session, run: WorkflowRun, result: dict) -> None:
        candidate_crud.update_pipeline_fields(
            db,
            run.candidate_id,
            grades_eval=result["grades_eval"],
            ai_decision=Decision(result["ai_decision"]),
        )

    def _apply_finalize(self, db: Session, run: WorkflowRun, result: dict) -> None:
        candidate_crud.update_pipeline_fields(
            db,
            run.candidate_id,
            file_status=FileStatus.COMPLETED,
            error_message=None,
        )
