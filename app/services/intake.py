"""
Intake Handler: accept a CV submission, deduplicate it, persist it and start
its extraction workflow.

The candidate row, the blob and the workflow run are written inside one
database transaction that commits only after the blob put succeeded. Any
failure rolls the transaction back and removes the blob, so a failed intake
leaves nothing behind. The run is dispatched to the worker only after the
commit, and the caller never waits on it.
"""

import hashlib
import logging
import uuid
from typing import Optional, Tuple
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from app.core import celery_utils
from app.core.config import settings
from app.core.exceptions import ConflictError, PersistenceError, ValidationError
from app.core.storage import StorageBackend, StorageError, blob_key, content_type_for, safe_file_name
from app.crud import candidate as candidate_crud
from app.crud import workflow_run as run_crud
from app.models.candidate import Candidate, FileStatus
from app.models.workflow_run import WorkflowRun
from app.schemas.candidate import CandidateSubmission

logger = logging.getLogger(__name__)


def compute_fingerprint(name: str, surname: str, email: str) -> str:
    """Dedup key: sha256 over the trimmed, lower-cased identity fields."""
    normalized = "|".join(part.strip().lower() for part in (name, surname, email))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def compute_file_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _validate_submission(
    name: Optional[str],
    surname: Optional[str],
    email: Optional[str],
    phone: Optional[str],
    file_name: Optional[str],
    content: Optional[bytes],
) -> Tuple[CandidateSubmission, str]:
    if content is None or not file_name:
        raise ValidationError("No CV file provided")
    if len(content) == 0:
        raise ValidationError("CV file is empty")
    if len(content) > settings.MAX_UPLOAD_SIZE_BYTES:
        raise ValidationError(f"CV file exceeds the {settings.MAX_UPLOAD_SIZE_MB} MB limit")

    missing = [field for field, value in (("name", name), ("surname", surname), ("email", email))
               if not value or not value.strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    try:
        submission = CandidateSubmission(
            name=name.strip(),
            surname=surname.strip(),
            email=email.strip(),
            phone=(phone or "").strip(),
        )
    except PydanticValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ValidationError(f"Invalid submission: {problems}") from e

    try:
        clean_name = safe_file_name(file_name)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    return submission, clean_name


def submit_candidate(
    db: Session,
    storage: StorageBackend,
    *,
    name: Optional[str],
    surname: Optional[str],
    email: Optional[str],
    file_name: Optional[str],
    content: Optional[bytes],
    phone: Optional[str] = None,
) -> Tuple[Candidate, WorkflowRun]:
    """
    Create a candidate from a CV submission and start its workflow run.

    Returns:
        (candidate, run) with candidate.cv.file_status == processing

    Raises:
        ValidationError: missing/empty/oversized file or missing identity fields
        ConflictError: a candidate with the same name, surname and email exists
        PersistenceError: the database or blob store failed; nothing was kept
    """
    submission, file_name = _validate_submission(name, surname, email, phone, file_name, content)
    fingerprint = compute_fingerprint(submission.name, submission.surname, submission.email)

    try:
        existing = candidate_crud.get_by_fingerprint(db, fingerprint)
    except SQLAlchemyError as e:
        logger.error(f"Fingerprint lookup failed: {e}")
        raise PersistenceError("Candidate store unavailable") from e
    if existing:
        logger.info(f"Rejected duplicate submission for candidate {existing.id}")
        raise ConflictError("A candidate with the same name, surname and email already exists")

    candidate_id = str(uuid.uuid4())
    key = blob_key(candidate_id, file_name)
    blob_written = False

    try:
        candidate = candidate_crud.create(
            db,
            candidate_id=candidate_id,
            name=submission.name,
            surname=submission.surname,
            email=submission.email,
            fingerprint=fingerprint,
            file_name=file_name,
            file_hash=compute_file_hash(content),
            phone=submission.phone,
            file_status=FileStatus.PROCESSING,
        )
        storage.put(key, content, content_type_for(file_name))
        blob_written = True
        run, _ = run_crud.start(db, candidate_id, file_name)
        db.commit()

    except IntegrityError as e:
        _abort(db, storage, key, blob_written)
        logger.info(f"Duplicate fingerprint detected on insert: {e.orig}")
        raise ConflictError("A candidate with the same name, surname and email already exists") from e

    except (SQLAlchemyError, StorageError) as e:
        _abort(db, storage, key, blob_written)
        logger.error(f"Failed to persist candidate {candidate_id}: {e}")
        raise PersistenceError(f"Failed to store candidate: {e}") from e

    db.refresh(candidate)
    logger.info(
        f"Created candidate {candidate_id} ({file_name}, {len(content)} bytes), workflow run {run.id}",
        extra={"candidate_id": candidate_id, "run_id": run.id},
    )

    celery_utils.dispatch_workflow_run(run.id)
    return candidate, run


def _abort(db: Session, storage: StorageBackend, key: str, blob_written: bool) -> None:
    """Roll back the intake transaction and remove the blob if it was written."""
    db.rollback()
    if not blob_written:
        return
    try:
        storage.delete(key)
    except StorageError as cleanup_error:
        # The key embeds a candidate id that was never committed, so the blob is unreachable
        logger.error(f"Failed to clean up blob {key} after aborted intake: {cleanup_error}")
