"""
CRUD operations for the Candidate model.

Writes are split by writer role. The workflow engine goes through
`update_pipeline_fields`, which only accepts CV pipeline keys and `ai_decision`.
The status API goes through `update_review_fields`, which issues a
column-scoped UPDATE and never loads the `cv`/`ha` blobs. Neither helper can
touch the other role's fields.
"""

from enum import Enum
from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
from app.core.database import utcnow
from app.models.candidate import Candidate, CandidateStatus, Decision, FileStatus, new_cv, new_ha

# Keys of the `cv` blob owned by the workflow engine
PIPELINE_CV_FIELDS = frozenset({"summary", "grades_eval", "file_status", "error_message"})
# Columns owned by the workflow engine
PIPELINE_COLUMN_FIELDS = frozenset({"ai_decision"})
# Columns owned by the status API
REVIEW_FIELDS = frozenset({"status", "decision"})

RESCAN_FILE_STATUSES = (FileStatus.PENDING.value, FileStatus.FAILED.value)


def _plain(value):
    return value.value if isinstance(value, Enum) else value


def create(
    db: Session,
    *,
    candidate_id: str,
    name: str,
    surname: str,
    email: str,
    fingerprint: str,
    file_name: str,
    file_hash: str,
    phone: str = "",
    file_status: FileStatus = FileStatus.PROCESSING,
) -> Candidate:
    """
    Add a new candidate and flush it, without committing.

    The caller owns the transaction so the row, the blob and the workflow run
    can be committed together. A duplicate fingerprint raises IntegrityError
    at flush time.
    """
    now = utcnow()
    candidate = Candidate(
        id=candidate_id,
        name=name,
        surname=surname,
        email=email,
        fingerprint=fingerprint,
        decision=Decision.MAYBE,
        status=CandidateStatus.APPLIED,
        cv=new_cv(file_name=file_name, file_hash=file_hash, phone=phone, file_status=file_status),
        ha=new_ha(),
        created_at=now,
        last_updated=now,
    )
    db.add(candidate)
    db.flush()
    return candidate


def get_by_id(db: Session, candidate_id: str) -> Optional[Candidate]:
    return db.query(Candidate).filter(Candidate.id == candidate_id).first()


def get_by_fingerprint(db: Session, fingerprint: str) -> Optional[Candidate]:
    return db.query(Candidate).filter(Candidate.fingerprint == fingerprint).first()


def get_multi(db: Session, skip: int = 0, limit: int = 100) -> List[Candidate]:
    """Candidates ordered by most recently updated first."""
    return (
        db.query(Candidate)
        .order_by(Candidate.last_updated.desc(), Candidate.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_needing_processing(db: Session) -> List[Candidate]:
    """
    Candidates whose CV is pending, failed, or has no summary yet.

    The last group includes CVs still being processed; the run-identity key on
    workflow runs keeps rescans from starting a second run for them.
    """
    file_status = Candidate.cv["file_status"].as_string()
    summary = Candidate.cv["summary"].as_string()
    return (
        db.query(Candidate)
        .filter(
            or_(
                file_status.in_(RESCAN_FILE_STATUSES),
                summary.is_(None),
                summary == "",
            )
        )
        .order_by(Candidate.created_at)
        .all()
    )


def update_pipeline_fields(db: Session, candidate_id: str, **fields) -> Optional[Candidate]:
    """
    Overwrite workflow-owned fields of one candidate, without committing.

    Every call is a plain overwrite of the named keys, so applying the same
    update twice leaves the same row. The row is loaded FOR UPDATE so two
    pipeline writers cannot interleave their read and write of the blob.

    Raises:
        ValueError: if a field outside the pipeline field list is passed
    """
    unknown = set(fields) - PIPELINE_CV_FIELDS - PIPELINE_COLUMN_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable by the workflow engine: {sorted(unknown)}")

    candidate = (
        db.query(Candidate)
        .filter(Candidate.id == candidate_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not candidate:
        return None

    cv_changes = {key: _plain(value) for key, value in fields.items() if key in PIPELINE_CV_FIELDS}
    if cv_changes:
        cv = dict(candidate.cv or {})
        cv.update(cv_changes)
        # Reassign so SQLAlchemy sees the JSON column as dirty
        candidate.cv = cv

    if "ai_decision" in fields:
        candidate.ai_decision = fields["ai_decision"]

    candidate.last_updated = utcnow()
    db.flush()
    return candidate


def update_review_fields(
    db: Session,
    candidate_id: str,
    status: Optional[CandidateStatus] = None,
    decision: Optional[Decision] = None,
) -> bool:
    """
    Last-writer-wins update of the human review fields.

    Issues a single UPDATE on status/decision/last_updated and commits.
    The cv/ha blobs are neither read nor written.

    Returns:
        True if a candidate row was updated, False if the id is unknown
    """
    values = {Candidate.last_updated: utcnow()}
    if status is not None:
        values[Candidate.status] = status
    if decision is not None:
        values[Candidate.decision] = decision

    updated = (
        db.query(Candidate)
        .filter(Candidate.id == candidate_id)
        .update(values, synchronize_session=False)
    )
    db.commit()
    return updated > 0


def count_by_file_status(db: Session) -> dict:
    """Candidate counts keyed by CV file status."""
    counts = {status.value: 0 for status in FileStatus}
    for (file_status,) in db.query(Candidate.cv["file_status"].as_string()).all():
        if file_status in counts:
            counts[file_status] += 1
    return counts
