"""
Candidate database model.

One row per applicant. The CV and home-assignment sub-entities live in the row
as JSON blobs (`cv`, `ha`). The CV blob carries the machine pipeline state
(`file_status`, `summary`, `grades_eval`), which only the workflow engine
writes; `status` and `decision` are the human review fields, which only the
status API writes.
"""

import enum
import uuid
from sqlalchemy import Column, String, Enum, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from app.core.database import Base, utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Decision(str, enum.Enum):
    """Hiring recommendation scale, used by humans and by the grader."""
    STRONG_NO = "strong_no"
    NO = "no"
    MAYBE = "maybe"
    YES = "yes"
    STRONG_YES = "strong_yes"


class CandidateStatus(str, enum.Enum):
    """Human recruiting stage."""
    APPLIED = "applied"
    REVIEW = "review"
    INTERVIEW1 = "interview1"
    INTERVIEW2 = "interview2"
    HA = "ha"
    OFFER = "offer"
    HIRED = "hired"
    REJECTED = "rejected"


class FileStatus(str, enum.Enum):
    """
    Machine pipeline status of the uploaded CV:

    PENDING -> PROCESSING -> COMPLETED
                   ↓
                FAILED

    FAILED and PENDING re-enter PROCESSING only through a rescan.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AssignmentStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def new_cv(file_name: str, file_hash: str, phone: str = "", file_status: FileStatus = FileStatus.PENDING) -> dict:
    """Initial CV blob for a fresh submission."""
    return {
        "id": str(uuid.uuid4()),
        "phone": phone,
        "summary": "",
        "grades_eval": [],
        "file_name": file_name,
        "file_hash": file_hash,
        "file_status": file_status.value,
        "error_message": None,
    }


def new_ha() -> dict:
    """Placeholder home assignment; nothing in the pipeline fills it in."""
    return {
        "id": str(uuid.uuid4()),
        "name": "Not assigned",
        "repo": "",
        "description": "",
        "status": AssignmentStatus.NOT_STARTED.value,
        "grades": [],
        "grades_eval": [],
    }


class Candidate(Base):
    """
    An applicant and their submitted CV.
    """
    __tablename__ = "candidates"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String, nullable=False)
    surname = Column(String, nullable=False)
    email = Column(String, nullable=False)

    # sha256(name|surname|email), normalized; the dedup key
    fingerprint = Column(String(64), nullable=False, unique=True, index=True)

    # Review fields (status API)
    decision = Column(
        Enum(Decision, name="candidate_decision", values_callable=_enum_values),
        default=Decision.MAYBE,
        nullable=False,
    )
    status = Column(
        Enum(CandidateStatus, name="candidate_status", values_callable=_enum_values),
        default=CandidateStatus.APPLIED,
        nullable=False,
        index=True
    )

    # Pipeline fields (workflow engine)
    ai_decision = Column(
        Enum(Decision, name="candidate_ai_decision", values_callable=_enum_values),
        nullable=True,
    )
    cv = Column(JSONType, nullable=False, default=dict)
    ha = Column(JSONType, nullable=False, default=new_ha)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    @property
    def file_status(self) -> FileStatus:
        return FileStatus((self.cv or {}).get("file_status", FileStatus.PENDING.value))

    @property
    def file_name(self) -> str:
        return (self.cv or {}).get("file_name", "")

    def __repr__(self):
        return f"<Candidate(id={self.id}, status={self.status}, file_status={self.file_status.value})>"
