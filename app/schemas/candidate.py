"""
Pydantic schemas for Candidate API requests/responses.

Stored JSON blobs use snake_case keys; the API speaks camelCase.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr
from pydantic.alias_generators import to_camel
from app.models.candidate import AssignmentStatus, CandidateStatus, Decision, FileStatus


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class EvalSchema(CamelModel):
    """One graded criterion."""
    name: str
    reason: str
    value: Decision


class GradeSchema(CamelModel):
    name: str
    description: str = ""
    scale: str = ""


class CVSchema(CamelModel):
    id: str
    phone: str = ""
    summary: str = ""
    grades_eval: List[EvalSchema] = Field(default_factory=list)
    file_name: str
    file_hash: str
    file_status: FileStatus
    error_message: Optional[str] = None


class HASchema(CamelModel):
    id: str
    name: str = "Not assigned"
    repo: str = ""
    description: str = ""
    status: AssignmentStatus = AssignmentStatus.NOT_STARTED
    grades: List[GradeSchema] = Field(default_factory=list)
    grades_eval: List[EvalSchema] = Field(default_factory=list)


class CandidateSubmission(BaseModel):
    """Identity fields of a multipart intake request."""
    name: str = Field(..., min_length=1, max_length=200)
    surname: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field("", max_length=50)


class CandidateResponse(CamelModel):
    """Full candidate record with embedded CV and home assignment."""
    id: str
    name: str
    surname: str
    email: str
    decision: Decision
    ai_decision: Optional[Decision] = None
    status: CandidateStatus
    cv: CVSchema
    ha: HASchema
    created_at: datetime
    last_updated: datetime


class CandidateCreateResponse(CamelModel):
    """Response after submitting a CV; processing continues in the background."""
    candidate_id: str
    instance_id: str = Field(..., description="Workflow run id, pollable via /workflow-status")
    candidate: CandidateResponse


class StatusUpdateRequest(CamelModel):
    status: CandidateStatus
    decision: Optional[Decision] = None
