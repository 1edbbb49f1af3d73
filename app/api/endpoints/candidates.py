"""
API endpoints for candidate management.

Handles CV submission, candidate listing and retrieval, the human review
stage update, and CV download.
"""

import io
import logging
from typing import List, Optional
from fastapi import APIRouter, UploadFile, File, Form, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import NotFoundError, PersistenceError, ValidationError
from app.core.storage import StorageBackend, StorageError, blob_key, content_type_for, get_storage
from app.crud import candidate as candidate_crud
from app.schemas.candidate import CandidateCreateResponse, CandidateResponse, StatusUpdateRequest
from app.services.intake import submit_candidate

router = APIRouter(prefix="/candidates", tags=["Candidates"])
logger = logging.getLogger(__name__)


@router.post("", response_model=CandidateCreateResponse)
async def create_candidate(
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    surname: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Submit a candidate's CV.

    The candidate is stored with `cv.fileStatus = processing` and a workflow
    run is queued to summarize and grade the CV. The response returns
    immediately; poll `GET /candidates/{id}` or `GET /workflow-status` to see
    the result.

    Raises:
        400: missing/empty/oversized file or missing identity fields
        409: a candidate with the same name, surname and email exists
    """
    content = None
    file_name = None
    if file is not None:
        file_name = file.filename
        # Read one byte past the ceiling so oversize uploads are detected without buffering them whole
        content = await file.read(settings.MAX_UPLOAD_SIZE_BYTES + 1)

    candidate, run = submit_candidate(
        db,
        storage,
        name=name,
        surname=surname,
        email=email,
        phone=phone,
        file_name=file_name,
        content=content,
    )

    return CandidateCreateResponse(
        candidate_id=candidate.id,
        instance_id=run.id,
        candidate=CandidateResponse.model_validate(candidate),
    )


@router.get("", response_model=List[CandidateResponse])
def list_candidates(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """
    List candidates, most recently updated first.

    Args:
        skip: Number of records to skip (pagination)
        limit: Maximum records to return (capped at MAX_PAGE_SIZE)
    """
    limit = max(0, min(limit, settings.MAX_PAGE_SIZE))
    return candidate_crud.get_multi(db, skip=max(skip, 0), limit=limit)


@router.get("/{candidate_id}", response_model=CandidateResponse)
def get_candidate(candidate_id: str, db: Session = Depends(get_db)):
    """
    Get a candidate with its CV processing state.

    `cv.fileStatus` is the machine pipeline state:
    - processing: summary and grades are being extracted
    - completed: `cv.summary` and `cv.gradesEval` are filled in
    - failed: see `cv.errorMessage`; `POST /rescan` retries it
    """
    candidate = candidate_crud.get_by_id(db, candidate_id)
    if not candidate:
        raise NotFoundError(f"Candidate {candidate_id} not found")
    return candidate


@router.post("/{candidate_id}/status", response_model=CandidateResponse)
def update_candidate_status(
    candidate_id: str,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
):
    """
    Move a candidate to another recruiting stage (and optionally set the decision).

    Only `status`, `decision` and `lastUpdated` are written; the CV and home
    assignment data belong to the extraction workflow and are left untouched.
    """
    updated = candidate_crud.update_review_fields(
        db,
        candidate_id,
        status=request.status,
        decision=request.decision,
    )
    if not updated:
        raise NotFoundError(f"Candidate {candidate_id} not found")

    logger.info(f"Candidate {candidate_id} moved to {request.status.value}")
    return candidate_crud.get_by_id(db, candidate_id)


@router.get("/{candidate_id}/file")
def download_candidate_file(
    candidate_id: str,
    file_name: Optional[str] = Query(None, alias="fileName"),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Download a candidate's CV as an attachment.

    Raises:
        400: fileName missing
        404: candidate or file not found
    """
    if not candidate_id or not file_name:
        raise ValidationError("Missing candidateId or fileName")

    candidate = candidate_crud.get_by_id(db, candidate_id)
    if not candidate:
        raise NotFoundError(f"Candidate {candidate_id} not found")

    try:
        key = blob_key(candidate_id, file_name)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    try:
        data = storage.get(key)
    except StorageError as e:
        logger.error(f"Failed to read {key} from storage: {e}")
        raise PersistenceError("Failed to retrieve file from storage") from e

    if data is None:
        raise NotFoundError(f"File {file_name} not found for candidate {candidate_id}")

    download_name = key.rsplit("/", 1)[-1]
    return StreamingResponse(
        io.BytesIO(data),
        media_type=content_type_for(download_name),
        headers={
            'Content-Disposition': f'attachment; filename="{download_name}"'
        }
    )
