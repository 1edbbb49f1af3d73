"""
Tests for candidate intake and the status API.
"""

import os

from sqlalchemy import text

from app.core.config import settings
from app.core.storage import LocalStorage, StorageError, get_storage
from app.crud import candidate as candidate_crud
from app.crud import workflow_run as run_crud
from app.models.candidate import Candidate
from app.models.workflow_run import WorkflowRun, WorkflowState
from app.services.intake import compute_fingerprint
from main import app


CV_BYTES = b"Grace Hopper\nRear Admiral, computer scientist\n\nExperience\n- 40 years in computing\n"


def upload(client, fields, content=CV_BYTES, file_name="ada_cv.txt"):
    files = {"file": (file_name, content, "text/plain")} if content is not None else None
    return client.post("/candidates", data=fields, files=files)


class TestCandidateUpload:
    """Test the intake handler through POST /candidates"""

    def test_upload_returns_processing_candidate(self, client, sample_submission):
        """A new candidate starts in processing with no summary or grades"""
        response = upload(client, sample_submission)

        assert response.status_code == 200
        data = response.json()
        assert data["candidateId"]
        assert data["instanceId"]
        candidate = data["candidate"]
        assert candidate["id"] == data["candidateId"]
        assert candidate["status"] == "applied"
        assert candidate["decision"] == "maybe"
        assert candidate["aiDecision"] is None
        assert candidate["cv"]["fileStatus"] == "processing"
        assert candidate["cv"]["summary"] == ""
        assert candidate["cv"]["gradesEval"] == []
        assert candidate["cv"]["fileName"] == "ada_cv.txt"
        assert candidate["cv"]["phone"] == "+1 555 0100"
        assert candidate["ha"]["name"] == "Not assigned"

    def test_upload_stores_blob_and_queues_run(self, client, sample_submission, storage, dispatched, db_session):
        """The blob is stored and exactly one run is dispatched after commit"""
        data = upload(client, sample_submission).json()

        assert storage.get(f"{data['candidateId']}/ada_cv.txt") == CV_BYTES
        assert dispatched == [data["instanceId"]]

        run = run_crud.get_by_id(db_session, data["instanceId"])
        assert run.state == WorkflowState.QUEUED
        assert run.active_key == data["candidateId"]

    def test_duplicate_submission_conflicts(self, client, sample_submission, db_session, dispatched):
        """The same name, surname and email is stored only once"""
        first = upload(client, sample_submission)
        second = upload(client, sample_submission)

        assert first.status_code == 200
        assert second.status_code == 409
        assert "already exists" in second.json()["detail"]
        assert db_session.query(Candidate).count() == 1
        assert len(dispatched) == 1

    def test_duplicate_missed_by_lookup_conflicts_on_insert(self, client, sample_submission, db_session, dispatched, storage, monkeypatch):
        """Two simultaneous submissions: the unique fingerprint rejects the second insert"""
        first = upload(client, sample_submission)
        # The second submission looked before the first one committed
        monkeypatch.setattr(candidate_crud, "get_by_fingerprint", lambda db, fingerprint: None)

        second = upload(client, sample_submission)

        assert first.status_code == 200
        assert second.status_code == 409
        assert "already exists" in second.json()["detail"]
        assert db_session.query(Candidate).count() == 1
        assert db_session.query(WorkflowRun).count() == 1
        assert len(dispatched) == 1
        assert os.listdir(storage.base_dir) == [first.json()["candidateId"]]

    def test_duplicate_detection_ignores_case_and_whitespace(self, client, sample_submission, db_session):
        """Identity fields are normalized before fingerprinting"""
        upload(client, sample_submission)
        variant = dict(sample_submission, name="  GRACE ", email="Grace.Hopper@Example.com")

        response = upload(client, variant)

        assert response.status_code == 409
        assert db_session.query(Candidate).count() == 1

    def test_different_email_is_a_different_candidate(self, client, sample_submission, db_session):
        upload(client, sample_submission)
        response = upload(client, dict(sample_submission, email="grace@navy.example.com"))

        assert response.status_code == 200
        assert db_session.query(Candidate).count() == 2

    def test_missing_file(self, client, sample_submission, db_session):
        """Test upload without a file"""
        response = upload(client, sample_submission, content=None)

        assert response.status_code == 400
        assert response.json()["detail"] == "No CV file provided"
        assert db_session.query(Candidate).count() == 0

    def test_empty_file(self, client, sample_submission):
        response = upload(client, sample_submission, content=b"")

        assert response.status_code == 400
        assert "empty" in response.json()["detail"]

    def test_oversized_file(self, client, sample_submission, monkeypatch, db_session):
        """Files larger than MAX_UPLOAD_SIZE_MB are rejected"""
        monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 1)

        response = upload(client, sample_submission, content=b"a" * (1024 * 1024 + 1))

        assert response.status_code == 400
        assert "1 MB" in response.json()["detail"]
        assert db_session.query(Candidate).count() == 0

    def test_missing_identity_fields(self, client):
        response = upload(client, {"name": "Grace", "email": "grace@example.com"})

        assert response.status_code == 400
        assert "surname" in response.json()["detail"]

    def test_invalid_email(self, client, sample_submission):
        response = upload(client, dict(sample_submission, email="not-an-email"))

        assert response.status_code == 400
        assert "email" in response.json()["detail"]

    def test_client_path_is_stripped_from_file_name(self, client, sample_submission, storage):
        data = upload(client, sample_submission, file_name="../../etc/cv.txt").json()

        assert data["candidate"]["cv"]["fileName"] == "cv.txt"
        assert storage.get(f"{data['candidateId']}/cv.txt") is not None

    def test_storage_failure_leaves_nothing_behind(self, client, sample_submission, db_session, dispatched, tmp_path):
        """A failed blob put rolls back the candidate and queues no run"""
        class BrokenStorage(LocalStorage):
            def put(self, key, data, content_type=None):
                raise StorageError("disk full")

        app.dependency_overrides[get_storage] = lambda: BrokenStorage(str(tmp_path / "broken"))

        response = upload(client, sample_submission)

        assert response.status_code == 500
        assert db_session.query(Candidate).count() == 0
        assert dispatched == []

    def test_fingerprint_is_stable(self):
        assert compute_fingerprint("Ada", "Lovelace", "ada@example.com") == \
            compute_fingerprint(" ada", "LOVELACE ", "ADA@example.com")
        assert compute_fingerprint("Ada", "Lovelace", "ada@example.com") != \
            compute_fingerprint("Ada", "Lovelace", "ada@example.org")


class TestCandidateRetrieval:
    """Test candidate listing and lookup"""

    def test_get_candidate(self, client, sample_submission):
        created = upload(client, sample_submission).json()

        response = client.get(f"/candidates/{created['candidateId']}")

        assert response.status_code == 200
        assert response.json()["email"] == "grace.hopper@example.com"

    def test_get_unknown_candidate(self, client):
        response = client.get("/candidates/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404

    def test_list_is_ordered_by_last_updated(self, client, sample_submission):
        """The most recently touched candidate comes first"""
        first = upload(client, sample_submission).json()["candidateId"]
        second = upload(client, dict(sample_submission, email="other@example.com")).json()["candidateId"]

        ids = [c["id"] for c in client.get("/candidates").json()]
        assert ids == [second, first]

        client.post(f"/candidates/{first}/status", json={"status": "review"})

        ids = [c["id"] for c in client.get("/candidates").json()]
        assert ids == [first, second]

    def test_list_pagination(self, client, sample_submission):
        for i in range(3):
            upload(client, dict(sample_submission, email=f"grace{i}@example.com"))

        assert len(client.get("/candidates?limit=2").json()) == 2
        assert len(client.get("/candidates?skip=2&limit=2").json()) == 1

    def test_list_limit_is_capped(self, client, sample_submission, monkeypatch):
        monkeypatch.setattr(settings, "MAX_PAGE_SIZE", 1)
        for i in range(2):
            upload(client, dict(sample_submission, email=f"grace{i}@example.com"))

        assert len(client.get("/candidates?limit=100").json()) == 1


class TestStatusUpdate:
    """Test the human review stage update"""

    def test_update_status(self, client, sample_submission):
        candidate_id = upload(client, sample_submission).json()["candidateId"]

        response = client.post(f"/candidates/{candidate_id}/status", json={"status": "interview1"})

        assert response.status_code == 200
        assert response.json()["status"] == "interview1"
        assert response.json()["decision"] == "maybe"

    def test_update_status_and_decision(self, client, sample_submission):
        candidate_id = upload(client, sample_submission).json()["candidateId"]

        response = client.post(
            f"/candidates/{candidate_id}/status",
            json={"status": "offer", "decision": "strong_yes"},
        )

        assert response.json()["status"] == "offer"
        assert response.json()["decision"] == "strong_yes"

    def test_update_leaves_cv_and_ha_untouched(self, client, sample_submission, db_session):
        """Only status and lastUpdated change; the stored blobs are byte-for-byte identical"""
        created = upload(client, sample_submission).json()
        candidate_id = created["candidateId"]
        query = text("SELECT cv, ha FROM candidates WHERE id = :id")
        before = db_session.execute(query, {"id": candidate_id}).one()

        response = client.post(f"/candidates/{candidate_id}/status", json={"status": "rejected"})

        after = db_session.execute(query, {"id": candidate_id}).one()
        assert tuple(after) == tuple(before)
        body = response.json()
        assert body["cv"] == created["candidate"]["cv"]
        assert body["ha"] == created["candidate"]["ha"]

    def test_invalid_status(self, client, sample_submission):
        candidate_id = upload(client, sample_submission).json()["candidateId"]

        response = client.post(f"/candidates/{candidate_id}/status", json={"status": "promoted"})

        assert response.status_code == 422

    def test_update_unknown_candidate(self, client):
        response = client.post("/candidates/missing/status", json={"status": "review"})

        assert response.status_code == 404


class TestCandidateDownload:
    """Test CV download"""

    def test_download(self, client, sample_submission):
        candidate_id = upload(client, sample_submission).json()["candidateId"]

        response = client.get(f"/candidates/{candidate_id}/file", params={"fileName": "ada_cv.txt"})

        assert response.status_code == 200
        assert response.content == CV_BYTES
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["content-disposition"] == 'attachment; filename="ada_cv.txt"'

    def test_download_requires_file_name(self, client, sample_submission):
        candidate_id = upload(client, sample_submission).json()["candidateId"]

        response = client.get(f"/candidates/{candidate_id}/file")

        assert response.status_code == 400

    def test_download_unknown_candidate(self, client):
        response = client.get("/candidates/missing/file", params={"fileName": "cv.pdf"})

        assert response.status_code == 404

    def test_download_unknown_file(self, client, sample_submission):
        candidate_id = upload(client, sample_submission).json()["candidateId"]

        response = client.get(f"/candidates/{candidate_id}/file", params={"fileName": "other.pdf"})

        assert response.status_code == 404
