"""Tests for the agent tool callback routes."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import FakeCrm
from intakebot.api.factory import create_app
from intakebot.domain.file_store import FileCorrelationStore
from intakebot.domain.files import BufferedFileRef
from intakebot.domain.lookup import CandidateLookup
from intakebot.domain.submission import SubmissionFinalizer
from intakebot.infra.repositories.candidates_repository import CandidateRecord

AUTH = {"X-Tool-Secret": "s3cret"}


@pytest.fixture(autouse=True)
def _tool_secret(monkeypatch):
    monkeypatch.setenv("TOOL_SECRET", "s3cret")
    monkeypatch.delenv("TOOL_AUTH_DISABLED", raising=False)


@pytest.fixture
def client():
    return TestClient(create_app())


class TestSubmitCandidateApplication:
    def test_submit_merges_staged_resume(self, client):
        store = FileCorrelationStore()
        store.publish(
            "+79991234567",
            [BufferedFileRef(kind="resume", file_id="r1", file_name="cv.pdf", file_url="https://drive.example/cv.pdf")],
        )
        crm = FakeCrm()
        finalizer = SubmissionFinalizer(correlation_store=store, crm=crm, save_candidate=None)

        with patch("intakebot.api.routes.agent_tools._get_finalizer", return_value=finalizer):
            response = client.post(
                "/tools/submit-candidate-application",
                json={"fullName": "Anna Ivanova", "phone": "89991234567"},
                headers=AUTH,
            )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["applicationId"].startswith("AZM-")
        assert body["resumeAttached"] is True
        assert body["videoAttached"] is False
        assert crm.leads[0]["resume"].file_name == "cv.pdf"

    def test_invalid_payload_is_422(self, client):
        with patch("intakebot.api.routes.agent_tools._get_finalizer") as get_finalizer:
            response = client.post("/tools/submit-candidate-application", json={"phone": "1"}, headers=AUTH)
        assert response.status_code == 422
        get_finalizer.assert_not_called()

    def test_requires_secret(self, client):
        response = client.post("/tools/submit-candidate-application", json={"fullName": "A", "phone": "1"})
        assert response.status_code == 401

    def test_fail_closed_without_secret_env(self, client, monkeypatch):
        monkeypatch.delenv("TOOL_SECRET")
        response = client.post(
            "/tools/submit-candidate-application", json={"fullName": "A", "phone": "1"}, headers=AUTH
        )
        assert response.status_code == 401


class TestLookupCandidate:
    def test_found(self, client):
        record = CandidateRecord(id=9, name="Anna", phone="+79991234567", created_at=None)
        lookup = CandidateLookup(finder=lambda phone, name: record)
        with patch("intakebot.api.routes.agent_tools._get_lookup", return_value=lookup):
            response = client.post("/tools/lookup-candidate", json={"phone": "+79991234567"}, headers=AUTH)

        body = response.json()
        assert body["found"] is True
        assert body["candidate"]["applicationId"] == "AZM-9"
        assert "appliedAt" not in body["candidate"]

    def test_not_found(self, client):
        lookup = CandidateLookup(finder=lambda phone, name: None)
        with patch("intakebot.api.routes.agent_tools._get_lookup", return_value=lookup):
            response = client.post("/tools/lookup-candidate", json={"fullName": "Nobody"}, headers=AUTH)
        assert response.json() == {
            "found": False,
            "message": "No existing application found. This appears to be a new candidate.",
        }

    def test_requires_a_key(self, client):
        response = client.post("/tools/lookup-candidate", json={}, headers=AUTH)
        assert response.status_code == 422

    def test_dev_bypass(self, client, monkeypatch):
        monkeypatch.setenv("TOOL_AUTH_DISABLED", "1")
        lookup = CandidateLookup(finder=lambda phone, name: None)
        with patch("intakebot.api.routes.agent_tools._get_lookup", return_value=lookup):
            response = client.post("/tools/lookup-candidate", json={"phone": "1"})
        assert response.status_code == 200
