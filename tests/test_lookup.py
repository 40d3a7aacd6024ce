"""Tests for returning-candidate lookup."""

import asyncio
from datetime import datetime, timezone

from intakebot.domain.lookup import NOT_FOUND_MESSAGE, CandidateLookup
from intakebot.infra.repositories.candidates_repository import CandidateRecord

RECORD = CandidateRecord(
    id=42,
    name="Anna Ivanova",
    phone="8 999 123 45 67",
    created_at=datetime(2026, 1, 15, tzinfo=timezone.utc),
)


class TestCandidateLookup:
    def test_found(self):
        lookup = CandidateLookup(finder=lambda phone, name: RECORD)
        result = asyncio.run(lookup.lookup(phone="+79991234567"))

        assert result.found is True
        assert result.candidate.application_id == "AZM-42"
        assert result.candidate.status == "pending"
        assert result.candidate.applied_at.startswith("2026-01-15")
        assert result.message == "Welcome back! Found existing application AZM-42 for Anna Ivanova, status: pending"

    def test_not_found(self):
        result = asyncio.run(CandidateLookup(finder=lambda phone, name: None).lookup(full_name="Nobody"))
        assert result.found is False
        assert result.candidate is None
        assert result.message == NOT_FOUND_MESSAGE

    def test_finder_receives_both_keys(self):
        seen = []
        lookup = CandidateLookup(finder=lambda phone, name: seen.append((phone, name)))
        asyncio.run(lookup.lookup(phone="89991234567", full_name="Anna"))
        assert seen == [("89991234567", "Anna")]

    def test_database_error_means_not_found(self):
        def broken(phone, name):
            raise RuntimeError("DATABASE_URL environment variable not set")

        result = asyncio.run(CandidateLookup(finder=broken).lookup(phone="+79991234567"))
        assert result.found is False

    def test_camel_case_dump(self):
        result = asyncio.run(CandidateLookup(finder=lambda phone, name: RECORD).lookup(phone="x"))
        body = result.model_dump(by_alias=True)
        assert body["candidate"]["applicationId"] == "AZM-42"
        assert body["candidate"]["fullName"] == "Anna Ivanova"
