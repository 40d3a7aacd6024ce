"""Candidate lookup - returning vs new, for the lookup-candidate tool."""

from __future__ import annotations

import asyncio
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from intakebot.infra.db import txn
from intakebot.infra.repositories.candidates_repository import (
    CandidateRecord,
    find_candidate_by_name,
    find_candidate_by_phone,
)
from intakebot.infra.time import utc_now
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import mask_phone, safe_log_context

logger = get_logger(__name__)

NOT_FOUND_MESSAGE = "No existing application found. This appears to be a new candidate."

CandidateFinder = Callable[[str | None, str | None], CandidateRecord | None]


class LookupRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    phone: str | None = None
    email: str | None = None
    full_name: str | None = Field(None, alias="fullName")


class CandidateSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    application_id: str = Field(alias="applicationId")
    full_name: str = Field(alias="fullName")
    phone: str
    status: str = "pending"
    applied_at: str | None = Field(None, alias="appliedAt")
    last_contact_at: str = Field(alias="lastContactAt")


class LookupResult(BaseModel):
    found: bool
    candidate: CandidateSummary | None = None
    message: str


def _find_in_database(phone: str | None, full_name: str | None) -> CandidateRecord | None:
    with txn() as cur:
        record = find_candidate_by_phone(cur, phone) if phone else None
        if record is None and full_name:
            record = find_candidate_by_name(cur, full_name)
        return record


class CandidateLookup:
    """Phone first, then exact trimmed name. Email is not stored."""

    def __init__(self, finder: CandidateFinder = _find_in_database) -> None:
        self.finder = finder

    async def lookup(self, phone: str | None = None, full_name: str | None = None) -> LookupResult:
        log_ctx = safe_log_context(phone=mask_phone(phone), by_name=bool(full_name))
        try:
            record = await asyncio.to_thread(self.finder, phone, full_name)
        except Exception:
            logger.exception("candidate lookup failed", extra={"extra_fields": log_ctx})
            record = None

        if record is None:
            logger.info("candidate not found", extra={"extra_fields": log_ctx})
            return LookupResult(found=False, message=NOT_FOUND_MESSAGE)

        summary = CandidateSummary(
            application_id=f"AZM-{record.id}",
            full_name=record.name,
            phone=record.phone,
            applied_at=record.created_at.isoformat() if record.created_at else None,
            last_contact_at=utc_now().isoformat(),
        )
        logger.info(
            "returning candidate found",
            extra={"extra_fields": safe_log_context(**log_ctx, candidate_id=record.id)},
        )
        return LookupResult(
            found=True,
            candidate=summary,
            message=(
                f"Welcome back! Found existing application {summary.application_id} "
                f"for {summary.full_name}, status: {summary.status}"
            ),
        )
