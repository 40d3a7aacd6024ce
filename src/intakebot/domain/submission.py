"""Submission finalizer - turns a completed application into durable records.

Called through the submit-candidate-application tool endpoint by the hosted
agent. The candidate's files are not in the tool arguments unless the agent
put them there; the buffered ones are pulled from the file correlation store
by phone, exactly once.

Persistence (database, CRM) is best-effort: failures are logged with the
application id and masked phone for manual reconciliation, and the candidate
still gets a success answer.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Protocol

from pydantic import BaseModel, ConfigDict, Field

from intakebot.domain.file_store import FileCorrelationStore, file_store
from intakebot.domain.files import BufferedFileRef, FileKind
from intakebot.infra.db import txn
from intakebot.infra.repositories.candidates_repository import save_candidate as save_candidate_row
from intakebot.observability.correlation import to_base36
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import mask_phone, safe_log_context

logger = get_logger(__name__)

FileUrlResolver = Callable[[str], Awaitable[str | None]]
CandidateSaver = Callable[[str, str], Any]

REVIEW_STEP = "Our recruitment team will review your application within 2-3 business days"
RESUME_REMINDER = "Please send us your resume/CV when ready"
VIDEO_REMINDER = "Please record and send a 2-3 minute introduction video about yourself"
DOCUMENT_STEPS = (
    "Prepare your DBS/criminal background check documents",
    "Gather references from previous employers",
    "Have your educational certificates ready for verification",
)


# ── Tool payload ──────────────────────────────────────────


class LanguageSkill(BaseModel):
    model_config = ConfigDict(extra="ignore")

    language: str
    fluency: str = ""


class SubmittedFile(BaseModel):
    """File reference as the agent passes it in tool arguments."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    file_id: str = Field(alias="fileId", min_length=1)
    file_name: str | None = Field(None, alias="fileName")
    file_type: str | None = Field(None, alias="fileType")
    file_url: str | None = Field(None, alias="fileUrl")
    duration: float | None = None

    def to_ref(self, kind: FileKind) -> BufferedFileRef:
        return BufferedFileRef(
            kind=kind,
            file_id=self.file_id,
            file_name=self.file_name,
            mime_type=self.file_type,
            file_url=self.file_url,
            duration=int(self.duration) if kind == "video" and self.duration else None,
        )


class ApplicationSubmission(BaseModel):
    """Structured application collected by the agent (camelCase on the wire)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    full_name: str = Field(alias="fullName", min_length=1)
    phone: str = Field(min_length=1)
    email: str | None = None
    nationality: str | None = None
    current_location: str | None = Field(None, alias="currentLocation")
    date_of_birth: str | None = Field(None, alias="dateOfBirth")
    languages: list[LanguageSkill] = Field(default_factory=list)
    years_of_experience: int | float | None = Field(None, alias="yearsOfExperience")
    age_groups_worked_with: list[str] = Field(default_factory=list, alias="ageGroupsWorkedWith")
    previous_positions: str | None = Field(None, alias="previousPositions")
    education_summary: str | None = Field(None, alias="educationSummary")
    has_first_aid_certificate: bool | None = Field(None, alias="hasFirstAidCertificate")
    specializations: list[str] = Field(default_factory=list)
    available_from: str | None = Field(None, alias="availableFrom")
    preferred_arrangement: str | None = Field(None, alias="preferredArrangement")
    willing_to_relocate: bool | None = Field(None, alias="willingToRelocate")
    preferred_countries: list[str] = Field(default_factory=list, alias="preferredCountries")
    has_valid_passport: bool | None = Field(None, alias="hasValidPassport")
    additional_notes: str | None = Field(None, alias="additionalNotes")
    resume_file: SubmittedFile | None = Field(None, alias="resumeFile")
    intro_video_file: SubmittedFile | None = Field(None, alias="introVideoFile")


class SubmissionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    application_id: str = Field(alias="applicationId")
    message: str
    next_steps: list[str] = Field(alias="nextSteps")
    resume_attached: bool = Field(False, alias="resumeAttached")
    video_attached: bool = Field(False, alias="videoAttached")
    lead_url: str | None = Field(None, alias="leadUrl")


class LeadCreator(Protocol):
    async def create_candidate_lead(
        self,
        application: ApplicationSubmission,
        application_id: str,
        resume: BufferedFileRef | None = None,
        video: BufferedFileRef | None = None,
    ) -> Any: ...


def new_application_id() -> str:
    return f"AZM-{to_base36(int(time.time() * 1000)).upper()}"


def next_steps(resume: BufferedFileRef | None, video: BufferedFileRef | None) -> list[str]:
    steps = [REVIEW_STEP]
    if resume is None:
        steps.append(RESUME_REMINDER)
    if video is None:
        steps.append(VIDEO_REMINDER)
    steps.extend(DOCUMENT_STEPS)
    return steps


def _save_candidate_record(name: str, phone: str) -> None:
    with txn() as cur:
        save_candidate_row(cur, name=name, phone=phone)


# ── Finalizer ─────────────────────────────────────────────


class SubmissionFinalizer:
    """Merges submitted fields with buffered files and persists the result."""

    def __init__(
        self,
        *,
        correlation_store: FileCorrelationStore | None = None,
        crm: LeadCreator | None = None,
        resolve_file_url: FileUrlResolver | None = None,
        save_candidate: CandidateSaver | None = _save_candidate_record,
    ) -> None:
        self.correlation_store = correlation_store if correlation_store is not None else file_store
        self.crm = crm
        self.resolve_file_url = resolve_file_url
        self.save_candidate = save_candidate

    async def submit(self, application: ApplicationSubmission) -> SubmissionResult:
        application_id = new_application_id()
        log_ctx = safe_log_context(
            application_id=application_id, phone=mask_phone(application.phone)
        )

        # Drained even when the agent passed both files explicitly
        staged = self.correlation_store.consume(application.phone)
        resume = (
            application.resume_file.to_ref("resume") if application.resume_file else staged.resume
        )
        video = (
            application.intro_video_file.to_ref("video")
            if application.intro_video_file
            else staged.video
        )
        logger.info(
            "application files merged",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    resume_source=_source(application.resume_file, staged.resume),
                    video_source=_source(application.intro_video_file, staged.video),
                )
            },
        )

        resume = await self._ensure_url(resume, log_ctx)
        video = await self._ensure_url(video, log_ctx)

        await self._save_record(application, log_ctx)
        lead_url = await self._create_lead(application, application_id, resume, video, log_ctx)

        return SubmissionResult(
            success=True,
            application_id=application_id,
            message=f"Thank you, {application.full_name}! "
            "Your application has been submitted successfully.",
            next_steps=next_steps(resume, video),
            resume_attached=resume is not None,
            video_attached=video is not None,
            lead_url=lead_url,
        )

    async def _ensure_url(
        self, ref: BufferedFileRef | None, log_ctx: dict[str, str]
    ) -> BufferedFileRef | None:
        """Fill a missing URL from the file id.

        A file whose URL cannot be resolved is dropped: the submission goes on
        without it and the candidate is reminded to send it again.
        """
        if ref is None or ref.file_url:
            return ref
        url = None
        error_type = "no_resolver"
        if self.resolve_file_url is not None:
            try:
                url = await self.resolve_file_url(ref.file_id)
                error_type = "empty_url"
            except Exception as e:
                error_type = type(e).__name__
        if url:
            return ref.with_url(url)
        logger.warning(
            "file url resolution failed, file dropped",
            extra={"extra_fields": safe_log_context(**log_ctx, kind=ref.kind, error_type=error_type)},
        )
        return None

    async def _save_record(self, application: ApplicationSubmission, log_ctx: dict[str, str]) -> None:
        if self.save_candidate is None:
            return
        try:
            await asyncio.to_thread(self.save_candidate, application.full_name, application.phone)
        except Exception:
            logger.exception(
                "candidate record save failed",
                extra={"extra_fields": safe_log_context(**log_ctx, operation="save_candidate")},
            )
            return
        logger.info("candidate record saved", extra={"extra_fields": log_ctx})

    async def _create_lead(
        self,
        application: ApplicationSubmission,
        application_id: str,
        resume: BufferedFileRef | None,
        video: BufferedFileRef | None,
        log_ctx: dict[str, str],
    ) -> str | None:
        if self.crm is None:
            logger.warning("crm not configured, lead skipped", extra={"extra_fields": log_ctx})
            return None
        try:
            lead = await self.crm.create_candidate_lead(application, application_id, resume, video)
        except Exception:
            logger.exception(
                "crm lead creation failed",
                extra={"extra_fields": safe_log_context(**log_ctx, operation="create_lead")},
            )
            return None
        return getattr(lead, "lead_url", None)


def _source(explicit: SubmittedFile | None, staged: BufferedFileRef | None) -> str:
    if explicit is not None:
        return "explicit"
    return "staged" if staged is not None else "none"
