"""Tool callbacks invoked by the hosted agent.

- POST /tools/submit-candidate-application
- POST /tools/lookup-candidate

Both require X-Tool-Secret. The agent's tool schema is camelCase; responses
are camelCase as well so the agent reads them back unchanged.
"""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from intakebot.api import services
from intakebot.api.tool_auth import verify_tool_auth
from intakebot.domain.lookup import CandidateLookup, LookupRequest
from intakebot.domain.submission import ApplicationSubmission, SubmissionFinalizer
from intakebot.observability.correlation import get_correlation_id
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context

router = APIRouter(prefix="/tools", tags=["tools"])

logger = get_logger(__name__)


def _get_finalizer() -> SubmissionFinalizer:
    """Get the submission finalizer (allows test injection)."""
    return services.get_finalizer()


def _get_lookup() -> CandidateLookup:
    """Get the candidate lookup (allows test injection)."""
    return services.get_lookup()


async def _read_json(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except Exception:
        return None
    return body if isinstance(body, dict) else None


def _invalid(tool: str, errors: Any) -> JSONResponse:
    logger.warning(
        "invalid tool payload",
        extra={"extra_fields": safe_log_context(correlationId=get_correlation_id(), tool=tool)},
    )
    return JSONResponse(status_code=422, content={"error": "invalid payload", "details": errors})


@router.post("/submit-candidate-application")
async def submit_candidate_application(request: Request) -> Any:
    if not verify_tool_auth(request):
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    body = await _read_json(request)
    if body is None:
        return _invalid("submit-candidate-application", "body must be a JSON object")
    try:
        application = ApplicationSubmission.model_validate(body)
    except ValidationError as e:
        return _invalid("submit-candidate-application", e.errors(include_url=False, include_input=False))

    result = await _get_finalizer().submit(application)
    logger.info(
        "application submitted",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                application_id=result.application_id,
                resume_attached=result.resume_attached,
                video_attached=result.video_attached,
            )
        },
    )
    return result.model_dump(by_alias=True)


@router.post("/lookup-candidate")
async def lookup_candidate(request: Request) -> Any:
    if not verify_tool_auth(request):
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    body = await _read_json(request)
    if body is None:
        return _invalid("lookup-candidate", "body must be a JSON object")
    try:
        query = LookupRequest.model_validate(body)
    except ValidationError as e:
        return _invalid("lookup-candidate", e.errors(include_url=False, include_input=False))

    if not (query.phone or query.full_name or query.email):
        return _invalid("lookup-candidate", "phone, email or fullName required")

    result = await _get_lookup().lookup(phone=query.phone, full_name=query.full_name)
    return result.model_dump(by_alias=True, exclude_none=True)
