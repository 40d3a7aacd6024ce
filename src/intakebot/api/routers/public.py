"""Public routes available in every role."""

from fastapi import APIRouter

router = APIRouter()

SERVICE_NAME = "intakebot"


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "service": SERVICE_NAME}
