"""Shared-secret authentication for agent tool callbacks and admin routes.

The hosted agent calls back /tools/* with X-Tool-Secret. Fail-closed: if
TOOL_SECRET is not configured every request is rejected, unless
TOOL_AUTH_DISABLED=1 (local development only).
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request

from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

TOOL_SECRET_HEADER = "X-Tool-Secret"


def verify_tool_auth(request: Request) -> bool:
    """Check the X-Tool-Secret header against TOOL_SECRET.

    Args:
        request: FastAPI request object.

    Returns:
        True if authenticated, False otherwise.
    """
    if os.environ.get("TOOL_AUTH_DISABLED") == "1":
        logger.info(
            "tool auth disabled (local dev)",
            extra={"extra_fields": safe_log_context(auth_method="disabled")},
        )
        return True

    expected = os.environ.get("TOOL_SECRET", "")
    if not expected:
        logger.error(
            "TOOL_SECRET not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_secret_env")},
        )
        return False

    provided = request.headers.get(TOOL_SECRET_HEADER, "")
    if not provided:
        logger.warning(
            "tool auth failed: missing secret header",
            extra={"extra_fields": safe_log_context(reason="missing_header")},
        )
        return False

    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            "tool auth failed: secret mismatch",
            extra={"extra_fields": safe_log_context(reason="secret_mismatch")},
        )
        return False

    return True
