"""Telegram webhook routes.

The update is ACKed immediately and processed as a background task; Telegram
re-delivers anything not ACKed with 2xx, so processing errors never change
the response.

Security:
- Optional X-Telegram-Bot-Api-Secret-Token check (TELEGRAM_WEBHOOK_SECRET)
- Webhook admin routes require X-Tool-Secret
- Logs contain NO message text or user ids
"""

import os
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Header, Request
from fastapi.responses import JSONResponse

from intakebot.api import services
from intakebot.api.tool_auth import verify_tool_auth
from intakebot.conversation.handler import ConversationHandler
from intakebot.observability.correlation import get_correlation_id
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context
from intakebot.telegram.adapter import (
    InvalidPayloadError,
    SignatureVerificationError,
    normalize,
    verify_secret_token,
)
from intakebot.telegram.client import TelegramApiError, TelegramClient

router = APIRouter(prefix="/telegram", tags=["telegram"])

logger = get_logger(__name__)

_OK = {"ok": True}


def _get_handler() -> ConversationHandler:
    """Get the Telegram handler (allows test injection)."""
    return services.get_telegram_handler()


def _get_client() -> TelegramClient:
    """Get the Bot API client (allows test injection)."""
    return services.get_telegram_client()


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: str | None = Header(
        None, alias="X-Telegram-Bot-Api-Secret-Token"
    ),
) -> dict[str, Any]:
    """Receive a Telegram update.

    IMPORTANT: Always return 200 to Telegram, even on errors.
    """
    correlation_id = get_correlation_id()

    secret = os.environ.get("TELEGRAM_WEBHOOK_SECRET", "")
    if secret:
        try:
            verify_secret_token(x_telegram_bot_api_secret_token, secret)
        except SignatureVerificationError as e:
            logger.warning(
                "telegram secret token verification failed",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
            )
            return _OK

    try:
        update: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _OK

    try:
        event = normalize(update)
    except InvalidPayloadError as e:
        logger.debug(
            "telegram update ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, reason=str(e))},
        )
        return _OK

    try:
        handler = _get_handler()
    except RuntimeError as e:
        logger.error(
            "telegram handler unavailable",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return _OK

    logger.info(
        "telegram update received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                update_id=update.get("update_id"),
                has_text=bool(event.text),
                media_type=event.attachment.media_type if event.attachment else None,
            )
        },
    )
    background_tasks.add_task(handler.handle, event, correlation_id)
    return _OK


def _unauthorized() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "unauthorized"})


def _telegram_failed(e: Exception) -> JSONResponse:
    logger.error(
        "telegram admin call failed",
        extra={"extra_fields": safe_log_context(correlationId=get_correlation_id(), error=str(e))},
    )
    return JSONResponse(status_code=502, content={"error": str(e)})


@router.post("/setup-webhook")
async def setup_webhook(request: Request) -> Any:
    """Register <webhookUrl>/telegram/webhook with Telegram."""
    if not verify_tool_auth(request):
        return _unauthorized()

    try:
        body = await request.json()
    except Exception:
        body = None
    webhook_base = body.get("webhookUrl") if isinstance(body, dict) else None
    if not webhook_base or not isinstance(webhook_base, str):
        return JSONResponse(status_code=400, content={"error": "webhookUrl is required"})

    webhook_url = f"{webhook_base.rstrip('/')}/telegram/webhook"
    secret = os.environ.get("TELEGRAM_WEBHOOK_SECRET") or None
    try:
        success = await _get_client().set_webhook(webhook_url, secret_token=secret)
    except (TelegramApiError, RuntimeError) as e:
        return _telegram_failed(e)

    logger.info(
        "telegram webhook registered",
        extra={"extra_fields": safe_log_context(success=success)},
    )
    return {"success": success, "webhook": webhook_url}


@router.get("/webhook-info")
async def webhook_info(request: Request) -> Any:
    if not verify_tool_auth(request):
        return _unauthorized()
    try:
        return await _get_client().get_webhook_info()
    except (TelegramApiError, RuntimeError) as e:
        return _telegram_failed(e)


@router.delete("/webhook")
async def delete_webhook(request: Request) -> Any:
    if not verify_tool_auth(request):
        return _unauthorized()
    try:
        success = await _get_client().delete_webhook()
    except (TelegramApiError, RuntimeError) as e:
        return _telegram_failed(e)
    return {"success": success}
