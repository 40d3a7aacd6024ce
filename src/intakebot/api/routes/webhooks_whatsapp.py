"""WhatsApp webhook route - Twilio integration.

Twilio expects TwiML back; replies are sent through the Messages API from a
background task, so the webhook always answers with an empty <Response/>.

Security:
- Optional X-Twilio-Signature validation (TWILIO_VALIDATE_SIGNATURE=1)
- Logs contain NO phones or message text
"""

import os

from fastapi import APIRouter, BackgroundTasks, Header, Request, Response

from intakebot.api import services
from intakebot.conversation.handler import ConversationHandler
from intakebot.observability.correlation import get_correlation_id
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context
from intakebot.whatsapp.twilio_adapter import (
    EMPTY_TWIML,
    InvalidPayloadError,
    SignatureVerificationError,
    normalize,
    parse_form,
    verify_signature,
)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])

logger = get_logger(__name__)


def _get_handler() -> ConversationHandler:
    """Get the WhatsApp handler (allows test injection)."""
    return services.get_whatsapp_handler()


def _twiml() -> Response:
    return Response(status_code=200, content=EMPTY_TWIML, media_type="text/xml")


def _signed_url(request: Request) -> str:
    # Behind a proxy the public URL differs from what the app sees
    return os.environ.get("TWILIO_WEBHOOK_URL") or str(request.url)


@router.post("/webhook")
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_twilio_signature: str | None = Header(None, alias="X-Twilio-Signature"),
) -> Response:
    """Receive a Twilio WhatsApp message.

    IMPORTANT: Always return 200 with empty TwiML, even on errors.
    """
    correlation_id = get_correlation_id()

    try:
        form = parse_form(await request.body())
    except Exception:
        logger.warning(
            "failed to read form body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _twiml()

    if os.environ.get("TWILIO_VALIDATE_SIGNATURE") == "1":
        try:
            verify_signature(
                _signed_url(request),
                form,
                x_twilio_signature,
                os.environ.get("TWILIO_AUTH_TOKEN", ""),
            )
        except SignatureVerificationError as e:
            logger.warning(
                "twilio signature verification failed",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
            )
            return _twiml()

    try:
        event = normalize(form)
    except InvalidPayloadError as e:
        logger.debug(
            "twilio payload ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, reason=str(e))},
        )
        return _twiml()

    try:
        handler = _get_handler()
    except RuntimeError as e:
        logger.error(
            "whatsapp handler unavailable",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return _twiml()

    message_sid = form.get("MessageSid", "")
    logger.info(
        "whatsapp message received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_sid_prefix=message_sid[:8],
                has_text=bool(event.text),
                media_type=event.attachment.media_type if event.attachment else None,
            )
        },
    )
    background_tasks.add_task(handler.handle, event, correlation_id)
    return _twiml()
