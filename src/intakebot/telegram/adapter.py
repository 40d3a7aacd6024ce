"""Telegram adapter - validate and normalize Bot API updates.

Handles `message` updates only (the webhook is registered with
allowed_updates=["message"]): text, documents, videos and photos.
"""

import hmac
from typing import Any

from intakebot.conversation.transport import InboundEvent
from intakebot.domain.files import Attachment

CHANNEL = "telegram"


class InvalidPayloadError(Exception):
    """Raised when a Telegram update has an invalid or unsupported shape."""

    pass


class SignatureVerificationError(Exception):
    """Raised when the webhook secret token does not match."""

    pass


def verify_secret_token(header_value: str | None, expected: str) -> None:
    """Check X-Telegram-Bot-Api-Secret-Token against the configured secret.

    Raises:
        SignatureVerificationError: If the header is missing or differs.
    """
    if not header_value:
        raise SignatureVerificationError("missing secret token header")
    if not hmac.compare_digest(header_value, expected):
        raise SignatureVerificationError("secret token mismatch")


def extract_attachment(message: dict[str, Any]) -> Attachment | None:
    """Pick the file carried by a message: document, then video, then photo.

    For photos Telegram sends several sizes; the largest (last) is used.
    """
    document = message.get("document")
    if isinstance(document, dict) and document.get("file_id"):
        return Attachment(
            file_id=document["file_id"],
            media_type="document",
            file_name=document.get("file_name"),
            mime_type=document.get("mime_type"),
            file_size=document.get("file_size"),
        )

    video = message.get("video")
    if isinstance(video, dict) and video.get("file_id"):
        return Attachment(
            file_id=video["file_id"],
            media_type="video",
            file_name=video.get("file_name"),
            mime_type=video.get("mime_type"),
            file_size=video.get("file_size"),
            duration=video.get("duration"),
        )

    photos = message.get("photo")
    if isinstance(photos, list) and photos:
        largest = photos[-1]
        if isinstance(largest, dict) and largest.get("file_id"):
            return Attachment(
                file_id=largest["file_id"],
                media_type="photo",
                mime_type="image/jpeg",
                file_size=largest.get("file_size"),
            )

    return None


def normalize(update: dict[str, Any]) -> InboundEvent:
    """Normalize a Telegram update into an InboundEvent.

    Raises:
        InvalidPayloadError: If the update carries no usable message.
    """
    message = update.get("message")
    if not isinstance(message, dict):
        raise InvalidPayloadError("no message in update")

    chat = message.get("chat")
    sender = message.get("from")
    if not isinstance(chat, dict) or chat.get("id") is None:
        raise InvalidPayloadError("missing chat id")
    if not isinstance(sender, dict) or sender.get("id") is None:
        raise InvalidPayloadError("missing sender id")

    attachment = extract_attachment(message)
    text = message.get("caption") if attachment else message.get("text")
    if attachment is None and not (isinstance(text, str) and text.strip()):
        raise InvalidPayloadError("no text or supported attachment")

    return InboundEvent(
        channel=CHANNEL,
        user_id=str(sender["id"]),
        chat_id=str(chat["id"]),
        display_name=sender.get("first_name") or sender.get("username"),
        text=text if isinstance(text, str) else None,
        attachment=attachment,
    )
