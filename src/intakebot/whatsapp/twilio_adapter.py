"""Twilio WhatsApp adapter - validate and normalize webhook payloads.

Twilio posts application/x-www-form-urlencoded bodies:
From="whatsapp:+...", Body, NumMedia, MediaUrl0, MediaContentType0, ...
"""

import base64
import hashlib
import hmac
from typing import Any, Mapping
from urllib.parse import parse_qs, urlsplit

from intakebot.conversation.transport import InboundEvent
from intakebot.domain.files import Attachment, MediaType
from intakebot.domain.phone import WHATSAPP_PREFIX, normalize_phone

CHANNEL = "whatsapp"

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


class InvalidPayloadError(Exception):
    """Raised when a Twilio payload has invalid shape."""

    pass


class SignatureVerificationError(Exception):
    """Raised when X-Twilio-Signature verification fails."""

    pass


def parse_form(body: bytes) -> dict[str, str]:
    """Decode a form-encoded body, keeping the first value per key."""
    parsed = parse_qs(body.decode("utf-8"), keep_blank_values=True)
    return {key: values[0] for key, values in parsed.items() if values}


def verify_signature(
    url: str, params: Mapping[str, str], signature_header: str | None, auth_token: str
) -> None:
    """Verify Twilio request signature (HMAC-SHA1, base64).

    Twilio signs the full request URL followed by every POST parameter,
    sorted by name, as name+value concatenations.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    signed = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    computed = base64.b64encode(
        hmac.new(auth_token.encode("utf-8"), signed.encode("utf-8"), hashlib.sha1).digest()
    ).decode("ascii")

    if not hmac.compare_digest(computed, signature_header):
        raise SignatureVerificationError("signature mismatch")


def _media_type(content_type: str | None) -> MediaType:
    ct = (content_type or "").lower()
    if ct.startswith("video/"):
        return "video"
    if ct.startswith("image/"):
        return "image"
    if ct.startswith("audio/"):
        return "audio"
    return "document"


def _file_name_from_url(url: str) -> str | None:
    name = urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]
    return name or None


def extract_attachment(form: Mapping[str, Any]) -> Attachment | None:
    """First media item of the message, if any.

    Twilio gives no stable file id or name: MessageSid stands in for the id
    and the last URL segment for the name.
    """
    try:
        num_media = int(form.get("NumMedia") or 0)
    except (TypeError, ValueError):
        num_media = 0
    media_url = form.get("MediaUrl0")
    if num_media == 0 or not media_url:
        return None

    content_type = form.get("MediaContentType0")
    return Attachment(
        file_id=str(form.get("MessageSid") or media_url),
        media_type=_media_type(content_type),
        file_name=_file_name_from_url(media_url),
        mime_type=content_type,
        file_url=media_url,
    )


def normalize(form: Mapping[str, Any]) -> InboundEvent:
    """Normalize a Twilio WhatsApp payload into an InboundEvent.

    The sender phone (From without the "whatsapp:" scheme) doubles as the
    user id, so WhatsApp sessions always know their phone.

    Raises:
        InvalidPayloadError: If From is missing or nothing usable was sent.
    """
    sender = form.get("From")
    if not sender or not isinstance(sender, str):
        raise InvalidPayloadError("missing From")

    phone = normalize_phone(sender, transport_prefix=WHATSAPP_PREFIX)
    if not phone:
        raise InvalidPayloadError("invalid From")

    attachment = extract_attachment(form)
    body = form.get("Body")
    text = body if isinstance(body, str) and body.strip() else None
    if attachment is None and text is None:
        raise InvalidPayloadError("no body or media")

    chat_id = sender if sender.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{phone}"
    return InboundEvent(
        channel=CHANNEL,
        user_id=phone,
        chat_id=chat_id,
        display_name=form.get("ProfileName") or None,
        text=text,
        attachment=attachment,
        sender_phone=phone,
    )
