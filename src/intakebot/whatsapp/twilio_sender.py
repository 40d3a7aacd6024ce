"""Outbound WhatsApp messaging via the Twilio Messages API.

Security: NEVER log the recipient or text. Only log masked phones and lengths.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import httpx

from intakebot.domain.files import Attachment
from intakebot.domain.phone import WHATSAPP_PREFIX
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import mask_phone, safe_log_context

logger = get_logger(__name__)

API_BASE = "https://api.twilio.com/2010-04-01"

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 10

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2

# Twilio sandbox sender
DEFAULT_WHATSAPP_FROM = "whatsapp:+14155238886"

# Twilio accepts inbound WhatsApp media up to 16 MB. Webhooks carry no media
# size, so this only feeds the "send a smaller file" wording.
MAX_MEDIA_BYTES = 16 * 1024 * 1024

MAX_MESSAGE_LENGTH = 4000
SEND_PACING_SECONDS = 0.5


class TwilioSendError(Exception):
    """Raised when Twilio rejects a message or cannot be reached."""

    pass


def _get_config() -> dict[str, Any]:
    """Twilio config from environment.

    Required:
    - TWILIO_ACCOUNT_SID
    - TWILIO_AUTH_TOKEN

    Optional:
    - TWILIO_WHATSAPP_FROM (default: sandbox number)
    """
    account_sid = os.environ.get("TWILIO_ACCOUNT_SID", "")
    auth_token = os.environ.get("TWILIO_AUTH_TOKEN", "")
    if not account_sid or not auth_token:
        raise RuntimeError(
            "Missing Twilio config: TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN required"
        )
    return {
        "account_sid": account_sid,
        "auth_token": auth_token,
        "from_address": os.environ.get("TWILIO_WHATSAPP_FROM", DEFAULT_WHATSAPP_FROM),
    }


def to_whatsapp_address(to: str) -> str:
    return to if to.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{to}"


class TwilioSender:
    """Sends WhatsApp text messages through one Twilio account."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_address: str = DEFAULT_WHATSAPP_FROM,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{API_BASE}/Accounts/{account_sid}/Messages.json"
        self._auth = (account_sid, auth_token)
        self._from = to_whatsapp_address(from_address)
        self._http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)

    async def send_text(self, to: str, text: str) -> str | None:
        """Send a text message. Returns the Twilio message SID.

        Raises:
            TwilioSendError: On network/HTTP errors after retry.
        """
        address = to_whatsapp_address(to)
        data = {"From": self._from, "To": address, "Body": text}

        log_ctx = safe_log_context(
            to=mask_phone(address), text_len=len(text), provider="twilio"
        )

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._http.post(self._url, data=data, auth=self._auth)
                response.raise_for_status()
            except httpx.HTTPError as e:
                is_5xx = (
                    isinstance(e, httpx.HTTPStatusError) and 500 <= e.response.status_code < 600
                )
                is_network = isinstance(e, httpx.TransportError)

                if attempt < MAX_RETRIES and (is_5xx or is_network):
                    logger.warning(
                        "outbound send via twilio failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, error_type=type(e).__name__
                            )
                        },
                    )
                    await asyncio.sleep(RETRY_DELAY)
                    continue

                logger.error(
                    "outbound send via twilio failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                raise TwilioSendError(f"twilio send failed: {type(e).__name__}") from e

            logger.info(
                "outbound message sent via twilio",
                extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
            )
            try:
                return response.json().get("sid")
            except ValueError:
                return None

        raise TwilioSendError("twilio send failed")

    async def aclose(self) -> None:
        await self._http.aclose()


class WhatsAppTransport:
    """ChannelTransport over Twilio. No typing indicator on this channel."""

    channel = "whatsapp"
    error_id_prefix = "WA"
    max_message_length = MAX_MESSAGE_LENGTH
    send_pacing_seconds = SEND_PACING_SECONDS
    transport_prefix = WHATSAPP_PREFIX
    max_attachment_bytes = MAX_MEDIA_BYTES

    def __init__(self, sender: TwilioSender) -> None:
        self.sender = sender

    @classmethod
    def from_env(cls) -> "WhatsAppTransport":
        config = _get_config()
        sender = TwilioSender(
            config["account_sid"], config["auth_token"], config["from_address"]
        )
        return cls(sender)

    async def send_text(self, chat_id: str, text: str) -> None:
        await self.sender.send_text(chat_id, text)

    async def send_typing(self, chat_id: str) -> None:
        return None

    async def resolve_file_url(self, attachment: Attachment) -> str | None:
        # Twilio puts the media URL in the webhook itself
        return attachment.file_url
