"""Channel capability interface and the normalized inbound event.

Each chat channel (Telegram, WhatsApp) implements ChannelTransport once;
ConversationHandler holds all buffering/correlation/reply logic on top.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from intakebot.domain.files import Attachment


@dataclass(frozen=True)
class InboundEvent:
    """One inbound chat event, already parsed from the channel payload.

    Attributes:
        channel: "telegram" | "whatsapp".
        user_id: Channel-native user id (Telegram user id, WhatsApp phone).
        chat_id: Where replies go (Telegram chat id, "whatsapp:+..." address).
        display_name: Sender's display name, if the channel provides one.
        text: Message text, or the caption when an attachment is present.
        attachment: File sent with the event, if any.
        sender_phone: Phone the channel itself vouches for (WhatsApp only).
    """

    channel: str
    user_id: str
    chat_id: str
    display_name: str | None = None
    text: str | None = None
    attachment: Attachment | None = None
    sender_phone: str | None = None


class ChannelTransport(Protocol):
    """What the conversation handler needs from a chat channel."""

    channel: str
    error_id_prefix: str
    max_attachment_bytes: int
    max_message_length: int
    send_pacing_seconds: float
    transport_prefix: str | None

    async def send_text(self, chat_id: str, text: str) -> None:
        """Send one message. Raises the channel's transport error on failure."""
        ...

    async def send_typing(self, chat_id: str) -> None:
        """Best-effort typing indicator. Must not raise."""
        ...

    async def resolve_file_url(self, attachment: Attachment) -> str | None:
        """Retrievable URL for an attachment. Raises on transport failure."""
        ...
