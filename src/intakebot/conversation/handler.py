"""Channel-agnostic conversation handler.

Drives one inbound event through:
1. session resolution (+ typing indicator),
2. attachment branch: size guard, classification, URL resolution, durable
   re-upload, buffering and acknowledgment,
3. text branch: phone correlation, agent turn, post-turn correlation,
   reply fallback, markup stripping and split delivery.

Events of one session are serialized with a per-session asyncio.Lock;
different sessions run concurrently. Every event has its own error boundary:
a failure produces a logged error id and an apology to the candidate, never
an exception out of handle().

Security: NEVER log message text, file names or raw phones.
"""

from __future__ import annotations

import asyncio
import os
import time
from datetime import timedelta
from typing import Protocol

from intakebot.agent.gateway import AgentReply
from intakebot.conversation.transport import ChannelTransport, InboundEvent
from intakebot.domain.file_store import FileCorrelationStore, file_store
from intakebot.domain.files import (
    Attachment,
    Classification,
    classify_attachment,
    format_duration,
    to_buffered_ref,
)
from intakebot.domain.phone import extract_phone, normalize_phone, plausible_phone
from intakebot.domain.replies import SUBMIT_TOOL, resolve_reply_text, split_message, strip_markup
from intakebot.domain.sessions import ConversationSession, SessionStore
from intakebot.observability.correlation import (
    generate_correlation_id,
    get_correlation_id,
    new_error_id,
    reset_correlation_id,
    set_correlation_id,
)
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import mask_phone, safe_log_context

logger = get_logger(__name__)

DEFAULT_SUPPORT_CONTACT = "+7 968 599 93 60"
DEFAULT_SESSION_MAX_AGE_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 10 * 60

_BYTES_PER_MB = 1024 * 1024

# Default names used when re-uploading files the channel sent unnamed
_DEFAULT_UPLOAD_NAMES = {"video": "intro-video.mp4", "resume": "resume.pdf"}

_CAPTION_LABELS = {"video": "intro video", "resume": "resume"}


class AgentBackend(Protocol):
    async def generate(self, text: str, *, thread_id: str, resource_id: str) -> AgentReply: ...


class DurableStorage(Protocol):
    async def upload(
        self, source_url: str, file_name: str, mime_type: str | None = None
    ) -> str | None:
        """Copy a file to durable storage. Returns its URL, None on any failure."""
        ...


# ── User-facing texts ─────────────────────────────────────


def apology_text(contact: str) -> str:
    return (
        "I apologize, but I encountered an error processing your message. "
        f"Please try again or contact us directly at {contact}."
    )


def oversize_text(attachment: Attachment, limit_bytes: int) -> str:
    size_mb = f"{(attachment.file_size or 0) / _BYTES_PER_MB:.1f}"
    limit_mb = f"{limit_bytes / _BYTES_PER_MB:.0f}"
    if attachment.is_video:
        return (
            f"Your video is too large for me to download (about {size_mb} MB). "
            f"I can only accept files up to around {limit_mb} MB.\n\n"
            f"Please send a shorter or more compressed introduction video (up to ~{limit_mb} MB), "
            "or send a link to the video (for example on Google Drive or YouTube)."
        )
    return (
        f"Your file is too large for me to download (about {size_mb} MB). "
        f"I can only accept files up to around {limit_mb} MB.\n\n"
        "Please send a smaller version or a shareable link instead."
    )


def download_failed_text(limit_bytes: int) -> str:
    return (
        "😔 I couldn't download your file. This often happens when the file is too large.\n\n"
        f"Please try sending a smaller file (up to ~{limit_bytes / _BYTES_PER_MB:.0f} MB) "
        "or share a link instead."
    )


def _name_suffix(file_name: str | None) -> str:
    return f" ({file_name})" if file_name else ""


def acknowledgment_text(classification: Classification | None, attachment: Attachment) -> str:
    if classification == "video":
        duration = format_duration(attachment.duration)
        return (
            "✅ Thank you! I've received your introduction video"
            f"{_name_suffix(duration or None)}. "
            "This will help families get to know you better!\n\n"
            "Is there anything else you'd like to add or shall we continue?"
        )
    if classification == "resume":
        return (
            f"✅ Thank you! I've received your resume{_name_suffix(attachment.file_name)}.\n\n"
            "Is there anything else you'd like to share, or shall we continue with your application?"
        )
    if classification == "photo":
        return (
            "I received your photo. If this is a document (like a certificate), please send it "
            "as a file for better quality. If you meant to send your resume or video, "
            "please send those as well."
        )
    return (
        f"I received your file{_name_suffix(attachment.file_name)}. "
        "Could you let me know what this is? Is it your resume/CV or introduction video?"
    )


def caption_prompt(classification: Classification | None, attachment: Attachment, caption: str) -> str:
    label = _CAPTION_LABELS.get(classification or "", "file")
    return (
        f"[Candidate just sent their {label}{_name_suffix(attachment.file_name)}.] "
        f"They also wrote: {caption.strip()}"
    )


# ── Handler ───────────────────────────────────────────────


class ConversationHandler:
    """Buffering, correlation and reply delivery for one channel."""

    def __init__(
        self,
        transport: ChannelTransport,
        gateway: AgentBackend,
        *,
        sessions: SessionStore | None = None,
        correlation_store: FileCorrelationStore | None = None,
        storage: DurableStorage | None = None,
        support_contact: str | None = None,
        session_max_age: timedelta | None = None,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        self.transport = transport
        self.gateway = gateway
        self.sessions = sessions or SessionStore(transport.channel)
        self.correlation_store = correlation_store if correlation_store is not None else file_store
        self.storage = storage
        self.support_contact = support_contact or os.environ.get(
            "SUPPORT_CONTACT", DEFAULT_SUPPORT_CONTACT
        )
        self.session_max_age = session_max_age or timedelta(
            seconds=int(
                os.environ.get("SESSION_MAX_AGE_SECONDS", DEFAULT_SESSION_MAX_AGE_SECONDS)
            )
        )
        self.sweep_interval_seconds = (
            sweep_interval_seconds
            if sweep_interval_seconds is not None
            else float(
                os.environ.get("SESSION_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS)
            )
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_sweep = time.monotonic()

    # ── Entry point ───────────────────────────────────────

    async def handle(self, event: InboundEvent, correlation_id: str | None = None) -> None:
        """Process one inbound event. Never raises."""
        token = set_correlation_id(correlation_id or get_correlation_id() or generate_correlation_id())
        try:
            lock = self._locks.setdefault(event.user_id, asyncio.Lock())
            async with lock:
                try:
                    await self._process(event)
                except Exception:
                    await self._fail(event)
            self._maybe_sweep()
        finally:
            reset_correlation_id(token)

    async def _fail(self, event: InboundEvent) -> None:
        error_id = new_error_id(self.transport.error_id_prefix)
        logger.exception(
            "conversation event failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    error_id=error_id,
                    channel=self.transport.channel,
                )
            },
        )
        try:
            await self.transport.send_text(event.chat_id, apology_text(self.support_contact))
        except Exception:
            logger.exception(
                "apology send failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        error_id=error_id,
                        channel=self.transport.channel,
                    )
                },
            )

    async def _process(self, event: InboundEvent) -> None:
        session = self.sessions.get_or_create(event.user_id)
        if session.phone is None and event.sender_phone:
            session.phone = event.sender_phone

        await self.transport.send_typing(event.chat_id)

        if event.attachment is not None:
            classification, accepted = await self._handle_attachment(event, event.attachment)
            if not accepted:
                return
            if event.text and event.text.strip():
                prompt = caption_prompt(classification, event.attachment, event.text)
                await self._handle_text(event, session, prompt)
            return

        if event.text and event.text.strip():
            await self._handle_text(event, session, event.text)

    # ── Attachments ───────────────────────────────────────

    async def _handle_attachment(
        self, event: InboundEvent, attachment: Attachment
    ) -> tuple[Classification | None, bool]:
        """Buffer or reject one attachment.

        Returns (classification, accepted). A rejected attachment (too large,
        not downloadable) ends the event: its caption is not sent to the agent.
        """
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            channel=self.transport.channel,
            media_type=attachment.media_type,
            file_size=attachment.file_size,
        )
        limit = self.transport.max_attachment_bytes

        if attachment.file_size and attachment.file_size > limit:
            logger.warning("attachment over size limit", extra={"extra_fields": log_ctx})
            await self.transport.send_text(event.chat_id, oversize_text(attachment, limit))
            return None, False

        classification = classify_attachment(attachment)
        if classification not in ("resume", "video"):
            logger.info(
                "attachment not buffered",
                extra={"extra_fields": safe_log_context(**log_ctx, classification=classification)},
            )
            await self.transport.send_text(
                event.chat_id, acknowledgment_text(classification, attachment)
            )
            return classification, True

        try:
            file_url = attachment.file_url or await self.transport.resolve_file_url(attachment)
        except Exception as e:
            logger.warning(
                "attachment url resolution failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            await self.transport.send_text(event.chat_id, download_failed_text(limit))
            return None, False

        if file_url and self.storage is not None:
            durable_url = await self.storage.upload(
                file_url,
                attachment.file_name or _DEFAULT_UPLOAD_NAMES[classification],
                attachment.mime_type,
            )
            if durable_url:
                file_url = durable_url

        self.sessions.append(event.user_id, to_buffered_ref(attachment, classification, file_url))
        logger.info(
            "attachment buffered",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    kind=classification,
                    has_url=bool(file_url),
                    buffered=len(self.sessions.snapshot(event.user_id)),
                )
            },
        )
        await self.transport.send_text(event.chat_id, acknowledgment_text(classification, attachment))
        return classification, True

    # ── Text turns ────────────────────────────────────────

    def _accept_phone(self, session: ConversationSession, raw: str | None) -> str | None:
        """Return `raw` if it may become the session's correlation phone.

        Dates and short digit runs are dropped. Once a phone is known, only a
        full international number (after normalization) replaces it.
        """
        prefix = self.transport.transport_prefix
        candidate = plausible_phone(raw, transport_prefix=prefix)
        if candidate is None:
            return None
        known = normalize_phone(session.phone, transport_prefix=prefix)
        if known and known != candidate and not candidate.startswith("+"):
            logger.info(
                "weaker phone match ignored",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        channel=self.transport.channel,
                        known=mask_phone(known),
                    )
                },
            )
            return None
        return raw

    def _publish(self, event: InboundEvent, phone: str | None, stage: str) -> None:
        if not phone:
            return
        refs = self.sessions.snapshot(event.user_id)
        if not refs:
            return
        key = normalize_phone(phone, transport_prefix=self.transport.transport_prefix)
        entry = self.correlation_store.publish(key, refs)
        logger.info(
            "buffer correlated to phone",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    channel=self.transport.channel,
                    stage=stage,
                    phone=mask_phone(phone),
                    files=len(refs),
                    staged=entry is not None,
                )
            },
        )

    async def _handle_text(
        self, event: InboundEvent, session: ConversationSession, text: str
    ) -> None:
        stated_phone = self._accept_phone(session, extract_phone(text))
        if stated_phone:
            self.sessions.remember_phone(event.user_id, stated_phone)
        self._publish(event, stated_phone or session.phone, stage="before_agent")

        channel = self.transport.channel
        reply = await self.gateway.generate(
            text,
            thread_id=f"{channel}-{event.user_id}",
            resource_id=f"{channel}-user-{event.user_id}",
        )

        if reply.tool_succeeded(SUBMIT_TOOL):
            self.sessions.clear(event.user_id)

        agent_phone = self._accept_phone(session, reply.extract_phone())
        if agent_phone:
            self.sessions.remember_phone(event.user_id, agent_phone)
        self._publish(event, agent_phone or event.sender_phone, stage="after_agent")

        if not reply.text.strip():
            logger.warning(
                "agent returned no text",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        finish_reason=reply.finish_reason,
                        tool_calls=len(reply.tool_calls),
                        tool_results=len(reply.tool_results),
                        last_tool=reply.last_tool_name,
                    )
                },
            )

        await self._deliver(event.chat_id, resolve_reply_text(reply))

    async def _deliver(self, chat_id: str, text: str) -> None:
        chunks = split_message(strip_markup(text), self.transport.max_message_length)
        for i, chunk in enumerate(chunks):
            if i:
                await asyncio.sleep(self.transport.send_pacing_seconds)
            await self.transport.send_text(chat_id, chunk)

    # ── Housekeeping ──────────────────────────────────────

    def _maybe_sweep(self) -> None:
        now = time.monotonic()
        if now - self._last_sweep < self.sweep_interval_seconds:
            return
        self._last_sweep = now
        removed = self.sessions.cleanup(self.session_max_age)
        for user_id, lock in list(self._locks.items()):
            if not lock.locked() and self.sessions.get(user_id) is None:
                del self._locks[user_id]
        if removed:
            logger.info(
                "stale sessions removed",
                extra={
                    "extra_fields": safe_log_context(
                        channel=self.transport.channel, removed=removed
                    )
                },
            )
