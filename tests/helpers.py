"""Shared test helpers for intakebot tests.

In-memory fakes for the channel transport, agent gateway, durable storage
and CRM, plus payload builders. These are NOT fixtures - they are regular
classes and functions.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from intakebot.agent.gateway import AgentReply
from intakebot.domain.files import Attachment, BufferedFileRef


class FakeTransport:
    """ChannelTransport that records what would have been sent."""

    def __init__(
        self,
        channel: str = "telegram",
        *,
        max_attachment_bytes: int = 18 * 1024 * 1024,
        max_message_length: int = 4000,
        file_urls: dict[str, str] | None = None,
        fail_send: bool = False,
        fail_resolve: bool = False,
    ) -> None:
        self.channel = channel
        self.error_id_prefix = "TG" if channel == "telegram" else "WA"
        self.max_attachment_bytes = max_attachment_bytes
        self.max_message_length = max_message_length
        self.send_pacing_seconds = 0
        self.transport_prefix = "whatsapp:" if channel == "whatsapp" else None
        self.file_urls = file_urls or {}
        self.fail_send = fail_send
        self.fail_resolve = fail_resolve
        self.sent: list[tuple[str, str]] = []
        self.typing: list[str] = []
        self.resolved: list[str] = []

    async def send_text(self, chat_id: str, text: str) -> None:
        if self.fail_send:
            raise RuntimeError("send failed")
        self.sent.append((chat_id, text))

    async def send_typing(self, chat_id: str) -> None:
        self.typing.append(chat_id)

    async def resolve_file_url(self, attachment: Attachment) -> str | None:
        self.resolved.append(attachment.file_id)
        if self.fail_resolve:
            raise RuntimeError("getFile failed")
        return self.file_urls.get(attachment.file_id, f"https://files.example/{attachment.file_id}")

    def texts(self, chat_id: str | None = None) -> list[str]:
        return [text for cid, text in self.sent if chat_id is None or cid == chat_id]


class FakeGateway:
    """AgentBackend returning canned replies.

    `reply` may be an AgentReply, a dict in the wire shape, an exception
    instance, or a callable (text, thread_id, resource_id) -> one of those.
    """

    def __init__(self, reply: Any = None, *, delay: float = 0) -> None:
        self.reply = reply if reply is not None else {"text": "Hello!"}
        self.delay = delay
        self.calls: list[dict[str, str]] = []

    async def generate(self, text: str, *, thread_id: str, resource_id: str) -> AgentReply:
        self.calls.append({"text": text, "thread_id": thread_id, "resource_id": resource_id})
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.reply
        if callable(reply) and not isinstance(reply, AgentReply):
            reply = reply(text, thread_id, resource_id)
            if asyncio.iscoroutine(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, AgentReply):
            return reply
        return AgentReply.model_validate(reply)


class FakeStorage:
    """DurableStorage returning deterministic Drive-like URLs."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[tuple[str, str, str | None]] = []

    async def upload(self, source_url: str, file_name: str, mime_type: str | None = None) -> str | None:
        self.uploads.append((source_url, file_name, mime_type))
        if self.fail:
            return None
        return f"https://drive.example/{file_name}"


@dataclass
class FakeLead:
    lead_url: str = "https://agency.amocrm.ru/leads/detail/1"


@dataclass
class FakeCrm:
    """LeadCreator recording the files each lead received."""

    fail: bool = False
    leads: list[dict[str, Any]] = field(default_factory=list)

    async def create_candidate_lead(
        self,
        application: Any,
        application_id: str,
        resume: BufferedFileRef | None = None,
        video: BufferedFileRef | None = None,
    ) -> FakeLead:
        if self.fail:
            raise RuntimeError("crm down")
        self.leads.append(
            {
                "application_id": application_id,
                "phone": application.phone,
                "resume": resume,
                "video": video,
            }
        )
        return FakeLead()


def telegram_update(
    user_id: int = 111,
    *,
    text: str | None = None,
    document: dict[str, Any] | None = None,
    video: dict[str, Any] | None = None,
    photo: list[dict[str, Any]] | None = None,
    caption: str | None = None,
    update_id: int = 1,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "message_id": update_id,
        "from": {"id": user_id, "first_name": "Anna"},
        "chat": {"id": user_id, "type": "private"},
        "date": 1700000000,
    }
    if text is not None:
        message["text"] = text
    if document is not None:
        message["document"] = document
    if video is not None:
        message["video"] = video
    if photo is not None:
        message["photo"] = photo
    if caption is not None:
        message["caption"] = caption
    return {"update_id": update_id, "message": message}


def run(coro_or_fn: Callable[[], Any] | Any) -> Any:
    """Run a coroutine (or a zero-arg async function) to completion."""
    coro = coro_or_fn() if callable(coro_or_fn) else coro_or_fn
    return asyncio.run(coro)
