"""Conversation sessions and the per-session pending file buffer.

One SessionStore per channel; sessions are never shared across channels,
so the same person on Telegram and WhatsApp has two independent sessions.

State is process-local and volatile: a restart drops every buffered file
that was not yet submitted. The store sits behind KeyValueStore so the
in-memory map can be replaced by an external key-value service without
touching callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterator, Protocol

from intakebot.domain.files import BufferedFileRef
from intakebot.infra.time import is_older_than, utc_now


@dataclass
class ConversationSession:
    """Per-channel, per-user conversation state.

    Implicit state machine:
        NEW            -> no files, no phone
        AWAITING_PHONE -> files buffered, phone unknown
        PHONE_KNOWN    -> phone known (files may or may not be buffered)
        SUBMITTED      -> clear() was called after a successful submission;
                          the candidate may keep chatting and send more files.
    """

    key: str
    last_activity: datetime = field(default_factory=utc_now)
    files: list[BufferedFileRef] = field(default_factory=list)
    phone: str | None = None
    submitted: bool = False

    @property
    def state(self) -> str:
        if self.submitted and not self.files:
            return "SUBMITTED"
        if self.phone:
            return "PHONE_KNOWN"
        if self.files:
            return "AWAITING_PHONE"
        return "NEW"

    def touch(self) -> None:
        self.last_activity = utc_now()


class KeyValueStore(Protocol):
    """Narrow storage interface behind the session map."""

    def get(self, key: str) -> ConversationSession | None: ...

    def set(self, key: str, value: ConversationSession) -> None: ...

    def delete(self, key: str) -> None: ...

    def items(self) -> Iterator[tuple[str, ConversationSession]]: ...


class InMemoryKeyValueStore:
    """Dict-backed KeyValueStore (default, volatile)."""

    def __init__(self) -> None:
        self._data: dict[str, ConversationSession] = {}

    def get(self, key: str) -> ConversationSession | None:
        return self._data.get(key)

    def set(self, key: str, value: ConversationSession) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> Iterator[tuple[str, ConversationSession]]:
        # copy: callers may delete while iterating
        return iter(list(self._data.items()))

    def __len__(self) -> int:
        return len(self._data)


class SessionStore:
    """Sessions of one channel, keyed by the channel's native user id."""

    def __init__(self, channel: str, store: KeyValueStore | None = None) -> None:
        self.channel = channel
        self._store = store if store is not None else InMemoryKeyValueStore()

    def _key(self, user_id: str | int) -> str:
        return f"{self.channel}:{user_id}"

    def get(self, user_id: str | int) -> ConversationSession | None:
        return self._store.get(self._key(user_id))

    def get_or_create(self, user_id: str | int) -> ConversationSession:
        """Resolve the session for a user, creating it on first contact."""
        key = self._key(user_id)
        session = self._store.get(key)
        if session is None:
            session = ConversationSession(key=key)
            self._store.set(key, session)
        session.touch()
        return session

    def append(self, user_id: str | int, ref: BufferedFileRef) -> None:
        """Buffer a file at the end of the user's list. No dedup."""
        session = self.get_or_create(user_id)
        session.files.append(ref)
        session.submitted = False

    def snapshot(self, user_id: str | int) -> tuple[BufferedFileRef, ...]:
        """Ordered, read-only view of the buffer. Does not clear it."""
        session = self.get(user_id)
        return tuple(session.files) if session else ()

    def clear(self, user_id: str | int) -> None:
        """Drop buffered files once an application is fully submitted."""
        session = self.get(user_id)
        if session is not None:
            session.files = []
            session.submitted = True

    def remember_phone(self, user_id: str | int, phone: str) -> None:
        session = self.get_or_create(user_id)
        session.phone = phone

    def cleanup(self, max_age: timedelta) -> int:
        """Remove sessions idle for longer than max_age. Returns count."""
        now = utc_now()
        removed = 0
        for key, session in self._store.items():
            if is_older_than(session.last_activity, max_age, now):
                self._store.delete(key)
                removed += 1
        return removed
