"""File correlation store - phone-keyed handoff between buffered files
and the application submission.

publish() is called whenever a phone becomes known for a session with
buffered files; consume() is called once by the submission step and
removes the entry, so each file reaches the CRM at most once per phone.
A file is staged under one phone at a time: publishing it under a new
phone detaches it from the previous one.

Both operations take the same lock and never suspend between reading the
existing entry and writing the merged one, so they stay atomic on the event
loop and under FastAPI's threadpool alike.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from intakebot.domain.files import BufferedFileRef
from intakebot.domain.phone import normalize_phone
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import mask_phone, safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class CorrelationEntry:
    """At most one resume and one intro video for a phone."""

    resume: BufferedFileRef | None = None
    video: BufferedFileRef | None = None

    @property
    def is_empty(self) -> bool:
        return self.resume is None and self.video is None


EMPTY_ENTRY = CorrelationEntry()


def pick_first_per_kind(refs: Iterable[BufferedFileRef]) -> CorrelationEntry:
    """First resume and first video of an ordered sequence."""
    resume: BufferedFileRef | None = None
    video: BufferedFileRef | None = None
    for ref in refs:
        if ref.kind == "resume" and resume is None:
            resume = ref
        elif ref.kind == "video" and video is None:
            video = ref
    return CorrelationEntry(resume=resume, video=video)


class FileCorrelationStore:
    """Phone -> CorrelationEntry map with upsert-on-publish, pop-on-consume."""

    def __init__(self) -> None:
        self._entries: dict[str, CorrelationEntry] = {}
        # file_id -> phone key the file is currently staged under
        self._owners: dict[str, str] = {}
        self._lock = threading.Lock()

    def publish(
        self, phone: str, refs: Iterable[BufferedFileRef]
    ) -> CorrelationEntry | None:
        """Stage files for a phone without overwriting kinds already staged.

        Returns the resulting entry, or None if nothing was staged (empty
        phone or no resume/video among refs).
        """
        key = normalize_phone(phone)
        if not key:
            return None

        incoming = pick_first_per_kind(refs)
        if incoming.is_empty:
            return None

        with self._lock:
            existing = self._entries.get(key, EMPTY_ENTRY)
            merged = CorrelationEntry(
                resume=existing.resume or incoming.resume,
                video=existing.video or incoming.video,
            )
            for ref in (merged.resume, merged.video):
                if ref is not None:
                    self._detach(ref, new_owner=key)
            self._entries[key] = merged

        logger.info(
            "files staged for phone",
            extra={
                "extra_fields": safe_log_context(
                    phone=mask_phone(key),
                    has_resume=merged.resume is not None,
                    has_video=merged.video is not None,
                    resume_has_url=bool(merged.resume and merged.resume.file_url),
                    video_has_url=bool(merged.video and merged.video.file_url),
                )
            },
        )
        return merged

    def _detach(self, ref: BufferedFileRef, new_owner: str) -> None:
        """Move ownership of a file to new_owner, dropping it from the
        entry of any other phone it was staged under. Caller holds the lock.
        """
        owner = self._owners.get(ref.file_id)
        self._owners[ref.file_id] = new_owner
        if owner is None or owner == new_owner:
            return
        entry = self._entries.get(owner)
        if entry is None:
            return
        remaining = CorrelationEntry(
            resume=None if entry.resume and entry.resume.file_id == ref.file_id else entry.resume,
            video=None if entry.video and entry.video.file_id == ref.file_id else entry.video,
        )
        if remaining.is_empty:
            del self._entries[owner]
        else:
            self._entries[owner] = remaining

    def consume(self, phone: str) -> CorrelationEntry:
        """Return and remove the entry for a phone (empty entry if none)."""
        key = normalize_phone(phone)
        if not key:
            return EMPTY_ENTRY
        with self._lock:
            entry = self._entries.pop(key, EMPTY_ENTRY)
            for ref in (entry.resume, entry.video):
                if ref is not None and self._owners.get(ref.file_id) == key:
                    del self._owners[ref.file_id]
            return entry

    def peek(self, phone: str) -> CorrelationEntry:
        """Read without removing (diagnostics and tests)."""
        key = normalize_phone(phone)
        with self._lock:
            return self._entries.get(key, EMPTY_ENTRY)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._owners.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Process-wide instance shared by both channels and the tool endpoints
file_store = FileCorrelationStore()
