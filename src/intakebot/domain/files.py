"""File references received from candidates and the resume/video
classification policy."""

import re
from dataclasses import dataclass
from typing import Literal

FileKind = Literal["resume", "video"]

# What the channel says the attachment is (transport-level media type)
MediaType = Literal["document", "video", "photo", "image", "audio"]

Classification = Literal["resume", "video", "photo"]

_RESUME_EXTENSIONS = re.compile(r"\.(pdf|doc|docx|rtf)$", re.IGNORECASE)
_RESUME_MIME_MARKERS = ("pdf", "word", "document")


@dataclass(frozen=True)
class Attachment:
    """Attachment as extracted from a channel payload, before classification."""

    file_id: str
    media_type: MediaType
    file_name: str | None = None
    mime_type: str | None = None
    file_size: int | None = None
    duration: int | None = None
    # Some channels (Twilio) hand out the media URL inside the webhook
    file_url: str | None = None

    @property
    def is_video(self) -> bool:
        return self.media_type == "video" or bool(
            self.mime_type and self.mime_type.startswith("video/")
        )


@dataclass(frozen=True)
class BufferedFileRef:
    """A received attachment waiting to be attached to an application."""

    kind: FileKind
    file_id: str
    file_name: str | None = None
    mime_type: str | None = None
    file_url: str | None = None
    duration: int | None = None

    def with_url(self, file_url: str | None) -> "BufferedFileRef":
        return BufferedFileRef(
            kind=self.kind,
            file_id=self.file_id,
            file_name=self.file_name,
            mime_type=self.mime_type,
            file_url=file_url,
            duration=self.duration if self.kind == "video" else None,
        )


def classify_attachment(attachment: Attachment) -> Classification | None:
    """Decide what an attachment is.

    Video wins over every document heuristic. None means unrecognized:
    the candidate is asked what the file is and nothing is buffered.
    """
    if attachment.is_video:
        return "video"

    mime = (attachment.mime_type or "").lower()
    if (
        attachment.media_type == "document"
        or any(marker in mime for marker in _RESUME_MIME_MARKERS)
        or (attachment.file_name and _RESUME_EXTENSIONS.search(attachment.file_name))
    ):
        return "resume"

    if attachment.media_type in ("photo", "image"):
        return "photo"

    return None


def to_buffered_ref(
    attachment: Attachment, kind: FileKind, file_url: str | None
) -> BufferedFileRef:
    """Build the immutable buffer entry for a classified attachment."""
    return BufferedFileRef(
        kind=kind,
        file_id=attachment.file_id,
        file_name=attachment.file_name,
        mime_type=attachment.mime_type,
        file_url=file_url,
        duration=attachment.duration if kind == "video" else None,
    )


def format_duration(seconds: int | None) -> str:
    """Render seconds as m:ss ("" when unknown)."""
    if not seconds:
        return ""
    return f"{seconds // 60}:{seconds % 60:02d}"
