"""Google Drive storage - durable copies of candidate files.

Channel file URLs are short-lived (Telegram file links expire after about an
hour, Twilio media may be purged), so buffered files are copied to a Drive
folder and shared "anyone with the link can view" so the CRM can fetch them.

Two auth modes:
1. OAuth (personal account): GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET,
   GOOGLE_REFRESH_TOKEN.
2. Service account (Shared Drive): GOOGLE_DRIVE_SERVICE_ACCOUNT_JSON.
Both need GOOGLE_DRIVE_FOLDER_ID.

upload() never raises: any failure is logged and returns None, and callers
keep the transient URL.
"""

from __future__ import annotations

import asyncio
import json
import os
import uuid
from typing import Any

import requests
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2 import service_account

from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive"]
TOKEN_URI = "https://oauth2.googleapis.com/token"

UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FILES_URL = "https://www.googleapis.com/drive/v3/files"

HTTP_TIMEOUT = int(os.environ.get("GOOGLE_DRIVE_HTTP_TIMEOUT", "120"))

DEFAULT_FILE_NAME = "candidate-file"


def download_url(file_id: str) -> str:
    return f"https://drive.google.com/uc?export=download&id={file_id}"


def _credentials_from_env() -> Credentials | None:
    """OAuth refresh-token credentials first, then a service account."""
    client_id = os.environ.get("GOOGLE_CLIENT_ID", "").strip()
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET", "").strip()
    refresh_token = os.environ.get("GOOGLE_REFRESH_TOKEN", "").strip()
    if client_id and client_secret and refresh_token:
        return oauth2_credentials.Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            token_uri=TOKEN_URI,
            scopes=SCOPES,
        )

    raw = os.environ.get("GOOGLE_DRIVE_SERVICE_ACCOUNT_JSON", "").strip()
    if raw:
        try:
            info = json.loads(raw)
        except ValueError as e:
            raise RuntimeError("Invalid GOOGLE_DRIVE_SERVICE_ACCOUNT_JSON") from e
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)

    return None


def _multipart_body(metadata: dict[str, Any], content: bytes, mime_type: str) -> tuple[bytes, str]:
    """Build a multipart/related body (metadata part + media part)."""
    boundary = f"intakebot-{uuid.uuid4().hex}"
    head = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata)}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {mime_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + content + tail, f"multipart/related; boundary={boundary}"


class GoogleDriveStorage:
    """Uploads files to one Drive folder through an authorized session."""

    def __init__(
        self,
        session: requests.Session,
        folder_id: str,
        downloader: requests.Session | None = None,
    ) -> None:
        self._session = session
        self._folder_id = folder_id
        self._downloader = downloader or requests.Session()

    @classmethod
    def from_env(cls) -> "GoogleDriveStorage | None":
        """Storage from environment, or None when Drive is not configured."""
        folder_id = os.environ.get("GOOGLE_DRIVE_FOLDER_ID", "").strip()
        credentials = _credentials_from_env()
        if credentials is None or not folder_id:
            logger.warning(
                "google drive not configured, files keep channel urls",
                extra={
                    "extra_fields": safe_log_context(
                        has_credentials=credentials is not None,
                        has_folder=bool(folder_id),
                    )
                },
            )
            return None
        return cls(AuthorizedSession(credentials), folder_id)

    async def upload(
        self, source_url: str, file_name: str, mime_type: str | None = None
    ) -> str | None:
        """Copy source_url into the folder. Returns a public download URL or None."""
        return await asyncio.to_thread(self.upload_sync, source_url, file_name, mime_type)

    def upload_sync(
        self, source_url: str, file_name: str, mime_type: str | None = None
    ) -> str | None:
        log_ctx = safe_log_context(operation="drive_upload", mime_type=mime_type)
        try:
            source = self._downloader.get(source_url, timeout=HTTP_TIMEOUT)
            source.raise_for_status()
            content = source.content
            if not content:
                logger.warning("drive upload skipped: empty file", extra={"extra_fields": log_ctx})
                return None

            body, content_type = _multipart_body(
                {"name": file_name or DEFAULT_FILE_NAME, "parents": [self._folder_id]},
                content,
                mime_type or "application/octet-stream",
            )
            created = self._session.post(
                UPLOAD_URL,
                params={
                    "uploadType": "multipart",
                    "supportsAllDrives": "true",
                    "fields": "id,webViewLink",
                },
                data=body,
                headers={"Content-Type": content_type},
                timeout=HTTP_TIMEOUT,
            )
            created.raise_for_status()
            file_id = created.json().get("id")
            if not file_id:
                raise ValueError("no file id returned")

            shared = self._session.post(
                f"{FILES_URL}/{file_id}/permissions",
                params={"supportsAllDrives": "true"},
                json={"type": "anyone", "role": "reader"},
                timeout=HTTP_TIMEOUT,
            )
            shared.raise_for_status()
        except (requests.RequestException, GoogleAuthError, ValueError) as e:
            logger.error(
                "drive upload failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            return None

        logger.info(
            "drive upload finished",
            extra={"extra_fields": safe_log_context(**log_ctx, size=len(content), file_id=file_id)},
        )
        return download_url(file_id)
