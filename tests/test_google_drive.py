"""Tests for Google Drive re-upload of candidate files."""

import asyncio
import json
from unittest.mock import MagicMock

import requests

from intakebot.integrations.google_drive import FILES_URL, UPLOAD_URL, GoogleDriveStorage


def _response(status=200, *, json_body=None, content=b""):
    response = MagicMock()
    response.status_code = status
    response.content = content
    response.json.return_value = json_body or {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    else:
        response.raise_for_status.return_value = None
    return response


def _storage(*, download=None, created=None, shared=None):
    downloader = MagicMock()
    downloader.get.return_value = download or _response(content=b"%PDF-1.4 data")
    session = MagicMock()
    session.post.side_effect = [
        created or _response(json_body={"id": "drive-file-1"}),
        shared or _response(json_body={"id": "perm-1"}),
    ]
    return GoogleDriveStorage(session, "folder-1", downloader=downloader), session


class TestUpload:
    def test_upload_and_share(self):
        storage, session = _storage()
        url = asyncio.run(storage.upload("https://api.telegram.org/file/bot1/doc.pdf", "cv.pdf", "application/pdf"))

        assert url == "https://drive.google.com/uc?export=download&id=drive-file-1"
        upload_call, share_call = session.post.call_args_list
        assert upload_call.args[0] == UPLOAD_URL
        assert upload_call.kwargs["params"]["uploadType"] == "multipart"
        assert upload_call.kwargs["params"]["supportsAllDrives"] == "true"
        body = upload_call.kwargs["data"]
        assert b'"parents": ["folder-1"]' in body
        assert b'"name": "cv.pdf"' in body
        assert b"%PDF-1.4 data" in body
        assert upload_call.kwargs["headers"]["Content-Type"].startswith("multipart/related; boundary=")
        assert share_call.args[0] == f"{FILES_URL}/drive-file-1/permissions"
        assert share_call.kwargs["json"] == {"type": "anyone", "role": "reader"}

    def test_download_failure_returns_none(self):
        storage, session = _storage(download=_response(404))
        assert storage.upload_sync("https://x/file", "cv.pdf") is None
        session.post.assert_not_called()

    def test_empty_file_returns_none(self):
        storage, session = _storage(download=_response(content=b""))
        assert storage.upload_sync("https://x/file", "cv.pdf") is None
        session.post.assert_not_called()

    def test_upload_failure_returns_none(self):
        storage, _ = _storage(created=_response(403))
        assert storage.upload_sync("https://x/file", "cv.pdf") is None

    def test_missing_file_id_returns_none(self):
        storage, _ = _storage(created=_response(json_body={}))
        assert storage.upload_sync("https://x/file", "cv.pdf") is None


class TestFromEnv:
    def test_not_configured(self, monkeypatch):
        for var in (
            "GOOGLE_CLIENT_ID",
            "GOOGLE_CLIENT_SECRET",
            "GOOGLE_REFRESH_TOKEN",
            "GOOGLE_DRIVE_SERVICE_ACCOUNT_JSON",
            "GOOGLE_DRIVE_FOLDER_ID",
        ):
            monkeypatch.delenv(var, raising=False)
        assert GoogleDriveStorage.from_env() is None

    def test_oauth_configured(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
        monkeypatch.setenv("GOOGLE_REFRESH_TOKEN", "refresh")
        monkeypatch.setenv("GOOGLE_DRIVE_FOLDER_ID", "folder-1")
        assert isinstance(GoogleDriveStorage.from_env(), GoogleDriveStorage)

    def test_folder_required(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
        monkeypatch.setenv("GOOGLE_REFRESH_TOKEN", "refresh")
        monkeypatch.delenv("GOOGLE_DRIVE_FOLDER_ID", raising=False)
        assert GoogleDriveStorage.from_env() is None


def test_metadata_is_json():
    from intakebot.integrations.google_drive import _multipart_body

    body, content_type = _multipart_body({"name": "a.pdf", "parents": ["f"]}, b"xyz", "application/pdf")
    boundary = content_type.split("boundary=")[1]
    metadata_part = body.split(f"--{boundary}".encode())[1]
    assert json.loads(metadata_part.split(b"\r\n\r\n", 1)[1].strip()) == {"name": "a.pdf", "parents": ["f"]}
