"""Tests for outbound WhatsApp messages via Twilio."""

import asyncio
from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
import pytest

from intakebot.domain.files import Attachment
from intakebot.whatsapp.twilio_sender import (
    MAX_MEDIA_BYTES,
    TwilioSendError,
    TwilioSender,
    WhatsAppTransport,
    to_whatsapp_address,
)


def _sender(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TwilioSender("AC123", "token", "whatsapp:+14155238886", http_client=http)


@pytest.fixture(autouse=True)
def _no_retry_delay():
    with patch("intakebot.whatsapp.twilio_sender.RETRY_DELAY", 0):
        yield


def test_to_whatsapp_address():
    assert to_whatsapp_address("+79991234567") == "whatsapp:+79991234567"
    assert to_whatsapp_address("whatsapp:+79991234567") == "whatsapp:+79991234567"


class TestSendText:
    def test_form_post_with_basic_auth(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            return httpx.Response(201, json={"sid": "SM1"})

        sid = asyncio.run(_sender(handler).send_text("+79991234567", "hi"))
        assert sid == "SM1"
        assert seen["path"] == "/2010-04-01/Accounts/AC123/Messages.json"
        assert seen["auth"].startswith("Basic ")
        assert seen["form"] == {
            "From": "whatsapp:+14155238886",
            "To": "whatsapp:+79991234567",
            "Body": "hi",
        }

    def test_retries_once_on_5xx(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(201, json={"sid": "SM2"})

        assert asyncio.run(_sender(handler).send_text("+79991234567", "hi")) == "SM2"
        assert len(calls) == 2

    def test_4xx_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(400, json={"code": 21211})

        with pytest.raises(TwilioSendError):
            asyncio.run(_sender(handler).send_text("+79991234567", "hi"))
        assert len(calls) == 1

    def test_gives_up_after_retry(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(TwilioSendError):
            asyncio.run(_sender(handler).send_text("+79991234567", "hi"))


class TestTransport:
    def test_resolve_uses_webhook_url(self):
        transport = WhatsAppTransport(_sender(lambda r: httpx.Response(201)))
        att = Attachment(file_id="SM1", media_type="document", file_url="https://m/x")
        assert asyncio.run(transport.resolve_file_url(att)) == "https://m/x"

    def test_from_env_requires_credentials(self, monkeypatch):
        monkeypatch.delenv("TWILIO_ACCOUNT_SID", raising=False)
        monkeypatch.delenv("TWILIO_AUTH_TOKEN", raising=False)
        with pytest.raises(RuntimeError, match="TWILIO_ACCOUNT_SID"):
            WhatsAppTransport.from_env()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC1")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "t")
        transport = WhatsAppTransport.from_env()
        assert transport.max_attachment_bytes == MAX_MEDIA_BYTES
        assert transport.transport_prefix == "whatsapp:"
