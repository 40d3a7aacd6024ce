"""Telegram Bot API client and the Telegram ChannelTransport.

Security: NEVER log the bot token (it is part of every API and file URL),
message text or chat ids. Only lengths and error types.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import httpx

from intakebot.domain.files import Attachment
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

API_BASE = "https://api.telegram.org"

# Timeout for Bot API requests (seconds)
HTTP_TIMEOUT = 10

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2

# Bot API refuses downloads above ~20 MB; keep a margin
DEFAULT_MAX_DOWNLOAD_BYTES = 18 * 1024 * 1024

MAX_MESSAGE_LENGTH = 4000
SEND_PACING_SECONDS = 0.1


class TelegramApiError(Exception):
    """Raised when a Bot API call fails or answers ok=false."""

    pass


def _get_config() -> dict[str, Any]:
    """Telegram config from environment.

    Required:
    - TELEGRAM_BOT_TOKEN

    Optional:
    - TELEGRAM_MAX_DOWNLOAD_BYTES (default: 18 MiB)
    """
    token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    if not token:
        raise RuntimeError("Missing Telegram config: TELEGRAM_BOT_TOKEN required")
    return {
        "token": token,
        "max_download_bytes": int(
            os.environ.get("TELEGRAM_MAX_DOWNLOAD_BYTES", DEFAULT_MAX_DOWNLOAD_BYTES)
        ),
    }


class TelegramClient:
    """Thin async wrapper over the Bot API methods the bot uses."""

    def __init__(self, token: str, http_client: httpx.AsyncClient | None = None) -> None:
        self._token = token
        self._base = f"{API_BASE}/bot{token}"
        self._http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)

    async def _call(self, method: str, payload: dict[str, Any], *, retry: bool = False) -> Any:
        """POST a Bot API method and return its `result`.

        With retry=True, network errors and 5xx are retried MAX_RETRIES times.

        Raises:
            TelegramApiError: On transport failure or ok=false.
        """
        attempts = MAX_RETRIES + 1 if retry else 1
        log_ctx = safe_log_context(method=method)

        for attempt in range(attempts):
            try:
                response = await self._http.post(f"{self._base}/{method}", json=payload)
            except httpx.TransportError as e:
                if attempt < attempts - 1:
                    logger.warning(
                        "telegram call failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt, error_type=type(e).__name__
                            )
                        },
                    )
                    await asyncio.sleep(RETRY_DELAY)
                    continue
                logger.error(
                    "telegram call failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error_type=type(e).__name__
                        )
                    },
                )
                raise TelegramApiError(f"{method} failed: {type(e).__name__}") from e

            if response.status_code >= 500 and attempt < attempts - 1:
                logger.warning(
                    "telegram call failed, retrying",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, status=response.status_code
                        )
                    },
                )
                await asyncio.sleep(RETRY_DELAY)
                continue

            try:
                data = response.json()
            except ValueError:
                data = {}
            if not isinstance(data, dict) or not data.get("ok"):
                description = data.get("description") if isinstance(data, dict) else None
                logger.error(
                    "telegram call rejected",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, status=response.status_code
                        )
                    },
                )
                raise TelegramApiError(
                    f"{method} failed: {description or response.status_code}"
                )
            return data.get("result")

        raise TelegramApiError(f"{method} failed")

    async def send_message(self, chat_id: str | int, text: str) -> dict[str, Any]:
        result = await self._call("sendMessage", {"chat_id": chat_id, "text": text}, retry=True)
        logger.info(
            "telegram message sent",
            extra={"extra_fields": safe_log_context(text_len=len(text))},
        )
        return result

    async def send_chat_action(self, chat_id: str | int, action: str = "typing") -> None:
        await self._call("sendChatAction", {"chat_id": chat_id, "action": action})

    async def get_file_url(self, file_id: str) -> str:
        """Resolve a file_id to its download URL (valid for about an hour)."""
        result = await self._call("getFile", {"file_id": file_id})
        file_path = result.get("file_path") if isinstance(result, dict) else None
        if not file_path:
            raise TelegramApiError("getFile failed: no file_path")
        return f"{API_BASE}/file/bot{self._token}/{file_path}"

    async def set_webhook(self, url: str, secret_token: str | None = None) -> bool:
        payload: dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        return bool(await self._call("setWebhook", payload))

    async def get_webhook_info(self) -> dict[str, Any]:
        return await self._call("getWebhookInfo", {})

    async def delete_webhook(self) -> bool:
        return bool(await self._call("deleteWebhook", {}))

    async def aclose(self) -> None:
        await self._http.aclose()


class TelegramTransport:
    """ChannelTransport over the Bot API."""

    channel = "telegram"
    error_id_prefix = "TG"
    max_message_length = MAX_MESSAGE_LENGTH
    send_pacing_seconds = SEND_PACING_SECONDS
    transport_prefix = None

    def __init__(
        self, client: TelegramClient, max_attachment_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES
    ) -> None:
        self.client = client
        self.max_attachment_bytes = max_attachment_bytes

    @classmethod
    def from_env(cls) -> "TelegramTransport":
        config = _get_config()
        return cls(TelegramClient(config["token"]), config["max_download_bytes"])

    async def send_text(self, chat_id: str, text: str) -> None:
        await self.client.send_message(chat_id, text)

    async def send_typing(self, chat_id: str) -> None:
        try:
            await self.client.send_chat_action(chat_id, "typing")
        except TelegramApiError:
            logger.warning("typing indicator failed")

    async def resolve_file_url(self, attachment: Attachment) -> str | None:
        return await self.client.get_file_url(attachment.file_id)
