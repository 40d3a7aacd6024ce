"""Process-wide service instances, built lazily from environment.

Routes reach them through their own _get_x() helpers so tests can patch a
single seam per route module.
"""

from __future__ import annotations

import os

from intakebot.agent.gateway import AgentGatewayClient
from intakebot.conversation.handler import ConversationHandler
from intakebot.domain.file_store import file_store
from intakebot.domain.lookup import CandidateLookup
from intakebot.domain.submission import SubmissionFinalizer
from intakebot.integrations.amocrm import AmoCrmClient
from intakebot.integrations.google_drive import GoogleDriveStorage
from intakebot.observability.logging import get_logger
from intakebot.telegram.client import TelegramClient, TelegramTransport
from intakebot.whatsapp.twilio_sender import WhatsAppTransport

logger = get_logger(__name__)

_instances: dict[str, object] = {}

# Drive is optional; remember "not configured" instead of re-reading env
_NOT_CONFIGURED = object()


def _gateway() -> AgentGatewayClient:
    if "gateway" not in _instances:
        _instances["gateway"] = AgentGatewayClient()
    return _instances["gateway"]  # type: ignore[return-value]


def _storage() -> GoogleDriveStorage | None:
    if "storage" not in _instances:
        _instances["storage"] = GoogleDriveStorage.from_env() or _NOT_CONFIGURED
    storage = _instances["storage"]
    return None if storage is _NOT_CONFIGURED else storage  # type: ignore[return-value]


def get_telegram_handler() -> ConversationHandler:
    """Telegram conversation handler. Raises RuntimeError if not configured."""
    if "telegram" not in _instances:
        _instances["telegram"] = ConversationHandler(
            TelegramTransport.from_env(),
            _gateway(),
            correlation_store=file_store,
            storage=_storage(),
        )
    return _instances["telegram"]  # type: ignore[return-value]


def get_whatsapp_handler() -> ConversationHandler:
    """WhatsApp conversation handler. Raises RuntimeError if not configured."""
    if "whatsapp" not in _instances:
        _instances["whatsapp"] = ConversationHandler(
            WhatsAppTransport.from_env(),
            _gateway(),
            correlation_store=file_store,
            storage=_storage(),
        )
    return _instances["whatsapp"]  # type: ignore[return-value]


def get_telegram_client() -> TelegramClient:
    return get_telegram_handler().transport.client  # type: ignore[attr-defined]


def get_finalizer() -> SubmissionFinalizer:
    """Finalizer wired to amoCRM and Telegram file resolution when configured."""
    if "finalizer" not in _instances:
        crm = None
        if os.environ.get("AMOCRM_SUBDOMAIN") and os.environ.get("AMOCRM_ACCESS_TOKEN"):
            crm = AmoCrmClient.from_env()
        else:
            logger.warning("amocrm not configured, leads will not be created")

        resolver = None
        if os.environ.get("TELEGRAM_BOT_TOKEN"):
            resolver = get_telegram_client().get_file_url

        _instances["finalizer"] = SubmissionFinalizer(
            correlation_store=file_store, crm=crm, resolve_file_url=resolver
        )
    return _instances["finalizer"]  # type: ignore[return-value]


def get_lookup() -> CandidateLookup:
    if "lookup" not in _instances:
        _instances["lookup"] = CandidateLookup()
    return _instances["lookup"]  # type: ignore[return-value]


def reset() -> None:
    """Drop all cached instances (tests)."""
    _instances.clear()
