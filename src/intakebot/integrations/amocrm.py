"""amoCRM integration - contacts, leads, notes and file attachments (API v4).

One lead per submitted application, linked to the candidate's contact
(found by phone, else created). Each file is uploaded to the lead on its
own; when an upload fails, a note with the file link is added instead so
recruiters can still reach it.

Security: NEVER log phones or names. Only ids and masked phones.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from intakebot.domain.files import BufferedFileRef, format_duration
from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import mask_phone, safe_log_context

if TYPE_CHECKING:
    from intakebot.domain.submission import ApplicationSubmission

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds); file uploads can be large videos
HTTP_TIMEOUT = 30
UPLOAD_TIMEOUT = 300

_EXTENSION_MIME = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "mp4": "video/mp4",
}


class AmoCrmError(Exception):
    """Raised when an amoCRM call fails."""

    pass


@dataclass(frozen=True)
class CrmLead:
    contact_id: int
    lead_id: int
    lead_url: str


def _get_config() -> dict[str, Any]:
    """amoCRM config from environment.

    Required:
    - AMOCRM_SUBDOMAIN
    - AMOCRM_ACCESS_TOKEN (long-lived token)

    Optional:
    - AMOCRM_PIPELINE_ID, AMOCRM_STATUS_ID: where new leads land
    """
    subdomain = os.environ.get("AMOCRM_SUBDOMAIN", "")
    access_token = os.environ.get("AMOCRM_ACCESS_TOKEN", "")
    if not subdomain or not access_token:
        raise RuntimeError(
            "Missing amoCRM config: AMOCRM_SUBDOMAIN and AMOCRM_ACCESS_TOKEN required"
        )
    pipeline_id = os.environ.get("AMOCRM_PIPELINE_ID", "")
    status_id = os.environ.get("AMOCRM_STATUS_ID", "")
    return {
        "subdomain": subdomain,
        "access_token": access_token,
        "pipeline_id": int(pipeline_id) if pipeline_id else None,
        "status_id": int(status_id) if status_id else None,
    }


def _yes_no(value: bool | None) -> str:
    if value is None:
        return "не указано"
    return "Да" if value else "Нет"


def build_lead_note(
    application: "ApplicationSubmission",
    application_id: str,
    resume: BufferedFileRef | None,
    video: BufferedFileRef | None,
) -> str:
    """Full application summary for recruiters (Russian, as the CRM team reads it)."""
    a = application
    lines = [
        "📝 Заявка через чат-бот",
        "",
        f"🆔 ID заявки: {application_id}",
        "",
        "👤 Личная информация:",
        f"• Имя: {a.full_name}",
        f"• Национальность: {a.nationality or '-'}",
        f"• Местоположение: {a.current_location or '-'}",
        f"• Телефон: {a.phone}",
    ]
    if a.email:
        lines.append(f"• Email: {a.email}")
    if a.date_of_birth:
        lines.append(f"• Дата рождения: {a.date_of_birth}")

    if a.languages:
        lines += ["", "🌍 Языки:"]
        lines += [f"• {lang.language} - {lang.fluency}" for lang in a.languages]

    lines += ["", "💼 Опыт:"]
    if a.years_of_experience is not None:
        lines.append(f"• Стаж: {a.years_of_experience} лет")
    lines.append(f"• Возрастные группы: {', '.join(a.age_groups_worked_with) or '-'}")
    lines.append(f"• Предыдущие позиции: {a.previous_positions or '-'}")

    lines += ["", "🎓 Образование:", a.education_summary or "-"]
    if a.specializations:
        lines += ["", "✨ Специализации:"]
        lines += [f"• {s}" for s in a.specializations]

    lines += [
        "",
        "📋 Документы:",
        f"• Первая помощь: {_yes_no(a.has_first_aid_certificate)}",
        f"• Паспорт: {_yes_no(a.has_valid_passport)}",
        f"• Резюме: {resume.file_name or 'приложено'}" if resume else "• Резюме: не предоставлено",
    ]
    if video:
        duration = format_duration(video.duration) or "длительность неизвестна"
        lines.append(f"• Видео: {video.file_name or 'приложено'} ({duration})")
    else:
        lines.append("• Видео: не предоставлено")

    lines += [
        "",
        "📅 Доступность:",
        f"• Готов начать: {a.available_from or '-'}",
        f"• Предпочтение: {a.preferred_arrangement or '-'}",
        f"• Готов к переезду: {_yes_no(a.willing_to_relocate)}",
    ]
    if a.preferred_countries:
        lines.append(f"• Предпочтительные страны: {', '.join(a.preferred_countries)}")
    if a.additional_notes:
        lines += ["", "📝 Дополнительная информация:", a.additional_notes]

    return "\n".join(lines)


def _first_id(data: Any, collection: str) -> int:
    try:
        return data["_embedded"][collection][0]["id"]
    except (KeyError, IndexError, TypeError) as e:
        raise AmoCrmError(f"amoCRM response has no {collection}") from e


def _guess_mime(file_name: str, content_type: str | None) -> str:
    if content_type:
        return content_type.split(";")[0].strip()
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return _EXTENSION_MIME.get(extension, "application/octet-stream")


class AmoCrmClient:
    """Async client for the subset of amoCRM v4 the intake flow needs."""

    def __init__(
        self,
        subdomain: str,
        access_token: str,
        *,
        pipeline_id: int | None = None,
        status_id: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._subdomain = subdomain
        self._base = f"https://{subdomain}.amocrm.ru/api/v4"
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._pipeline_id = pipeline_id
        self._status_id = status_id
        self._http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)

    @classmethod
    def from_env(cls) -> "AmoCrmClient":
        config = _get_config()
        return cls(
            config["subdomain"],
            config["access_token"],
            pipeline_id=config["pipeline_id"],
            status_id=config["status_id"],
        )

    def lead_url(self, lead_id: int) -> str:
        return f"https://{self._subdomain}.amocrm.ru/leads/detail/{lead_id}"

    async def _request(
        self, method: str, endpoint: str, *, json: Any = None, params: dict[str, str] | None = None
    ) -> Any:
        try:
            response = await self._http.request(
                method, f"{self._base}{endpoint}", json=json, params=params, headers=self._headers
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AmoCrmError(f"amoCRM {method} {endpoint} failed: {type(e).__name__}") from e
        # 204 is how amoCRM answers an empty search
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise AmoCrmError(f"amoCRM {method} {endpoint} returned invalid json") from e

    async def find_contact(self, query: str) -> int | None:
        """First contact matching a phone/email query, None if none (or search fails)."""
        try:
            data = await self._request("GET", "/contacts", params={"query": query})
        except AmoCrmError as e:
            logger.warning(
                "amocrm contact search failed",
                extra={"extra_fields": safe_log_context(error=str(e))},
            )
            return None
        contacts = data.get("_embedded", {}).get("contacts") or []
        return contacts[0].get("id") if contacts else None

    async def create_contact(self, name: str, phone: str, email: str | None = None) -> int:
        fields = [{"field_code": "PHONE", "values": [{"value": phone, "enum_code": "WORK"}]}]
        if email:
            fields.append({"field_code": "EMAIL", "values": [{"value": email, "enum_code": "WORK"}]})
        data = await self._request(
            "POST", "/contacts", json=[{"name": name, "custom_fields_values": fields}]
        )
        return _first_id(data, "contacts")

    async def create_lead(self, name: str, contact_id: int) -> int:
        lead: dict[str, Any] = {"name": name, "_embedded": {"contacts": [{"id": contact_id}]}}
        if self._pipeline_id:
            lead["pipeline_id"] = self._pipeline_id
        if self._status_id:
            lead["status_id"] = self._status_id
        data = await self._request("POST", "/leads", json=[lead])
        return _first_id(data, "leads")

    async def add_note(self, lead_id: int, text: str) -> None:
        await self._request(
            "POST",
            "/leads/notes",
            json=[{"entity_id": lead_id, "note_type": "common", "params": {"text": text}}],
        )

    async def upload_file(self, lead_id: int, file_url: str, file_name: str) -> Any:
        """Download file_url and attach it to the lead."""
        try:
            source = await self._http.get(file_url, timeout=UPLOAD_TIMEOUT, follow_redirects=True)
            source.raise_for_status()
            content_type = _guess_mime(file_name, source.headers.get("content-type"))
            response = await self._http.post(
                f"{self._base}/leads/{lead_id}/files",
                files={"file": (file_name, source.content, content_type)},
                headers=self._headers,
                timeout=UPLOAD_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AmoCrmError(f"amoCRM file upload failed: {type(e).__name__}") from e
        files = data.get("_embedded", {}).get("files") or []
        return files[0].get("id") if files else data.get("id")

    async def _attach(
        self, lead_id: int, ref: BufferedFileRef, file_name: str, label: str, suffix: str = ""
    ) -> None:
        """Upload one file; on failure leave its link as a note instead.

        Never raises: one file failing must not stop the next one.
        """
        try:
            await self.upload_file(lead_id, ref.file_url or "", file_name)
        except AmoCrmError as e:
            logger.warning(
                "amocrm file upload failed, adding link note",
                extra={
                    "extra_fields": safe_log_context(
                        lead_id=lead_id, kind=ref.kind, error=str(e)
                    )
                },
            )
            note = f"{label} (ссылка):\n{ref.file_url}"
        else:
            note = f"{label} приложено: {file_name}{suffix}"

        try:
            await self.add_note(lead_id, note)
        except AmoCrmError as e:
            logger.error(
                "amocrm file note failed",
                extra={
                    "extra_fields": safe_log_context(
                        lead_id=lead_id, kind=ref.kind, error=str(e)
                    )
                },
            )

    async def create_candidate_lead(
        self,
        application: "ApplicationSubmission",
        application_id: str,
        resume: BufferedFileRef | None = None,
        video: BufferedFileRef | None = None,
    ) -> CrmLead:
        """Contact (found or created) + lead + summary note + file attachments.

        Raises:
            AmoCrmError: If the contact, lead or summary note cannot be created.
                File upload and file note failures are logged, never raised.
        """
        log_ctx = safe_log_context(
            application_id=application_id, phone=mask_phone(application.phone)
        )

        contact_id = None
        if application.email:
            contact_id = await self.find_contact(application.email)
        if contact_id is None:
            contact_id = await self.find_contact(application.phone)
        if contact_id is None:
            contact_id = await self.create_contact(
                application.full_name, application.phone, application.email
            )
            logger.info("amocrm contact created", extra={"extra_fields": log_ctx})

        lead_name = f"Кандидат: {application.full_name}"
        if application.years_of_experience is not None:
            lead_name += f" | {application.years_of_experience} лет опыта"
        lead_id = await self.create_lead(lead_name, contact_id)
        await self.add_note(lead_id, build_lead_note(application, application_id, resume, video))

        safe_name = "_".join(application.full_name.split())
        if resume is not None and resume.file_url:
            await self._attach(
                lead_id,
                resume,
                resume.file_name or f"resume_{safe_name}.pdf",
                "📄 Резюме кандидата",
            )
        if video is not None and video.file_url:
            duration = format_duration(video.duration)
            await self._attach(
                lead_id,
                video,
                video.file_name or f"intro_video_{safe_name}.mp4",
                "🎥 Видео-представление кандидата",
                f" ({duration})" if duration else "",
            )

        logger.info(
            "amocrm lead created",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, contact_id=contact_id, lead_id=lead_id
                )
            },
        )
        return CrmLead(contact_id=contact_id, lead_id=lead_id, lead_url=self.lead_url(lead_id))

    async def aclose(self) -> None:
        await self._http.aclose()
