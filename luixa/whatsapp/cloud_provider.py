from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterator

import httpx
from sqlalchemy.orm import Session

from luixa.core.config import META_API_VERSION, META_WA_ACCESS_TOKEN, META_WA_PHONE_NUMBER_ID
from luixa.models.whatsapp_message_log import WhatsAppMessageLog
from luixa.whatsapp.base import WhatsAppProvider, create_message_log

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com"
_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")


@dataclass
class InboundMessage:
    message_id: str
    from_number: str
    text: str = ""
    message_type: str = "text"
    phone_number_id: str | None = None
    contact_name: str | None = None


def _iter_values(payload: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            yield change.get("value") or {}


def parse_cloud_webhook(payload: dict[str, Any]) -> list[InboundMessage]:
    """Flatten a Cloud API webhook body into the messages it carries.

    Status callbacks (delivered/read) have no ``messages`` key and yield
    nothing. Messages without id or sender are dropped.
    """
    parsed: list[InboundMessage] = []
    for value in _iter_values(payload):
        phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
        contacts = value.get("contacts") or [{}]
        contact_name = (contacts[0].get("profile") or {}).get("name") or None

        for raw in value.get("messages") or []:
            if not raw.get("id") or not raw.get("from"):
                continue
            message_type = raw.get("type") or "text"
            body = (raw.get("text") or {}).get("body") if message_type == "text" else ""
            parsed.append(
                InboundMessage(
                    message_id=raw["id"],
                    from_number=raw["from"],
                    text=(body or "").strip(),
                    message_type=message_type,
                    phone_number_id=phone_number_id,
                    contact_name=contact_name,
                )
            )
    return parsed


def _media_body(media_url: str, caption: str) -> dict[str, Any]:
    kind = "image" if media_url.lower().split("?")[0].endswith(_IMAGE_EXTENSIONS) else "document"
    return {"type": kind, kind: {"link": media_url, "caption": caption}}


def _provider_message_id(response: httpx.Response) -> tuple[str | None, dict[str, Any]]:
    try:
        data = response.json()
    except json.JSONDecodeError:
        return None, {"raw": response.text}
    messages = data.get("messages") or [{}]
    return messages[0].get("id"), data


class CloudWhatsAppProvider(WhatsAppProvider):
    MAX_RETRIES = 3
    RETRY_BACKOFF_SECONDS = 0.5
    TIMEOUT_SECONDS = 20.0

    def __init__(
        self,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        api_version: str | None = None,
    ) -> None:
        self.access_token = META_WA_ACCESS_TOKEN if access_token is None else access_token
        self.phone_number_id = META_WA_PHONE_NUMBER_ID if phone_number_id is None else phone_number_id
        self.api_version = api_version or META_API_VERSION

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_URL}/{self.api_version}/{self.phone_number_id}/messages"

    def send_text(
        self,
        db: Session,
        *,
        to_phone: str,
        text: str,
        media_url: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> WhatsAppMessageLog:
        body: dict[str, Any] = {"messaging_product": "whatsapp", "to": to_phone}
        if media_url:
            body.update(_media_body(media_url, text))
        else:
            body.update({"type": "text", "text": {"preview_url": False, "body": text}})
        if context:
            body["context"] = context

        message_type = "media" if media_url else "text"
        log = dict(db=db, direction="out", to_phone=to_phone, message_type=message_type, payload=body)

        if not self.configured:
            return create_message_log(
                **log,
                from_phone=None,
                status="failed",
                error="Credenciales de WhatsApp Cloud incompletas",
            )

        response, error = self._post_with_retries(body)
        if response is None:
            return create_message_log(**log, from_phone=self.phone_number_id, status="failed", error=error)

        provider_id, data = _provider_message_id(response)
        return create_message_log(
            **log,
            from_phone=self.phone_number_id,
            status="sent",
            provider_message_id=provider_id,
            response_payload=data,
        )

    def _post_with_retries(self, body: dict[str, Any]) -> tuple[httpx.Response | None, str | None]:
        headers = {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}
        error: str | None = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                with httpx.Client(timeout=self.TIMEOUT_SECONDS) as client:
                    response = client.post(self.messages_url, headers=headers, json=body)
                if 200 <= response.status_code < 300:
                    return response, None
                error = f"Error WhatsApp {response.status_code}: {response.text}"
            except httpx.HTTPError as exc:
                error = str(exc)

            logger.warning("WhatsApp Cloud send failed attempt=%s error=%s", attempt, error)
            if attempt < self.MAX_RETRIES:
                time.sleep(self.RETRY_BACKOFF_SECONDS * attempt)
        return None, error
