from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from luixa.core.config import IS_DEV
from luixa.models.whatsapp_message_log import WhatsAppMessageLog
from luixa.whatsapp.base import WhatsAppProvider, WhatsAppSendError, create_message_log
from luixa.whatsapp.cloud_provider import CloudWhatsAppProvider
from luixa.whatsapp.mock_provider import MockWhatsAppProvider

logger = logging.getLogger(__name__)


class WhatsAppService:
    def __init__(
        self,
        cloud_provider: CloudWhatsAppProvider | None = None,
        mock_provider: MockWhatsAppProvider | None = None,
    ) -> None:
        self._mock_provider = mock_provider or MockWhatsAppProvider()
        self._cloud_provider = cloud_provider or CloudWhatsAppProvider()

    def _select_provider(self) -> WhatsAppProvider:
        if self._cloud_provider.configured:
            return self._cloud_provider
        return self._mock_provider

    def _should_fallback(self) -> bool:
        return IS_DEV

    def send_text(
        self,
        db: Session,
        *,
        to_phone: str,
        text: str,
        media_url: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> WhatsAppMessageLog:
        provider = self._select_provider()
        log_entry = provider.send_text(db, to_phone=to_phone, text=text, media_url=media_url, context=context)
        if log_entry.status == "failed" and provider is self._cloud_provider and self._should_fallback():
            logger.warning("WhatsApp Cloud failed, using mock provider")
            log_entry = self._mock_provider.send_text(
                db,
                to_phone=to_phone,
                text=text,
                media_url=media_url,
                context={"fallback": "mock", **(context or {})},
            )
        if log_entry.status == "failed":
            raise WhatsAppSendError(log_entry.error or "WhatsApp send failed", log_entry)
        return log_entry

    def send_many(self, db: Session, *, to_phone: str, texts: list[str]) -> list[WhatsAppMessageLog]:
        return [self.send_text(db, to_phone=to_phone, text=text) for text in texts if text]

    def log_inbound(
        self,
        db: Session,
        *,
        from_phone: str,
        to_phone: str | None,
        message_type: str,
        payload: dict[str, Any],
        provider_message_id: str | None = None,
    ) -> WhatsAppMessageLog:
        return create_message_log(
            db,
            direction="in",
            to_phone=to_phone,
            from_phone=from_phone,
            message_type=message_type,
            payload=payload,
            status="received",
            provider_message_id=provider_message_id,
        )
