from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session

from luixa.models.whatsapp_message_log import WhatsAppMessageLog
from luixa.whatsapp.base import WhatsAppProvider, create_message_log


class MockWhatsAppProvider(WhatsAppProvider):
    """Records outbound messages without calling Meta; used in dev and tests."""

    def send_text(
        self,
        db: Session,
        *,
        to_phone: str,
        text: str,
        media_url: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> WhatsAppMessageLog:
        payload = {
            "type": "text",
            "to": to_phone,
            "text": text,
            "media_url": media_url,
            "context": context or {},
        }
        return create_message_log(
            db,
            direction="out",
            to_phone=to_phone,
            from_phone=None,
            message_type="text" if not media_url else "media",
            payload=payload,
            status="sent",
            provider_message_id=f"mock-{uuid.uuid4().hex[:10]}",
        )
