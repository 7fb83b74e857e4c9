from __future__ import annotations

import json
from typing import Any, Protocol

from sqlalchemy.orm import Session

from luixa.models.whatsapp_message_log import WhatsAppMessageLog


class WhatsAppSendError(RuntimeError):
    def __init__(self, message: str, log_entry: WhatsAppMessageLog | None = None) -> None:
        super().__init__(message)
        self.log_entry = log_entry


class WhatsAppProvider(Protocol):
    def send_text(
        self,
        db: Session,
        *,
        to_phone: str,
        text: str,
        media_url: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> WhatsAppMessageLog:
        ...


SENSITIVE_KEYS = frozenset({"access_token", "verify_token", "authorization", "token", "admin_token"})


def mask_secret(value: Any) -> str | None:
    """Keep only the last four characters of a secret."""
    if value is None:
        return None
    text = str(value)
    return "****" if len(text) <= 4 else "****" + text[-4:]


def sanitize_payload(value: Any) -> Any:
    if isinstance(value, list):
        return [sanitize_payload(item) for item in value]
    if not isinstance(value, dict):
        return value
    return {
        key: mask_secret(inner) if str(key).lower() in SENSITIVE_KEYS else sanitize_payload(inner)
        for key, inner in value.items()
    }


def safe_json(payload: dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "{}"


def create_message_log(
    db: Session,
    *,
    direction: str,
    to_phone: str | None,
    from_phone: str | None,
    message_type: str,
    payload: dict[str, Any],
    status: str,
    provider_message_id: str | None = None,
    error: str | None = None,
    response_payload: dict[str, Any] | None = None,
) -> WhatsAppMessageLog:
    sanitized = sanitize_payload(payload)
    if response_payload:
        sanitized["response"] = sanitize_payload(response_payload)
    log_entry = WhatsAppMessageLog(
        direction=direction,
        to_phone=to_phone,
        from_phone=from_phone,
        message_type=message_type,
        payload_json=safe_json(sanitized),
        status=status,
        error=error,
        provider_message_id=provider_message_id,
    )
    db.add(log_entry)
    db.commit()
    return log_entry
