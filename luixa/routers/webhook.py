import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from luixa.core.config import META_WA_VERIFY_TOKEN
from luixa.core.database import get_db
from luixa.core.request_context import set_request_context
from luixa.fsm.engine import handle_message
from luixa.models.processed_message import ProcessedMessage
from luixa.services.conversations import get_or_create_conversation, is_blacklisted
from luixa.whatsapp.base import WhatsAppSendError
from luixa.whatsapp.cloud_provider import InboundMessage, parse_cloud_webhook
from luixa.whatsapp.service import WhatsAppService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_whatsapp_service() -> WhatsAppService:
    return WhatsAppService()


@router.get("/webhook")
async def verify_webhook(request: Request):
    qp = request.query_params
    mode = qp.get("hub.mode")
    token = qp.get("hub.verify_token")
    challenge = qp.get("hub.challenge")

    if mode == "subscribe" and META_WA_VERIFY_TOKEN and token == META_WA_VERIFY_TOKEN:
        return PlainTextResponse(challenge or "")

    raise HTTPException(status_code=403, detail="Token de verificación inválido")


def _handle_inbound_message(db: Session, service: WhatsAppService, message: InboundMessage) -> dict:
    set_request_context(phone=message.from_number)
    logger.info("WhatsApp received message_id=%s type=%s", message.message_id, message.message_type)

    if db.query(ProcessedMessage).filter_by(message_id=message.message_id).first():
        return {"status": "duplicate"}

    db.add(ProcessedMessage(message_id=message.message_id))
    db.commit()

    service.log_inbound(
        db,
        from_phone=message.from_number,
        to_phone=message.phone_number_id,
        message_type=message.message_type,
        payload={"text": message.text, "contact_name": message.contact_name},
        provider_message_id=message.message_id,
    )

    if message.message_type != "text":
        return {"status": "ignored", "reason": "unsupported_type"}

    if is_blacklisted(db, message.from_number):
        logger.info("WhatsApp sender blacklisted, ignoring message_id=%s", message.message_id)
        return {"status": "ignored", "reason": "blacklisted"}

    conversation = get_or_create_conversation(db, message.from_number)
    replies = handle_message(db, conversation, message.text)

    try:
        service.send_many(db, to_phone=message.from_number, texts=replies)
    except WhatsAppSendError as exc:
        logger.error("WhatsApp reply failed message_id=%s error=%s", message.message_id, exc)
        return {"status": "send_failed", "state": conversation.state}

    return {"status": "ok", "state": conversation.state, "replies": len(replies)}


@router.post("/webhook")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    payload = await request.json()
    messages = parse_cloud_webhook(payload)
    if not messages:
        return {"status": "ignored"}

    last_response = None
    for message in messages:
        last_response = _handle_inbound_message(db, service, message)

    return last_response or {"status": "ok"}
