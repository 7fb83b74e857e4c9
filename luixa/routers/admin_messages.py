import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from luixa.core.config import ADMIN_API_TOKEN, IS_PROD
from luixa.core.database import get_db
from luixa.core.request_context import set_request_context
from luixa.fsm.engine import REGISTER_FLOW, SAMPLES, dispatch_flow
from luixa.routers.webhook import get_whatsapp_service
from luixa.services.conversations import (
    add_to_blacklist,
    get_or_create_conversation,
    is_blacklisted,
    remove_from_blacklist,
)
from luixa.whatsapp.base import WhatsAppSendError
from luixa.whatsapp.service import WhatsAppService

router = APIRouter(prefix="/v1", tags=["admin-messages"])
logger = logging.getLogger(__name__)


class SendMessagePayload(BaseModel):
    number: str = Field(min_length=1)
    message: str = Field(min_length=1)
    urlMedia: Optional[str] = None


class FlowTriggerPayload(BaseModel):
    number: str = Field(min_length=1)
    name: Optional[str] = None


class BlacklistPayload(BaseModel):
    number: str = Field(min_length=1)
    intent: Literal["add", "remove"]


def require_admin_token(x_admin_token: str | None = Header(default=None)) -> None:
    configured = (ADMIN_API_TOKEN or "").strip()
    if not configured:
        if IS_PROD:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="En producción se requiere ADMIN_API_TOKEN configurado",
            )
        return
    if (x_admin_token or "").strip() != configured:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")


@router.post("/messages", dependencies=[Depends(require_admin_token)])
def send_message(
    payload: SendMessagePayload,
    db: Session = Depends(get_db),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    set_request_context(phone=payload.number)
    try:
        log_entry = service.send_text(db, to_phone=payload.number, text=payload.message, media_url=payload.urlMedia)
    except WhatsAppSendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"status": "sended", "provider_message_id": log_entry.provider_message_id}


def _trigger_flow(db: Session, service: WhatsAppService, flow_name: str, payload: FlowTriggerPayload) -> dict:
    set_request_context(phone=payload.number)
    if is_blacklisted(db, payload.number):
        return {"status": "ignored", "reason": "blacklisted"}

    conversation = get_or_create_conversation(db, payload.number)
    replies = dispatch_flow(db, conversation, flow_name, payload.name)
    try:
        service.send_many(db, to_phone=payload.number, texts=replies)
    except WhatsAppSendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"status": "trigger", "flow": flow_name, "state": conversation.state}


@router.post("/register", dependencies=[Depends(require_admin_token)])
def register(
    payload: FlowTriggerPayload,
    db: Session = Depends(get_db),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    return _trigger_flow(db, service, REGISTER_FLOW, payload)


@router.post("/samples", dependencies=[Depends(require_admin_token)])
def samples(
    payload: FlowTriggerPayload,
    db: Session = Depends(get_db),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    return _trigger_flow(db, service, SAMPLES, payload)


@router.post("/blacklist", dependencies=[Depends(require_admin_token)])
def blacklist(payload: BlacklistPayload, db: Session = Depends(get_db)):
    if payload.intent == "add":
        add_to_blacklist(db, payload.number)
    else:
        remove_from_blacklist(db, payload.number)
    logger.info("Blacklist updated intent=%s", payload.intent)
    return {"status": "ok", "number": payload.number, "intent": payload.intent}
