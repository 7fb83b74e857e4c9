from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from luixa.core.database import get_db
from luixa.core.request_context import set_request_context
from luixa.fsm.engine import handle_message
from luixa.services.conversations import get_or_create_conversation

router = APIRouter(prefix="/simulator", tags=["simulator"])


class SimulatedMessage(BaseModel):
    phone: str = Field(min_length=1)
    text: str = ""


@router.post("/message")
def simulate(payload: SimulatedMessage, db: Session = Depends(get_db)):
    set_request_context(phone=payload.phone)
    conversation = get_or_create_conversation(db, payload.phone)
    replies = handle_message(db, conversation, payload.text)
    return {"state": conversation.state, "replies": replies}
