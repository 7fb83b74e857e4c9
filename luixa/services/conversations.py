from __future__ import annotations

from sqlalchemy.orm import Session

from luixa.fsm import states
from luixa.models.blacklisted_number import BlacklistedNumber
from luixa.models.conversation import Conversation
from luixa.services.directory import normalize_phone


def get_or_create_conversation(db: Session, phone: str) -> Conversation:
    phone = normalize_phone(phone)
    conversation = db.query(Conversation).filter(Conversation.phone == phone).first()
    if conversation is None:
        conversation = Conversation(phone=phone, state=states.START, data="{}")
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
    return conversation


def is_blacklisted(db: Session, phone: str | None) -> bool:
    phone = normalize_phone(phone)
    if not phone:
        return False
    return db.query(BlacklistedNumber).filter(BlacklistedNumber.phone == phone).first() is not None


def add_to_blacklist(db: Session, phone: str) -> None:
    phone = normalize_phone(phone)
    if not is_blacklisted(db, phone):
        db.add(BlacklistedNumber(phone=phone))
        db.commit()


def remove_from_blacklist(db: Session, phone: str) -> None:
    phone = normalize_phone(phone)
    db.query(BlacklistedNumber).filter(BlacklistedNumber.phone == phone).delete(synchronize_session=False)
    db.commit()
