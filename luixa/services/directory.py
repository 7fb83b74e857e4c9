from __future__ import annotations

from sqlalchemy.orm import Session

from luixa.models.client import Client
from luixa.models.supplier import Supplier


def normalize_phone(raw: str | None) -> str:
    return (raw or "").strip()


def find_client_by_phone(db: Session, phone: str | None) -> Client | None:
    phone = normalize_phone(phone)
    if not phone:
        return None
    return db.query(Client).filter(Client.phone == phone).first()


def find_supplier_by_phone(db: Session, phone: str | None) -> Supplier | None:
    phone = normalize_phone(phone)
    if not phone:
        return None
    return db.query(Supplier).filter(Supplier.phone == phone).first()
