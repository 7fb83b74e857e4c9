"""Typed per-conversation state.

Everything a flow step needs between turns lives in :class:`ConversationData`,
stored as JSON in ``Conversation.data``. Steps receive the loaded instance,
mutate it, and the engine writes it back once per message.
"""
from __future__ import annotations

import json
import logging
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from luixa.models.conversation import Conversation

logger = logging.getLogger(__name__)


class TemporaryOrderLine(BaseModel):
    product_id: int
    product_name: str
    size: str
    quantity: int
    unit_price_cents: int
    subtotal_cents: int
    stock_at_validation: int


class TemporaryOrder(BaseModel):
    client_id: int
    supplier_id: int
    lines: List[TemporaryOrderLine] = Field(default_factory=list)
    total_cents: int = 0


class ConversationData(BaseModel):
    # identidad usada por el flujo de pedido
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    supplier_phone: Optional[str] = None

    pending_order: Optional[TemporaryOrder] = None

    # confirmación en curso (saga); se limpia al terminar
    confirming_order_id: Optional[int] = None

    # consultas (catálogo / estadísticas), no tocan el flujo de pedido
    consult_client_id: Optional[int] = None
    consult_client_name: Optional[str] = None
    consult_supplier_id: Optional[int] = None
    consult_supplier_name: Optional[str] = None

    def set_client(self, client_id: int, name: str, phone: str) -> None:
        self.client_id = client_id
        self.client_name = name
        self.client_phone = phone

    def set_supplier(self, supplier_id: int, name: str, phone: str) -> None:
        self.supplier_id = supplier_id
        self.supplier_name = name
        self.supplier_phone = phone

    def replace_pending_order(self, order: TemporaryOrder | None) -> None:
        self.pending_order = order

    def has_identities(self) -> bool:
        return bool(self.client_id and self.supplier_id)


def load_state(conversation: Conversation) -> ConversationData:
    raw = conversation.data or "{}"
    try:
        return ConversationData.model_validate_json(raw)
    except (ValidationError, ValueError):
        logger.warning("Conversation data unreadable, starting fresh phone=%s", conversation.phone)
        return ConversationData()


def store_state(conversation: Conversation, data: ConversationData) -> None:
    conversation.data = data.model_dump_json()


def reset_state(conversation: Conversation) -> ConversationData:
    data = ConversationData()
    conversation.data = json.dumps({})
    return data
