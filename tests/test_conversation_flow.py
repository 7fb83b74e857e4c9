from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from luixa.fsm import states
from luixa.fsm.conversation_state import load_state
from luixa.fsm.engine import (
    GENERIC_ERROR,
    HELP_TEXT,
    NEW_ORDER_ABANDON_REASON,
    REGISTER_FLOW,
    SAMPLES,
    SUPPLIER_ABANDON_REASON,
    dispatch_flow,
    handle_message,
)
from luixa.models.order import Order
from luixa.models.product import Product
from luixa.services.conversations import get_or_create_conversation
from tests.fixtures_data import (
    CLIENT_PHONE,
    OTHER_CLIENT_PHONE,
    OTHER_SUPPLIER_PHONE,
    SUPPLIER_PHONE,
    UNKNOWN_PHONE,
    place_order,
)

USER = "5212461234567"
ORDER_TEXT = "2 camisetas talla M\n1 calcetines talla unitalla"


def _say(db, text, phone=USER):
    conversation = get_or_create_conversation(db, phone)
    replies = handle_message(db, conversation, text)
    return conversation, replies


def _start_order(db):
    _say(db, "pedido")
    _say(db, CLIENT_PHONE)
    return _say(db, SUPPLIER_PHONE)


def test_full_order_flow_from_greeting_to_confirmation(db, catalog):
    conversation, replies = _say(db, "Hola")
    assert conversation.state == states.IDLE
    assert replies[0].startswith("Holaa, soy Luixa")

    conversation, replies = _say(db, "pedido")
    assert conversation.state == states.AWAITING_CLIENT_PHONE
    assert "necesito algunos datos" in replies[0]

    conversation, replies = _say(db, CLIENT_PHONE)
    assert conversation.state == states.AWAITING_SUPPLIER_PHONE
    assert replies[0] == "✅ Cliente encontrado: Ana López"

    conversation, replies = _say(db, SUPPLIER_PHONE)
    assert conversation.state == states.COLLECTING_ITEMS
    assert replies[0] == "✅ Proveedor encontrado: Textiles Norte"
    assert "CATÁLOGO DE TEXTILES NORTE" in replies[1]

    conversation, replies = _say(db, ORDER_TEXT)
    assert conversation.state == states.COLLECTING_ITEMS
    assert "💰 *TOTAL: $25.00*" in replies[-1]
    assert load_state(conversation).pending_order.total_cents == 2500

    conversation, replies = _say(db, "confirmar")
    assert conversation.state == states.IDLE
    assert replies[0] == "⏳ Confirmando tu pedido..."
    assert "PEDIDO CONFIRMADO" in replies[1]

    order = db.query(Order).one()
    assert order.tracking_code in replies[1]
    data = load_state(conversation)
    assert data.pending_order is None
    assert data.confirming_order_id is None


def test_unknown_phone_keeps_the_state(db, catalog):
    _say(db, "pedido")

    conversation, replies = _say(db, UNKNOWN_PHONE)

    assert conversation.state == states.AWAITING_CLIENT_PHONE
    assert "No encontré un cliente registrado" in replies[0]

    _say(db, CLIENT_PHONE)
    conversation, replies = _say(db, UNKNOWN_PHONE)

    assert conversation.state == states.AWAITING_SUPPLIER_PHONE
    assert "No encontré un proveedor registrado" in replies[0]


def test_invalid_order_text_reports_errors_and_stays_collecting(db, catalog):
    _start_order(db)

    conversation, replies = _say(db, "2 camisetas talla M\n5 zapatos talla 42")

    assert conversation.state == states.COLLECTING_ITEMS
    assert 'No encontré el producto "zapatos"' in replies[0]
    assert replies[1].startswith("✏️ Corrige tu pedido")
    assert load_state(conversation).pending_order is None


def test_keywords_ignore_accents_and_case(db, catalog):
    _start_order(db)

    conversation, replies = _say(db, "  CATÁLOGO ")

    assert conversation.state == states.COLLECTING_ITEMS
    assert replies[0].startswith("📋 *CATÁLOGO DE TEXTILES NORTE*")

    conversation, replies = _say(db, "Mis Estadísticas")
    assert conversation.state == states.AWAITING_STATS_CLIENT


def test_keyword_preempts_a_pending_capture(db, catalog):
    _say(db, "pedido")

    conversation, replies = _say(db, "catalogo")

    assert conversation.state == states.AWAITING_CATALOG_SUPPLIER

    conversation, replies = _say(db, OTHER_SUPPLIER_PHONE)

    assert conversation.state == states.IDLE
    assert "CATÁLOGO DE MODA SUR" in replies[0]
    assert load_state(conversation).consult_supplier_id == catalog.other_supplier.id


def test_correcting_supplier_discards_pending_order(db, catalog):
    _start_order(db)
    _say(db, ORDER_TEXT)

    conversation, replies = _say(db, "corregir proveedor")
    assert conversation.state == states.CORRECTING_SUPPLIER

    conversation, replies = _say(db, OTHER_SUPPLIER_PHONE)

    assert conversation.state == states.COLLECTING_ITEMS
    assert replies[0] == "✅ Proveedor actualizado: Moda Sur"
    assert "se descartó" in replies[1]
    assert "CATÁLOGO ACTUALIZADO DE MODA SUR" in replies[2]
    data = load_state(conversation)
    assert data.pending_order is None
    assert data.supplier_id == catalog.other_supplier.id

    conversation, replies = _say(db, "confirmar")
    assert conversation.state == states.COLLECTING_ITEMS
    assert db.query(Order).count() == 0


def test_correcting_client_keeps_pending_order(db, catalog):
    _start_order(db)
    _say(db, ORDER_TEXT)
    _say(db, "cambiar cliente")

    conversation, replies = _say(db, OTHER_CLIENT_PHONE)

    assert conversation.state == states.COLLECTING_ITEMS
    assert replies[0].startswith("✅ Cliente actualizado: Bruno Díaz")
    data = load_state(conversation)
    assert data.client_id == catalog.other_client.id
    assert data.pending_order.client_id == catalog.other_client.id

    _say(db, "confirmar")
    assert db.query(Order).one().client_id == catalog.other_client.id


def test_failed_correction_stays_in_correction_state(db, catalog):
    _start_order(db)
    _say(db, "corregir cliente")

    conversation, replies = _say(db, UNKNOWN_PHONE)

    assert conversation.state == states.CORRECTING_CLIENT
    assert "corregir cliente" in replies[0]


def test_status_lookup_and_cancel_flows(db, catalog):
    order = place_order(db, catalog, ORDER_TEXT)

    conversation, replies = _say(db, "consultar estado")
    assert conversation.state == states.AWAITING_STATUS_CODE
    conversation, replies = _say(db, "NOPE")
    assert conversation.state == states.AWAITING_STATUS_CODE
    assert 'con el código "NOPE"' in replies[0]
    conversation, replies = _say(db, order.tracking_code.lower())
    assert conversation.state == states.IDLE
    assert "📌 Estado: *Pendiente*" in replies[0]

    _say(db, "buscar pedido")
    conversation, replies = _say(db, order.tracking_code)
    assert conversation.state == states.IDLE
    assert "camisetas (Talla: M)" in replies[0]

    _say(db, "cancelar pedido")
    conversation, replies = _say(db, order.tracking_code)
    assert conversation.state == states.IDLE
    assert "fue cancelado" in replies[0]
    stock = db.query(Product.stock_quantity).filter(Product.id == catalog.products["shirt_m"].id).scalar()
    assert stock == 10


def test_statistics_flow(db, catalog):
    place_order(db, catalog, ORDER_TEXT)
    _say(db, "mis estadisticas")

    conversation, replies = _say(db, CLIENT_PHONE)

    assert conversation.state == states.IDLE
    assert "ESTADÍSTICAS DE ANA LÓPEZ" in replies[0]
    assert load_state(conversation).consult_client_id == catalog.client.id


def test_unexpected_failure_returns_generic_error(db, catalog):
    _start_order(db)

    with patch("luixa.fsm.engine.submit_order_text", side_effect=RuntimeError("boom")):
        conversation, replies = _say(db, ORDER_TEXT)

    assert replies == [GENERIC_ERROR]
    assert conversation.state == states.COLLECTING_ITEMS

    conversation, replies = _say(db, ORDER_TEXT)
    assert "💰 *TOTAL: $25.00*" in replies[-1]


def test_idle_text_gets_help_and_first_message_gets_welcome(db, catalog):
    conversation, replies = _say(db, "quiero algo")
    assert conversation.state == states.IDLE
    assert replies[0].startswith("Holaa")

    conversation, replies = _say(db, "quiero algo")
    assert replies == [HELP_TEXT]


def test_new_order_clears_an_unfinished_confirmation(db, catalog):
    _start_order(db)
    _say(db, ORDER_TEXT)
    conversation = get_or_create_conversation(db, USER)
    data = load_state(conversation)
    data.confirming_order_id = 99
    conversation.data = data.model_dump_json()
    db.commit()

    conversation, _ = _say(db, "nuevo pedido")

    data = load_state(conversation)
    assert data.confirming_order_id is None
    assert data.pending_order is None
    assert conversation.state == states.AWAITING_CLIENT_PHONE


def test_corrupt_conversation_data_is_recovered(db, catalog):
    conversation = get_or_create_conversation(db, USER)
    conversation.state = states.COLLECTING_ITEMS
    conversation.data = "{not json"
    db.commit()

    conversation, replies = _say(db, ORDER_TEXT)

    assert conversation.state == states.AWAITING_CLIENT_PHONE
    assert "faltan datos" in replies[0]


def test_register_flow_greets_by_name_and_starts_an_order(db, catalog):
    conversation = get_or_create_conversation(db, USER)

    replies = dispatch_flow(db, conversation, REGISTER_FLOW, name="Ana")

    assert replies[0] == "¡Hola Ana! 👋 Bienvenido a Luixa."
    assert conversation.state == states.AWAITING_CLIENT_PHONE


def test_samples_flow_sends_the_welcome(db, catalog):
    conversation = get_or_create_conversation(db, USER)

    replies = dispatch_flow(db, conversation, SAMPLES, name="Ana")

    assert replies[0].startswith("Holaa Ana, soy Luixa")
    assert conversation.state == states.IDLE


def test_unknown_flow_is_rejected(db, catalog):
    conversation = get_or_create_conversation(db, USER)

    with pytest.raises(ValueError):
        dispatch_flow(db, conversation, "NOPE")


def test_supplier_change_notes_the_unfinished_confirmation_on_the_order(db, catalog):
    _start_order(db)
    _say(db, ORDER_TEXT)
    with patch(
        "luixa.services.order_confirmation._create_items",
        side_effect=SQLAlchemyError("disk I/O error"),
    ):
        _say(db, "confirmar")
    order = db.query(Order).one()

    _say(db, "corregir proveedor")
    conversation, replies = _say(db, OTHER_SUPPLIER_PHONE)

    data = load_state(conversation)
    assert data.confirming_order_id is None
    assert data.pending_order is None
    db.refresh(order)
    assert order.confirmation_error == SUPPLIER_ABANDON_REASON
    assert order.confirmation_step == "header"


def test_new_order_notes_the_unfinished_confirmation_on_the_order(db, catalog):
    _start_order(db)
    _say(db, ORDER_TEXT)
    with patch(
        "luixa.services.order_confirmation._create_items",
        side_effect=SQLAlchemyError("disk I/O error"),
    ):
        _say(db, "confirmar")

    conversation, _ = _say(db, "pedido")

    assert load_state(conversation).confirming_order_id is None
    assert db.query(Order).one().confirmation_error == NEW_ORDER_ABANDON_REASON
