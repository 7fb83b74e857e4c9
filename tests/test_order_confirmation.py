from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from luixa.fsm.conversation_state import ConversationData, load_state
from luixa.models.order import Order
from luixa.models.order_item import OrderItem
from luixa.models.product import Product
from luixa.models.stock_movement import StockMovement
from luixa.services.conversations import get_or_create_conversation
from luixa.services.order_assembler import submit_order_text
from luixa.services.order_confirmation import (
    MISSING_IDENTITIES,
    NO_PENDING_ORDER,
    abandon_confirmation,
    confirm_order,
    find_incomplete_confirmations,
)
from luixa.services.order_queries import cancel_order
from luixa.services.stock import apply_stock_for_order
from tests.fixtures_data import identities

ORDER_TEXT = "2 camisetas talla M\n1 calcetines talla unitalla"


def _stock(db, product):
    return db.query(Product.stock_quantity).filter(Product.id == product.id).scalar()


def _prepared(db, catalog):
    conversation = get_or_create_conversation(db, "5212461234567")
    data = identities(catalog)
    assert submit_order_text(db, data, ORDER_TEXT).ok
    return conversation, data


def test_confirmation_persists_order_items_and_decrements_stock(db, catalog):
    conversation, data = _prepared(db, catalog)

    result = confirm_order(db, conversation, data)

    assert result.ok
    order = db.query(Order).filter(Order.id == result.order_id).one()
    assert order.total_cents == 2500
    assert order.status == "pending"
    assert order.confirmation_step == "done"
    assert order.sequence_number == 1
    assert order.tracking_code == result.tracking_code
    assert order.tracking_code.startswith(f"{catalog.supplier.id:04d}-")
    assert order.tracking_code.endswith("-001")
    assert "Pedido creado via chatbot para cliente Ana López" in order.notes

    items = db.query(OrderItem).filter(OrderItem.order_id == order.id).all()
    assert len(items) == 2
    assert sum(item.quantity * item.unit_price_cents for item in items) == order.total_cents

    assert _stock(db, catalog.products["shirt_m"]) == 8
    assert _stock(db, catalog.products["socks"]) == 19

    assert data.pending_order is None
    assert data.confirming_order_id is None
    assert load_state(conversation).pending_order is None

    delivery = order.estimated_delivery_at.replace(tzinfo=None)
    expected = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=7)
    assert abs((delivery - expected).total_seconds()) < 120

    assert order.tracking_code in result.message
    assert "$25.00" in result.message


def test_confirmation_requires_a_temporary_order(db, catalog):
    conversation = get_or_create_conversation(db, "5212461234567")

    result = confirm_order(db, conversation, identities(catalog))

    assert result.status == "rejected"
    assert result.message == NO_PENDING_ORDER
    assert db.query(Order).count() == 0


def test_confirmation_requires_client_and_supplier(db, catalog):
    conversation, data = _prepared(db, catalog)
    incomplete = ConversationData(pending_order=data.pending_order, client_id=catalog.client.id)

    result = confirm_order(db, conversation, incomplete)

    assert result.status == "rejected"
    assert result.message == MISSING_IDENTITIES
    assert db.query(Order).count() == 0


def test_header_failure_keeps_temporary_order_for_retry(db, catalog):
    conversation, data = _prepared(db, catalog)

    with patch(
        "luixa.services.order_confirmation.new_tracking_code",
        side_effect=SQLAlchemyError("database is locked"),
    ):
        result = confirm_order(db, conversation, data)

    assert result.status == "failed"
    assert result.message.startswith("⚠️ Error al crear tu pedido: database is locked")
    assert data.pending_order is not None
    assert data.confirming_order_id is None
    assert db.query(Order).count() == 0
    assert _stock(db, catalog.products["shirt_m"]) == 10


def test_items_failure_leaves_marker_and_retry_resumes_same_order(db, catalog):
    conversation, data = _prepared(db, catalog)

    with patch(
        "luixa.services.order_confirmation._create_items",
        side_effect=SQLAlchemyError("disk I/O error"),
    ):
        failed = confirm_order(db, conversation, data)

    assert failed.status == "failed"
    assert failed.message.startswith("⚠️ Error al guardar los detalles: disk I/O error")
    order = db.query(Order).one()
    assert order.confirmation_step == "header"
    assert "disk I/O error" in order.confirmation_error
    assert data.confirming_order_id == order.id
    assert load_state(conversation).confirming_order_id == order.id
    assert data.pending_order is not None
    assert [o.id for o in find_incomplete_confirmations(db)] == [order.id]

    resumed = confirm_order(db, conversation, data)

    assert resumed.ok
    assert resumed.order_id == order.id
    assert resumed.tracking_code == failed.tracking_code
    assert db.query(Order).count() == 1
    assert db.query(OrderItem).filter(OrderItem.order_id == order.id).count() == 2
    assert _stock(db, catalog.products["shirt_m"]) == 8
    assert find_incomplete_confirmations(db) == []


def test_stock_failure_on_one_line_does_not_abort_confirmation(db, catalog):
    conversation, data = _prepared(db, catalog)
    socks = catalog.products["socks"]
    db.query(Product).filter(Product.id == socks.id).update({Product.stock_quantity: 0})
    db.commit()

    result = confirm_order(db, conversation, data)

    assert result.ok
    assert len(result.stock_failures) == 1
    assert result.stock_failures[0][0] == socks.id
    assert _stock(db, catalog.products["shirt_m"]) == 8
    assert _stock(db, socks) == 0
    order = db.query(Order).one()
    assert order.confirmation_error
    assert db.query(StockMovement).filter(StockMovement.order_id == order.id).count() == 1


def test_stock_application_is_idempotent_per_item(db, catalog):
    conversation, data = _prepared(db, catalog)
    result = confirm_order(db, conversation, data)
    order = db.query(Order).filter(Order.id == result.order_id).one()

    report = apply_stock_for_order(db, order)

    assert report.applied == []
    assert len(report.skipped) == 2
    assert _stock(db, catalog.products["shirt_m"]) == 8


def _fail_items_once(db, conversation, data):
    with patch(
        "luixa.services.order_confirmation._create_items",
        side_effect=SQLAlchemyError("disk I/O error"),
    ):
        failed = confirm_order(db, conversation, data)
    assert failed.status == "failed"
    return db.query(Order).filter(Order.id == failed.order_id).one()


def test_order_cancelled_mid_confirmation_is_not_resumed(db, catalog):
    conversation, data = _prepared(db, catalog)
    order = _fail_items_once(db, conversation, data)

    assert cancel_order(db, order.tracking_code).status == "cancelled"
    resumed = confirm_order(db, conversation, data)

    assert not resumed.ok
    assert resumed.status == "rejected"
    assert "fue cancelado" in resumed.message
    assert order.status == "cancelled"
    assert order.confirmation_step == "done"
    assert db.query(OrderItem).filter(OrderItem.order_id == order.id).count() == 0
    assert _stock(db, catalog.products["shirt_m"]) == 10
    assert _stock(db, catalog.products["socks"]) == 20
    assert data.confirming_order_id is None
    assert data.pending_order is None
    assert load_state(conversation).confirming_order_id is None
    assert find_incomplete_confirmations(db) == []


def test_header_and_marker_are_committed_together(db, catalog):
    conversation, data = _prepared(db, catalog)

    with patch(
        "luixa.services.order_confirmation.store_state",
        side_effect=SQLAlchemyError("database is locked"),
    ):
        failed = confirm_order(db, conversation, data)

    assert failed.status == "failed"
    assert db.query(Order).count() == 0
    assert data.confirming_order_id is None
    assert data.pending_order is not None

    retried = confirm_order(db, conversation, data)

    assert retried.ok
    assert db.query(Order).count() == 1


def test_abandoned_confirmation_is_noted_on_the_order(db, catalog):
    conversation, data = _prepared(db, catalog)
    order = _fail_items_once(db, conversation, data)

    abandon_confirmation(db, data, "Se cambió el proveedor antes de terminar la confirmación")

    assert data.confirming_order_id is None
    db.refresh(order)
    assert order.confirmation_error == "Se cambió el proveedor antes de terminar la confirmación"
    assert order.confirmation_step == "header"
    assert [o.id for o in find_incomplete_confirmations(db)] == [order.id]
