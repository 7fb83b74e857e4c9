"""Turns the conversation's Temporary Order into a persisted order.

The store gives no multi-statement transactions, so confirmation runs as a
saga: each step commits on its own and records its progress in
``Order.confirmation_step``. The conversation keeps ``confirming_order_id``
until the last step, so a "confirmar" after a failure resumes the same order
instead of creating a second one. Nothing is rolled back once committed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from luixa.core.config import ORDER_DELIVERY_DAYS
from luixa.fsm.conversation_state import ConversationData, TemporaryOrder, store_state
from luixa.models.conversation import Conversation
from luixa.models.order import Order
from luixa.models.order_item import OrderItem
from luixa.services.formatting import format_date, format_price_cents
from luixa.services.stock import StockReport, apply_stock_for_order
from luixa.services.tracking_codes import new_tracking_code, next_sequence_number

logger = logging.getLogger(__name__)

NO_PENDING_ORDER = "❌ No hay un pedido para confirmar. Por favor, ingresa tu pedido primero."
MISSING_IDENTITIES = "❌ Error: faltan datos del cliente o proveedor."
CANCELLED_BEFORE_CONFIRMATION = "Pedido cancelado antes de completar la confirmación"


@dataclass
class ConfirmationResult:
    status: str  # confirmed / rejected / failed
    message: str
    order_id: int | None = None
    tracking_code: str | None = None
    stock_failures: list[tuple[int, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "confirmed"


def _persist_state(db: Session, conversation: Conversation, data: ConversationData) -> None:
    store_state(conversation, data)
    db.commit()


def _create_header(
    db: Session, conversation: Conversation, data: ConversationData, pending: TemporaryOrder
) -> Order:
    now = datetime.now(timezone.utc)
    sequence = next_sequence_number(db, pending.supplier_id)
    tracking_code = new_tracking_code(db, pending.supplier_id, sequence, now=now)
    order = Order(
        client_id=pending.client_id,
        supplier_id=pending.supplier_id,
        sequence_number=sequence,
        tracking_code=tracking_code,
        status="pending",
        total_cents=sum(line.subtotal_cents for line in pending.lines),
        notes=f"Pedido creado via chatbot para cliente {data.client_name or pending.client_id}",
        confirmation_step="header",
        estimated_delivery_at=now + timedelta(days=ORDER_DELIVERY_DAYS),
    )
    db.add(order)
    db.flush()
    # cabecera y marcador van en el mismo commit
    data.confirming_order_id = order.id
    try:
        store_state(conversation, data)
        db.commit()
    except SQLAlchemyError:
        data.confirming_order_id = None
        raise
    db.refresh(order)
    logger.info(
        "Order header created",
        extra={"order_id": order.id, "tracking_code": order.tracking_code},
    )
    return order


def _create_items(db: Session, order: Order, pending: TemporaryOrder) -> None:
    already = db.query(OrderItem.id).filter(OrderItem.order_id == order.id).first()
    if already is None:
        for line in pending.lines:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    size=line.size,
                )
            )
    order.confirmation_step = "items"
    order.confirmation_error = None
    db.commit()


def _record_failure(db: Session, order: Order, error: str) -> None:
    try:
        order.confirmation_error = error
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record confirmation error order_id=%s", order.id)


def _load_in_progress(db: Session, data: ConversationData) -> Order | None:
    if not data.confirming_order_id:
        return None
    order = db.query(Order).filter(Order.id == data.confirming_order_id).first()
    if order is not None and order.status == "cancelled":
        return order
    if order is None or order.confirmation_step == "done":
        data.confirming_order_id = None
        return None
    return order


def _close_cancelled(
    db: Session, conversation: Conversation, data: ConversationData, order: Order
) -> ConfirmationResult:
    order_id, tracking_code = order.id, order.tracking_code
    data.replace_pending_order(None)
    data.confirming_order_id = None
    try:
        if order.confirmation_step != "done":
            order.confirmation_step = "done"
            order.confirmation_error = CANCELLED_BEFORE_CONFIRMATION
        _persist_state(db, conversation, data)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not close cancelled confirmation order_id=%s", order_id)
    logger.warning(
        "Confirmation stopped, order was cancelled",
        extra={"order_id": order_id, "tracking_code": tracking_code},
    )
    return ConfirmationResult(
        status="rejected",
        message=(
            f"❌ El pedido {tracking_code} fue cancelado antes de terminar la confirmación. "
            "Ingresa tu pedido nuevamente."
        ),
        order_id=order_id,
        tracking_code=tracking_code,
    )


def abandon_confirmation(db: Session, data: ConversationData, reason: str) -> None:
    """Drop the conversation's confirmation marker, noting ``reason`` on the order.

    The order keeps its step, so it is still listed by
    :func:`find_incomplete_confirmations`.
    """
    order_id = data.confirming_order_id
    if not order_id:
        return
    data.confirming_order_id = None
    try:
        updated = (
            db.query(Order)
            .filter(Order.id == order_id, Order.confirmation_step != "done")
            .update({Order.confirmation_error: reason}, synchronize_session="fetch")
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record abandoned confirmation order_id=%s", order_id)
        return
    if updated:
        logger.warning("Confirmation abandoned reason=%s", reason, extra={"order_id": order_id})


def format_confirmation(order: Order, data: ConversationData, pending: TemporaryOrder | None) -> str:
    products = ""
    if pending is not None:
        rows = [
            f"{idx}. {line.product_name} (Talla: {line.size}) - Cantidad: {line.quantity}"
            f" - {format_price_cents(line.subtotal_cents)}"
            for idx, line in enumerate(pending.lines, start=1)
        ]
        products = "\n".join(rows)
    return (
        "🎉 *¡PEDIDO CONFIRMADO EXITOSAMENTE!*\n\n"
        "📋 *Detalles del pedido:*\n"
        f"🔖 Código de seguimiento: *{order.tracking_code}*\n"
        f"👤 Cliente: {data.client_name}\n"
        f"🏪 Proveedor: {data.supplier_name}\n"
        f"🚚 Entrega estimada: {format_date(order.estimated_delivery_at)}\n\n"
        f"🛍️ *Productos:*\n{products}\n\n"
        f"💰 *Total: {format_price_cents(order.total_cents)}*\n\n"
        "✅ Tu pedido ha sido procesado y el stock ha sido actualizado.\n"
        "Guarda tu código para consultar el estado con \"consultar estado\".\n\n"
        "¡Gracias por tu compra! 🛍️"
    )


def confirm_order(db: Session, conversation: Conversation, data: ConversationData) -> ConfirmationResult:
    pending = data.pending_order
    if pending is None or not pending.lines:
        return ConfirmationResult(status="rejected", message=NO_PENDING_ORDER)
    if not data.has_identities():
        return ConfirmationResult(status="rejected", message=MISSING_IDENTITIES)

    order = _load_in_progress(db, data)
    if order is not None and order.status == "cancelled":
        return _close_cancelled(db, conversation, data, order)

    if order is None:
        try:
            order = _create_header(db, conversation, data, pending)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Order header insert failed client_id=%s", pending.client_id)
            return ConfirmationResult(status="failed", message=f"⚠️ Error al crear tu pedido: {exc}")
    else:
        logger.info(
            "Resuming confirmation step=%s",
            order.confirmation_step,
            extra={"order_id": order.id, "tracking_code": order.tracking_code},
        )

    order_id, tracking_code = order.id, order.tracking_code

    if order.confirmation_step == "header":
        try:
            _create_items(db, order, pending)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Order items insert failed order_id=%s", order_id)
            _record_failure(db, order, str(exc))
            return ConfirmationResult(
                status="failed",
                message=(
                    f"⚠️ Error al guardar los detalles: {exc}\n\n"
                    f"Tu pedido {tracking_code} quedó registrado sin productos. "
                    'Escribe "confirmar" para reintentar.'
                ),
                order_id=order_id,
                tracking_code=tracking_code,
            )

    report = StockReport()
    if order.confirmation_step == "items":
        report = apply_stock_for_order(db, order)
        try:
            order.confirmation_step = "stock"
            if report.failed:
                order.confirmation_error = "; ".join(error for _, error in report.failed)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not record stock step order_id=%s", order_id)

    message = format_confirmation(order, data, pending)

    data.replace_pending_order(None)
    data.confirming_order_id = None
    try:
        order.confirmation_step = "done"
        _persist_state(db, conversation, data)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not close confirmation order_id=%s", order_id)

    logger.info(
        "Order confirmed stock_failures=%s",
        len(report.failed),
        extra={"order_id": order_id, "tracking_code": tracking_code},
    )
    return ConfirmationResult(
        status="confirmed",
        message=message,
        order_id=order_id,
        tracking_code=tracking_code,
        stock_failures=report.failed,
    )


def find_incomplete_confirmations(db: Session) -> list[Order]:
    return (
        db.query(Order)
        .filter(Order.confirmation_step != "done")
        .order_by(Order.id.asc())
        .all()
    )
