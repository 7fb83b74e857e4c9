"""Read side and lifecycle of persisted orders.

Works straight against the database, never against conversation state, so
the same functions back both the chat flows and the HTTP API.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from luixa.models.client import Client
from luixa.models.order import Order
from luixa.models.order_item import OrderItem
from luixa.models.product import Product
from luixa.models.supplier import Supplier
from luixa.services.formatting import format_date, format_price_cents, status_label
from luixa.services.order_confirmation import CANCELLED_BEFORE_CONFIRMATION
from luixa.services.stock import StockReport, restore_stock_for_order

logger = logging.getLogger(__name__)

CANCEL_MARKER = " [CANCELADO VIA CHATBOT]"

# cancelación va aparte por cancel_order (repone stock)
STATUS_TRANSITIONS = {
    "pending": {"in_process"},
    "in_process": {"completed"},
    "completed": set(),
    "cancelled": set(),
}


@dataclass
class OrderLine:
    product_id: int
    product_name: str
    size: str
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass
class OrderLookup:
    order: Order
    lines: list[OrderLine] = field(default_factory=list)
    client_name: str | None = None
    supplier_name: str | None = None


@dataclass
class ClientStatistics:
    client_id: int
    client_name: str | None
    total_orders: int = 0
    counts_by_status: dict[str, int] = field(default_factory=dict)
    total_spent_cents: int = 0
    average_spent_cents: int = 0
    top_supplier_id: int | None = None
    top_supplier_name: str | None = None
    top_supplier_orders: int = 0
    span_days: int = 0
    orders_per_month: float = 0.0


@dataclass
class CancellationResult:
    status: str  # cancelled / already_cancelled / rejected / not_found
    message: str
    order: Order | None = None
    stock: StockReport = field(default_factory=StockReport)

    @property
    def ok(self) -> bool:
        return self.status in {"cancelled", "already_cancelled"}


@dataclass
class StatusUpdateResult:
    status: str  # updated / unchanged / rejected / not_found
    message: str
    order: Order | None = None


def get_order_by_code(db: Session, tracking_code: str | None) -> Order | None:
    code = (tracking_code or "").strip().upper()
    if not code:
        return None
    return db.query(Order).filter(Order.tracking_code == code).first()


def not_found_message(tracking_code: str | None) -> str:
    return f'❌ No encontré ningún pedido con el código "{(tracking_code or "").strip()}". Verifica el código e intenta nuevamente.'


def lookup_order(db: Session, tracking_code: str | None) -> OrderLookup | None:
    order = get_order_by_code(db, tracking_code)
    if order is None:
        return None

    items = (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order.id)
        .order_by(OrderItem.id.asc())
        .all()
    )
    product_ids = {item.product_id for item in items}
    names: dict[int, str] = {}
    if product_ids:
        names = {
            product_id: name
            for product_id, name in db.query(Product.id, Product.name).filter(Product.id.in_(product_ids))
        }

    client = db.query(Client.name).filter(Client.id == order.client_id).first()
    supplier = db.query(Supplier.name).filter(Supplier.id == order.supplier_id).first()

    return OrderLookup(
        order=order,
        lines=[
            OrderLine(
                product_id=item.product_id,
                product_name=names.get(item.product_id, f"Producto {item.product_id}"),
                size=item.size or "",
                quantity=int(item.quantity),
                unit_price_cents=int(item.unit_price_cents),
            )
            for item in items
        ],
        client_name=client[0] if client else None,
        supplier_name=supplier[0] if supplier else None,
    )


def client_statistics(db: Session, client_id: int) -> ClientStatistics | None:
    client = db.query(Client).filter(Client.id == client_id).first()
    if client is None:
        return None

    orders = (
        db.query(Order)
        .filter(Order.client_id == client_id)
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    stats = ClientStatistics(client_id=client.id, client_name=client.name, total_orders=len(orders))
    if not orders:
        return stats

    stats.counts_by_status = dict(Counter(order.status for order in orders))

    billable = [order for order in orders if order.status != "cancelled"]
    stats.total_spent_cents = sum(int(order.total_cents or 0) for order in billable)
    if billable:
        stats.average_spent_cents = round(stats.total_spent_cents / len(billable))

    # Counter conserva el orden de inserción; max() devuelve el primero en empate
    per_supplier = Counter(order.supplier_id for order in orders)
    top_supplier_id = max(per_supplier, key=per_supplier.get)
    stats.top_supplier_id = top_supplier_id
    stats.top_supplier_orders = per_supplier[top_supplier_id]
    supplier = db.query(Supplier.name).filter(Supplier.id == top_supplier_id).first()
    stats.top_supplier_name = supplier[0] if supplier else None

    first, last = orders[0].created_at, orders[-1].created_at
    if first is not None and last is not None:
        stats.span_days = max(1, (last - first).days)
    else:
        stats.span_days = 1
    stats.orders_per_month = round(len(orders) / max(stats.span_days / 30, 1), 1)
    return stats


def cancel_order(db: Session, tracking_code: str | None) -> CancellationResult:
    order = get_order_by_code(db, tracking_code)
    if order is None:
        return CancellationResult(status="not_found", message=not_found_message(tracking_code))

    if order.status == "completed":
        return CancellationResult(
            status="rejected",
            message=f"❌ El pedido {order.tracking_code} ya fue completado y no se puede cancelar.",
            order=order,
        )
    if order.status == "cancelled":
        return CancellationResult(
            status="already_cancelled",
            message=f"ℹ️ El pedido {order.tracking_code} ya estaba cancelado.",
            order=order,
        )

    order_id, code = order.id, order.tracking_code
    try:
        order.status = "cancelled"
        order.notes = f"{order.notes or ''}{CANCEL_MARKER}"
        if order.confirmation_step not in (None, "done"):
            order.confirmation_step = "done"
            order.confirmation_error = CANCELLED_BEFORE_CONFIRMATION
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Order cancel failed", extra={"order_id": order_id, "tracking_code": code})
        return CancellationResult(
            status="rejected",
            message=f"⚠️ Error al cancelar el pedido: {exc}",
            order=order,
        )

    report = restore_stock_for_order(db, order)
    logger.info(
        "Order cancelled restored=%s failed=%s",
        len(report.applied),
        len(report.failed),
        extra={"order_id": order_id, "tracking_code": code},
    )

    message = f"✅ El pedido {code} fue cancelado y el stock fue repuesto."
    if report.failed:
        message += f"\n⚠️ No se pudo reponer el stock de {len(report.failed)} producto(s)."
    return CancellationResult(status="cancelled", message=message, order=order, stock=report)


def update_order_status(db: Session, tracking_code: str | None, new_status: str | None) -> StatusUpdateResult:
    order = get_order_by_code(db, tracking_code)
    if order is None:
        return StatusUpdateResult(status="not_found", message=not_found_message(tracking_code))

    target = (new_status or "").strip().lower()
    if target == order.status:
        return StatusUpdateResult(status="unchanged", message=f"El pedido ya está {status_label(target)}.", order=order)
    if target not in STATUS_TRANSITIONS.get(order.status, set()):
        return StatusUpdateResult(
            status="rejected",
            message=f"Transición inválida: {order.status} -> {target or '-'}",
            order=order,
        )

    previous = order.status
    try:
        order.status = target
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "Order status update failed",
            extra={"order_id": order.id, "tracking_code": order.tracking_code},
        )
        return StatusUpdateResult(
            status="rejected",
            message=f"⚠️ Error al actualizar el pedido: {exc}",
            order=order,
        )
    db.refresh(order)
    logger.info(
        "Order status changed %s -> %s",
        previous,
        target,
        extra={"order_id": order.id, "tracking_code": order.tracking_code},
    )
    return StatusUpdateResult(status="updated", message=f"Pedido {status_label(target)}.", order=order)


def format_order_status(order: Order) -> str:
    return (
        f"📦 Pedido *{order.tracking_code}*\n"
        f"📌 Estado: *{status_label(order.status)}*\n"
        f"🗓️ Creado: {format_date(order.created_at)}\n"
        f"🚚 Entrega estimada: {format_date(order.estimated_delivery_at)}"
    )


def format_order_details(lookup: OrderLookup) -> str:
    order = lookup.order
    lines = [
        f"📋 *PEDIDO {order.tracking_code}*",
        "",
        f"👤 Cliente: {lookup.client_name or '-'}",
        f"🏪 Proveedor: {lookup.supplier_name or '-'}",
        f"📌 Estado: {status_label(order.status)}",
        f"🗓️ Creado: {format_date(order.created_at)}",
        f"🚚 Entrega estimada: {format_date(order.estimated_delivery_at)}",
        "",
        "🛍️ *Productos:*",
    ]
    if not lookup.lines:
        lines.append("(sin productos registrados)")
    for idx, line in enumerate(lookup.lines, start=1):
        lines.append(
            f"{idx}. {line.product_name} (Talla: {line.size}) - {line.quantity} x "
            f"{format_price_cents(line.unit_price_cents)} = {format_price_cents(line.subtotal_cents)}"
        )
    lines.append("")
    lines.append(f"💰 *Total: {format_price_cents(order.total_cents)}*")
    return "\n".join(lines)


def format_client_statistics(stats: ClientStatistics) -> str:
    if stats.total_orders == 0:
        return f"📊 {stats.client_name} todavía no tiene pedidos registrados."

    lines = [f"📊 *ESTADÍSTICAS DE {(stats.client_name or '').upper()}*", ""]
    lines.append(f"🧾 Pedidos totales: {stats.total_orders}")
    for status, count in stats.counts_by_status.items():
        lines.append(f"   • {status_label(status)}: {count}")
    lines.append(f"💰 Gasto total: {format_price_cents(stats.total_spent_cents)}")
    lines.append(f"📈 Gasto promedio: {format_price_cents(stats.average_spent_cents)}")
    if stats.top_supplier_id is not None:
        lines.append(
            f"🏪 Proveedor favorito: {stats.top_supplier_name or stats.top_supplier_id}"
            f" ({stats.top_supplier_orders} pedidos)"
        )
    lines.append(f"🗓️ Días activo: {stats.span_days}")
    lines.append(f"📆 Pedidos por mes: {stats.orders_per_month}")
    return "\n".join(lines)
