"""Builds a Temporary Order from the free text a client sends.

A submission is all-or-nothing: every line is parsed, resolved against the
supplier catalog and checked against stock, errors are collected per line, and
only a submission without errors produces a Temporary Order. Stock is read
here, never written.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from luixa.fsm.conversation_state import ConversationData, TemporaryOrder, TemporaryOrderLine
from luixa.services.catalog import format_suggestions, resolve_product
from luixa.services.formatting import format_price_cents
from luixa.services.order_parser import FORMAT_HINT, parse_order_line, split_lines

logger = logging.getLogger(__name__)

NOTHING_UNDERSTOOD = "❌ No se pudo procesar ningún producto. Verifica tu pedido y intenta nuevamente."


@dataclass
class AssemblyResult:
    lines: list[TemporaryOrderLine] = field(default_factory=list)
    total_cents: int = 0
    errors: list[str] = field(default_factory=list)
    accepted: list[str] = field(default_factory=list)
    order: TemporaryOrder | None = None

    @property
    def ok(self) -> bool:
        return self.order is not None


def _format_accepted(line: TemporaryOrderLine) -> str:
    return (
        "✅ Producto validado:\n"
        f"🛍️ {line.product_name}\n"
        f"📏 Talla: {line.size}\n"
        f"📦 Cantidad: {line.quantity}\n"
        f"💲 Precio unitario: {format_price_cents(line.unit_price_cents)}\n"
        f"💰 Subtotal: {format_price_cents(line.subtotal_cents)}"
    )


def assemble_order(
    db: Session,
    raw_text: str,
    client_id: int,
    supplier_id: int,
    supplier_name: str = "",
) -> AssemblyResult:
    result = AssemblyResult()

    for raw_line in split_lines(raw_text):
        parsed = parse_order_line(raw_line)
        if parsed is None:
            result.errors.append(
                f'⚠️ La línea: "{raw_line}" no tiene el formato esperado. Debe ser: "{FORMAT_HINT}".'
            )
            continue

        if parsed.quantity <= 0:
            result.errors.append(f'⚠️ La cantidad de "{raw_line}" debe ser mayor que cero.')
            continue

        try:
            match = resolve_product(db, supplier_id, parsed.product, parsed.size)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Product lookup failed supplier_id=%s line=%r", supplier_id, raw_line)
            result.errors.append(f'⚠️ Error al buscar el producto "{parsed.product}" talla "{parsed.size}".')
            continue

        if not match.found:
            supplier_label = f" del proveedor {supplier_name}" if supplier_name else ""
            result.errors.append(
                f'❌ No encontré el producto "{parsed.product}" en talla "{parsed.size}"{supplier_label}.'
                f"{format_suggestions(match.suggestions)}"
            )
            continue

        product = match.product
        stock = int(product.stock_quantity or 0)
        if parsed.quantity > stock:
            result.errors.append(
                f'❌ Stock insuficiente para "{product.name}" talla "{product.size}". '
                f"Stock disponible: {stock}, solicitado: {parsed.quantity}"
            )
            continue

        unit_price_cents = int(product.price_cents)
        line = TemporaryOrderLine(
            product_id=product.id,
            product_name=product.name,
            size=product.size,
            quantity=parsed.quantity,
            unit_price_cents=unit_price_cents,
            subtotal_cents=parsed.quantity * unit_price_cents,
            stock_at_validation=stock,
        )
        result.lines.append(line)
        result.total_cents += line.subtotal_cents
        result.accepted.append(_format_accepted(line))

    if result.errors:
        return result

    if not result.lines:
        result.errors.append(NOTHING_UNDERSTOOD)
        return result

    result.order = TemporaryOrder(
        client_id=client_id,
        supplier_id=supplier_id,
        lines=result.lines,
        total_cents=result.total_cents,
    )
    return result


def submit_order_text(db: Session, data: ConversationData, raw_text: str) -> AssemblyResult:
    """Assemble ``raw_text`` for the identities in ``data`` and store the outcome.

    Whatever the previous Temporary Order was, it is gone after this call: a
    valid submission replaces it, an invalid one leaves the conversation with
    no pending order.
    """
    result = assemble_order(
        db,
        raw_text,
        client_id=data.client_id,
        supplier_id=data.supplier_id,
        supplier_name=data.supplier_name or "",
    )
    data.replace_pending_order(result.order)
    logger.info(
        "Order text assembled client_id=%s supplier_id=%s lines=%s errors=%s",
        data.client_id,
        data.supplier_id,
        len(result.lines),
        len(result.errors),
    )
    return result


def format_order_summary(data: ConversationData) -> str:
    order = data.pending_order
    if order is None:
        return ""
    lines = [
        "📋 *RESUMEN DE TU PEDIDO*",
        "",
        f"👤 Cliente: {data.client_name}",
        f"🏪 Proveedor: {data.supplier_name}",
        "",
        "🛍️ *PRODUCTOS:*",
    ]
    for idx, item in enumerate(order.lines, start=1):
        lines.append(f"{idx}. {item.product_name} (Talla: {item.size})")
        lines.append(
            f"   Cantidad: {item.quantity} x {format_price_cents(item.unit_price_cents)}"
            f" = {format_price_cents(item.subtotal_cents)}"
        )
        lines.append("")
    lines.append(f"💰 *TOTAL: {format_price_cents(order.total_cents)}*")
    lines.append("")
    lines.append('✅ Si todo está correcto, escribe exactamente *"confirmar"* para procesar tu pedido.')
    lines.append("✏️ Si necesitas modificar algo, simplemente escribe tu pedido nuevamente.")
    lines.append('🔄 O usa "corregir cliente" / "corregir proveedor" para cambiar datos.')
    return "\n".join(lines)
