from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from luixa.models.order import Order
from luixa.models.order_item import OrderItem
from luixa.models.product import Product
from luixa.models.stock_movement import StockMovement

logger = logging.getLogger(__name__)


class StockUpdateError(RuntimeError):
    pass


@dataclass
class StockReport:
    applied: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)


def _movement_exists(db: Session, order_item_id: int, reason: str) -> bool:
    return (
        db.query(StockMovement.id)
        .filter(StockMovement.order_item_id == order_item_id, StockMovement.reason == reason)
        .first()
        is not None
    )


def _order_items(db: Session, order: Order) -> list[OrderItem]:
    return (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order.id)
        .order_by(OrderItem.id.asc())
        .all()
    )


def apply_sale_for_item(db: Session, order: Order, item: OrderItem) -> bool:
    if _movement_exists(db, item.id, "sale"):
        return False

    updated = (
        db.query(Product)
        .filter(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
        .update({Product.stock_quantity: Product.stock_quantity - item.quantity}, synchronize_session=False)
    )
    if not updated:
        raise StockUpdateError(f"Stock insuficiente o producto inexistente (producto {item.product_id})")

    db.add(
        StockMovement(
            order_id=order.id,
            order_item_id=item.id,
            product_id=item.product_id,
            type="OUT",
            quantity=item.quantity,
            reason="sale",
        )
    )
    db.commit()
    return True


def restore_for_item(db: Session, order: Order, item: OrderItem) -> bool:
    # solo se repone lo que efectivamente se descontó
    if not _movement_exists(db, item.id, "sale") or _movement_exists(db, item.id, "cancellation"):
        return False

    updated = (
        db.query(Product)
        .filter(Product.id == item.product_id)
        .update({Product.stock_quantity: Product.stock_quantity + item.quantity}, synchronize_session=False)
    )
    if not updated:
        raise StockUpdateError(f"Producto inexistente (producto {item.product_id})")

    db.add(
        StockMovement(
            order_id=order.id,
            order_item_id=item.id,
            product_id=item.product_id,
            type="IN",
            quantity=item.quantity,
            reason="cancellation",
        )
    )
    db.commit()
    return True


def _apply_per_item(db: Session, order: Order, operation, label: str) -> StockReport:
    report = StockReport()
    order_id = order.id
    for item in _order_items(db, order):
        product_id, quantity = item.product_id, item.quantity
        try:
            if operation(db, order, item):
                report.applied.append(product_id)
                logger.info(
                    "Stock %s applied order_id=%s product_id=%s quantity=%s",
                    label,
                    order_id,
                    product_id,
                    quantity,
                )
            else:
                report.skipped.append(product_id)
        except (SQLAlchemyError, StockUpdateError) as exc:
            db.rollback()
            report.failed.append((product_id, str(exc)))
            logger.error(
                "Stock %s failed order_id=%s product_id=%s error=%s",
                label,
                order_id,
                product_id,
                exc,
            )
    return report


def apply_stock_for_order(db: Session, order: Order) -> StockReport:
    return _apply_per_item(db, order, apply_sale_for_item, "sale")


def restore_stock_for_order(db: Session, order: Order) -> StockReport:
    return _apply_per_item(db, order, restore_for_item, "restore")
