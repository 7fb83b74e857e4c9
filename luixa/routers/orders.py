from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from luixa.core.database import get_db
from luixa.models.order import Order
from luixa.models.product import Product
from luixa.models.supplier import Supplier
from luixa.routers.admin_messages import require_admin_token
from luixa.services.catalog import list_catalog
from luixa.services.order_queries import (
    OrderLookup,
    cancel_order,
    client_statistics,
    lookup_order,
    update_order_status,
)

router = APIRouter(prefix="/api", tags=["orders"])


class StatusUpdate(BaseModel):
    status: str


def _order_to_dict(o: Order) -> Dict[str, Any]:
    return {
        "id": o.id,
        "tracking_code": o.tracking_code,
        "client_id": o.client_id,
        "supplier_id": o.supplier_id,
        "sequence_number": o.sequence_number,
        "status": o.status,
        "total_cents": o.total_cents,
        "notes": o.notes,
        "confirmation_step": o.confirmation_step,
        "created_at": o.created_at.isoformat() if o.created_at else None,
        "updated_at": o.updated_at.isoformat() if o.updated_at else None,
        "estimated_delivery_at": o.estimated_delivery_at.isoformat() if o.estimated_delivery_at else None,
    }


def _lookup_to_dict(lookup: OrderLookup) -> Dict[str, Any]:
    data = _order_to_dict(lookup.order)
    data["client_name"] = lookup.client_name
    data["supplier_name"] = lookup.supplier_name
    data["items"] = [
        {
            "product_id": line.product_id,
            "product_name": line.product_name,
            "size": line.size,
            "quantity": line.quantity,
            "unit_price_cents": line.unit_price_cents,
            "subtotal_cents": line.subtotal_cents,
        }
        for line in lookup.lines
    ]
    return data


def _product_to_dict(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "category": p.category,
        "size": p.size,
        "price_cents": p.price_cents,
        "stock_quantity": p.stock_quantity,
    }


@router.get("/orders/{tracking_code}")
def get_order(tracking_code: str, db: Session = Depends(get_db)):
    lookup = lookup_order(db, tracking_code)
    if lookup is None:
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    return _lookup_to_dict(lookup)


@router.post("/orders/{tracking_code}/cancel", dependencies=[Depends(require_admin_token)])
def cancel(tracking_code: str, db: Session = Depends(get_db)):
    result = cancel_order(db, tracking_code)
    if result.status == "not_found":
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    if result.status == "rejected":
        raise HTTPException(status_code=409, detail=result.message)
    return {
        "status": result.status,
        "message": result.message,
        "order": _order_to_dict(result.order),
        "stock_failures": [{"product_id": pid, "error": err} for pid, err in result.stock.failed],
    }


@router.patch("/orders/{tracking_code}/status", dependencies=[Depends(require_admin_token)])
def update_status(tracking_code: str, body: StatusUpdate, db: Session = Depends(get_db)):
    result = update_order_status(db, tracking_code, body.status)
    if result.status == "not_found":
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    if result.status == "rejected":
        raise HTTPException(status_code=422, detail=result.message)
    return {"status": result.status, "order": _order_to_dict(result.order)}


@router.get("/clients/{client_id}/stats")
def get_client_stats(client_id: int, db: Session = Depends(get_db)):
    stats = client_statistics(db, client_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Cliente no encontrado")
    return {
        "client_id": stats.client_id,
        "client_name": stats.client_name,
        "total_orders": stats.total_orders,
        "counts_by_status": stats.counts_by_status,
        "total_spent_cents": stats.total_spent_cents,
        "average_spent_cents": stats.average_spent_cents,
        "top_supplier_id": stats.top_supplier_id,
        "top_supplier_name": stats.top_supplier_name,
        "span_days": stats.span_days,
        "orders_per_month": stats.orders_per_month,
    }


@router.get("/suppliers/{supplier_id}/catalog")
def get_supplier_catalog(supplier_id: int, db: Session = Depends(get_db)):
    supplier = db.query(Supplier).filter(Supplier.id == supplier_id).first()
    if supplier is None:
        raise HTTPException(status_code=404, detail="Proveedor no encontrado")
    return {
        "supplier_id": supplier.id,
        "supplier_name": supplier.name,
        "products": [_product_to_dict(p) for p in list_catalog(db, supplier.id)],
    }
