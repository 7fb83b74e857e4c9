from __future__ import annotations

from sqlalchemy.orm import Session

from luixa.models.client import Client
from luixa.models.product import Product
from luixa.models.supplier import Supplier

DEMO_CLIENT = {"name": "Cliente Demo", "phone": "+52 246 123 4567"}
DEMO_SUPPLIER = {"name": "Textiles Demo", "phone": "+52 246 987 6543"}
DEMO_PRODUCTS = [
    {"name": "camisetas", "category": "Ropa", "size": "M", "price_cents": 15000, "stock_quantity": 40},
    {"name": "camisetas", "category": "Ropa", "size": "L", "price_cents": 15000, "stock_quantity": 25},
    {"name": "pantalones", "category": "Ropa", "size": "36", "price_cents": 42000, "stock_quantity": 12},
    {"name": "calcetines", "category": "Accesorios", "size": "unitalla", "price_cents": 4500, "stock_quantity": 100},
]


def seed_demo_data(db: Session) -> tuple[Client, Supplier, int]:
    """Create the demo client, supplier and catalog; rerunning only tops up missing rows."""
    client = db.query(Client).filter(Client.phone == DEMO_CLIENT["phone"]).first()
    if client is None:
        client = Client(**DEMO_CLIENT)
        db.add(client)

    supplier = db.query(Supplier).filter(Supplier.phone == DEMO_SUPPLIER["phone"]).first()
    if supplier is None:
        supplier = Supplier(**DEMO_SUPPLIER)
        db.add(supplier)
    db.flush()

    created = 0
    for row in DEMO_PRODUCTS:
        exists = (
            db.query(Product.id)
            .filter(Product.supplier_id == supplier.id, Product.name == row["name"], Product.size == row["size"])
            .first()
        )
        if exists is None:
            db.add(Product(supplier_id=supplier.id, **row))
            created += 1

    db.commit()
    db.refresh(client)
    db.refresh(supplier)
    return client, supplier, created
