"""Supplier catalog lookup.

Product names and sizes arrive as free text typed by the user, so resolution
walks an ordered list of matchers, from exact to loose, and stops at the first
one that returns rows. When every matcher comes back empty the caller gets a
handful of the supplier's products as suggestions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Query, Session

from luixa.models.product import Product
from luixa.services.formatting import format_price_cents

SUGGESTION_LIMIT = 5

Matcher = Callable[[Query, str, str], Query]


@dataclass
class CatalogMatch:
    product: Product | None = None
    tier: str | None = None
    suggestions: list[Product] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.product is not None


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _exact_name_and_size(query: Query, name: str, size: str) -> Query:
    return query.filter(Product.name == name, Product.size == size)


def _partial_name_exact_size(query: Query, name: str, size: str) -> Query:
    return query.filter(Product.name.ilike(_like_pattern(name), escape="\\"), Product.size == size)


def _partial_name_and_size(query: Query, name: str, size: str) -> Query:
    return query.filter(
        Product.name.ilike(_like_pattern(name), escape="\\"),
        Product.size.ilike(_like_pattern(size), escape="\\"),
    )


MATCHERS: list[tuple[str, Matcher]] = [
    ("exact", _exact_name_and_size),
    ("partial_name", _partial_name_exact_size),
    ("partial_name_size", _partial_name_and_size),
]


def _supplier_products(db: Session, supplier_id: int) -> Query:
    return db.query(Product).filter(Product.supplier_id == supplier_id)


def suggest_products(db: Session, supplier_id: int, limit: int = SUGGESTION_LIMIT) -> list[Product]:
    return _supplier_products(db, supplier_id).order_by(Product.id.asc()).limit(limit).all()


def resolve_product(db: Session, supplier_id: int, name: str, size: str) -> CatalogMatch:
    name = (name or "").strip()
    size = (size or "").strip()

    for tier, matcher in MATCHERS:
        rows = matcher(_supplier_products(db, supplier_id), name, size).order_by(Product.id.asc()).all()
        if rows:
            return CatalogMatch(product=rows[0], tier=tier)

    return CatalogMatch(suggestions=suggest_products(db, supplier_id))


def list_catalog(db: Session, supplier_id: int) -> list[Product]:
    return _supplier_products(db, supplier_id).order_by(Product.name.asc(), Product.id.asc()).all()


def format_catalog(supplier_name: str, products: list[Product], title: str = "CATÁLOGO DE") -> str:
    if not products:
        return f"⚠️ No se encontraron productos para el proveedor {supplier_name}"

    lines = [f"📋 *{title} {supplier_name.upper()}*", ""]
    for idx, product in enumerate(products, start=1):
        lines.append(f"{idx}. 🛍️ *{product.name}*")
        lines.append(f"   📂 Categoría: {product.category or '-'}")
        lines.append(f"   📏 Talla: {product.size}")
        lines.append(f"   💲 Precio: {format_price_cents(product.price_cents)}")
        lines.append(f"   📦 Stock: {product.stock_quantity or 0} unidades")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_suggestions(products: list[Product]) -> str:
    if not products:
        return ""
    lines = ["", "", "📋 *Productos disponibles del proveedor:*"]
    for idx, product in enumerate(products, start=1):
        lines.append(f"{idx}. {product.name} (Talla: {product.size})")
    return "\n".join(lines)
