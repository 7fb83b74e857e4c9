from __future__ import annotations

from datetime import datetime

STATUS_LABELS = {
    "pending": "Pendiente",
    "in_process": "En proceso",
    "completed": "Completado",
    "cancelled": "Cancelado",
}


def format_price_cents(price_cents: int) -> str:
    return f"${(price_cents or 0) / 100:,.2f}"


def format_date(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")


def status_label(status: str | None) -> str:
    return STATUS_LABELS.get((status or "").strip().lower(), status or "-")
