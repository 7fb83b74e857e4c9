#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from luixa.core.config import DATABASE_URL, DEV_BOOTSTRAP_ALLOW  # noqa: E402
from luixa.core.database import Base, SessionLocal, engine  # noqa: E402
import luixa.models  # noqa: E402,F401
from luixa.services.demo_data import seed_demo_data  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Carga un cliente, un proveedor y un catálogo de prueba.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Permite ejecutar sin DEV_BOOTSTRAP_ALLOW=1",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not DEV_BOOTSTRAP_ALLOW and not args.force:
        print(
            "Carga de datos demo deshabilitada. "
            "Define DEV_BOOTSTRAP_ALLOW=1 o usa --force."
        )
        return 1

    if DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        client, supplier, created = seed_demo_data(db)
    finally:
        db.close()

    print(f"Cliente: {client.name} ({client.phone})")
    print(f"Proveedor: {supplier.name} ({supplier.phone})")
    print(f"Productos nuevos: {created}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
