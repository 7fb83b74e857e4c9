"""Short order codes a client or courier can read aloud.

``build_candidate`` is pure; ``generate_tracking_code`` drives it with a
bounded number of uniqueness checks and falls back to an emergency code when
they run out. The check and the later insert are not atomic, the unique index
on ``orders.tracking_code`` is the last line.
"""
from __future__ import annotations

import logging
import random
import string
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from luixa.models.order import Order

logger = logging.getLogger(__name__)

TRACKING_CODE_MAX_LENGTH = 20
MAX_ATTEMPTS = 5
_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(_ALPHABET) for _ in range(length))


def _timestamp_digits(now: datetime) -> str:
    return str(int(now.timestamp() * 1000))


def compact_candidate(supplier_id, now: datetime, rng: random.Random) -> str:
    supplier_part = str(supplier_id).zfill(3)[-3:].upper()
    return f"{supplier_part}-{_timestamp_digits(now)[-6:]}-{_random_suffix(rng, 3)}"


def emergency_code(now: datetime, rng: random.Random) -> str:
    return f"E{_timestamp_digits(now)[-10:]}{_random_suffix(rng, 4)}"


def build_candidate(supplier_id, sequence: int, attempt: int, now: datetime, rng: random.Random) -> str:
    supplier_part = str(supplier_id).zfill(4)[-4:].upper()
    code = f"{supplier_part}-{now:%y%m%d}-{sequence:03d}"
    if attempt > 1:
        code = f"{code}-{_random_suffix(rng, 3)}"
    if len(code) > TRACKING_CODE_MAX_LENGTH:
        code = compact_candidate(supplier_id, now, rng)
    return code


def generate_tracking_code(
    exists: Callable[[str], bool],
    supplier_id,
    sequence: int,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> str:
    now = now or datetime.now(timezone.utc)
    rng = rng or random.SystemRandom()

    for attempt in range(1, max_attempts + 1):
        candidate = build_candidate(supplier_id, sequence, attempt, now, rng)
        if not exists(candidate):
            return candidate
        logger.warning(
            "Tracking code collision supplier_id=%s sequence=%s attempt=%s code=%s",
            supplier_id,
            sequence,
            attempt,
            candidate,
        )

    code = emergency_code(now, rng)
    logger.error(
        "Tracking code retries exhausted supplier_id=%s sequence=%s, using emergency code %s",
        supplier_id,
        sequence,
        code,
    )
    return code


def tracking_code_exists(db: Session, code: str) -> bool:
    return db.query(Order.id).filter(Order.tracking_code == code).first() is not None


def next_sequence_number(db: Session, supplier_id: int) -> int:
    current = (
        db.query(func.max(Order.sequence_number))
        .filter(Order.supplier_id == supplier_id)
        .scalar()
    )
    return int(current or 0) + 1


def new_tracking_code(db: Session, supplier_id: int, sequence: int, now: datetime | None = None) -> str:
    return generate_tracking_code(
        lambda code: tracking_code_exists(db, code),
        supplier_id,
        sequence,
        now=now,
    )
