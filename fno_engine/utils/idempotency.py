"""Idempotency key generation for orders and events."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime

from fno_engine.core.data_types import to_epoch_ms


def generate_key(*parts: object) -> str:
    """Stable SHA-256 key over the string form of ``parts``."""
    raw = "|".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def order_key(
    session_id: str,
    underlying: str,
    option_type: str,
    strike: float,
    timestamp: datetime,
) -> str:
    """Entry-order key: one order per (session, underlying, type, strike, signal time)."""
    return generate_key(session_id, underlying.upper(), option_type, f"{strike:.2f}", to_epoch_ms(timestamp))


def new_session_id() -> str:
    return uuid.uuid4().hex
