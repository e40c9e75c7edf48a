"""
Utilidades de fecha/hora en UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    Los datetimes naive se interpretan como UTC; nunca como hora local.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def within_seconds(a: datetime, b: datetime, seconds: float) -> bool:
    """True si ambos instantes distan menos de `seconds` segundos."""
    return abs((ensure_utc(a) - ensure_utc(b)).total_seconds()) < seconds
