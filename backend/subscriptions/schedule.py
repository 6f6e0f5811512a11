"""Calendar helpers for monthly shipment cycles (all dates UTC)."""

from datetime import date, datetime, timezone


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def first_of_next_month(day: date) -> date:
    """2024-01-31 → 2024-02-01, 2024-12-15 → 2025-01-01."""
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)
