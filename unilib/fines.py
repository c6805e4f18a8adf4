"""Overdue fine calculation."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Tuple, Union

DEFAULT_DAILY_RATE = Decimal("2.00")

DateLike = Union[date, str]


def _as_date(value: DateLike) -> date:
    return value if isinstance(value, date) else date.fromisoformat(value)


def compute_fine(
    due_date: DateLike,
    effective_return_date: DateLike,
    daily_rate: Union[Decimal, float, str] = DEFAULT_DAILY_RATE,
) -> Tuple[int, Decimal]:
    """Return ``(late_days, fine_amount)`` for a copy handed back on ``effective_return_date``.

    Returning on or before the due date costs nothing.

    >>> compute_fine("2024-01-10", "2024-01-15")
    (5, Decimal('10.00'))
    """
    late_days = max(0, (_as_date(effective_return_date) - _as_date(due_date)).days)
    rate = Decimal(str(daily_rate))
    return late_days, (rate * late_days).quantize(Decimal("0.01"))
