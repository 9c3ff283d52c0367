"""Helpers to derive invoice due dates."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from ..schemas.billing import ClientSummary


def overflowing_date(year: int, month: int, day: int) -> date:
    """Build a date letting out-of-range months and days roll forward.

    ``month`` may exceed 12 and ``day`` may exceed the length of the month;
    the surplus carries into the following year or month, so
    ``overflowing_date(2023, 2, 31)`` is 3 March 2023.
    """

    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, 1) + timedelta(days=day - 1)


def add_months(value: date, months: int) -> date:
    """Advance ``value`` by whole calendar months keeping its day of month.

    No clamping is applied: 31 January plus one month lands in early March.
    """

    return overflowing_date(value.year, value.month + months, value.day)


def derive_default_due_date(
    client: ClientSummary, reference_date: Optional[date] = None
) -> date:
    """Return the next occurrence of the client's configured billing day.

    Clients without a billing day fall due on the reference date itself. When
    the billing day already passed this month the due date moves to the
    following month.
    """

    reference = reference_date or date.today()
    billing_day = client.billing_due_day or reference.day

    if billing_day < reference.day:
        return overflowing_date(reference.year, reference.month + 1, billing_day)
    return overflowing_date(reference.year, reference.month, billing_day)
