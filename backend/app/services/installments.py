"""Split invoice totals into monthly installments."""

from __future__ import annotations

from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from ..schemas.closing import Installment
from .due_dates import add_months

CENTS = Decimal("0.01")
MIN_INSTALLMENTS = 2
MAX_INSTALLMENTS = 12


class InvalidScheduleError(ValueError):
    """Raised when installment parameters cannot produce a valid schedule."""


def normalize_amount(value: Decimal | float | int | str) -> Decimal:
    """Round a monetary value to cents."""

    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidScheduleError(f"Invalid amount: {value!r}") from exc
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def schedule_installments(
    total_amount: Decimal | float | int | str,
    installment_count: int,
    first_due_date: Optional[date],
) -> list[Installment]:
    """Split ``total_amount`` into ``installment_count`` monthly installments.

    Every installment but the last receives the total divided by the count,
    truncated to cents; the last one absorbs the remainder so the schedule
    always adds up to the total exactly. Installment ``n`` falls due
    ``n - 1`` months after ``first_due_date``.
    """

    if isinstance(installment_count, bool) or not isinstance(installment_count, int):
        raise InvalidScheduleError("Installment count must be an integer")
    if installment_count < MIN_INSTALLMENTS:
        raise InvalidScheduleError(
            f"Installment count must be at least {MIN_INSTALLMENTS}"
        )
    if installment_count > MAX_INSTALLMENTS:
        raise InvalidScheduleError(
            f"Installment count must be at most {MAX_INSTALLMENTS}"
        )
    if first_due_date is None:
        raise InvalidScheduleError("First due date is required to schedule installments")

    total = normalize_amount(total_amount)
    if total <= 0:
        raise InvalidScheduleError("Total amount must be greater than zero")

    base = (total / installment_count).quantize(CENTS, rounding=ROUND_DOWN)
    last = (total - base * (installment_count - 1)).quantize(CENTS, rounding=ROUND_HALF_UP)

    return [
        Installment(
            number=number,
            amount=last if number == installment_count else base,
            due_date=add_months(first_due_date, number - 1),
        )
        for number in range(1, installment_count + 1)
    ]
