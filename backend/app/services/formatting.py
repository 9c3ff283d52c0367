"""Display helpers for values shown to the operator while closing invoices."""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CURRENCY_SYMBOL = "R$"
# Non-breaking space between symbol and amount, as the pt-BR locale renders it.
CURRENCY_SEPARATOR = "\u00a0"


def format_currency(value: Decimal | float | int | None, symbol: str = CURRENCY_SYMBOL) -> str:
    """Format an amount the pt-BR way, e.g. ``R$ 1.234,56`` with a non-breaking space."""

    amount = Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,.2f}"
    localized = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}{symbol}{CURRENCY_SEPARATOR}{localized}"


def format_date(value: Optional[date]) -> str:
    if not value:
        return "-"
    return value.strftime("%d/%m/%Y")


def format_progress(current: int, total: int) -> str:
    return f"{current}/{total}"
