"""Resolve the unit price agreed with a client for a service."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from ..schemas.billing import ClientServicePrice


class PriceNotFoundError(LookupError):
    """Raised when no active price applies to a (client, service) pair."""

    def __init__(self, client_id: str, service_id: str, as_of: date) -> None:
        super().__init__(
            f"No active price for client {client_id} and service {service_id} on {as_of.isoformat()}"
        )
        self.client_id = client_id
        self.service_id = service_id
        self.as_of = as_of


class PriceResolver:
    """Read-only lookup over a snapshot of client service prices."""

    def __init__(self, prices: Iterable[ClientServicePrice]) -> None:
        self._prices: dict[tuple[str, str], list[ClientServicePrice]] = defaultdict(list)
        for price in prices:
            self._prices[(price.client_id, price.service_id)].append(price)

    def find(self, client_id: str, service_id: str, as_of: date) -> Optional[Decimal]:
        """Return the applicable unit price or ``None`` when there is none.

        The invoicing service keeps at most one active price per pair; if the
        snapshot still holds several applicable rows the most recent
        ``start_date`` wins.
        """

        candidates = [
            price
            for price in self._prices.get((client_id, service_id), [])
            if price.applies_on(as_of)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda price: price.start_date).unit_price

    def resolve(self, client_id: str, service_id: str, as_of: date) -> Decimal:
        unit_price = self.find(client_id, service_id, as_of)
        if unit_price is None:
            raise PriceNotFoundError(client_id, service_id, as_of)
        return unit_price


def resolve_price(
    prices: Iterable[ClientServicePrice], client_id: str, service_id: str, as_of: date
) -> Decimal:
    """Shortcut for a one-off lookup without keeping a resolver around."""

    return PriceResolver(prices).resolve(client_id, service_id, as_of)
