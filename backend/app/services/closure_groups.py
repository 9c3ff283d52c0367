"""Group selected billing entries per client before closing them."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from ..schemas.billing import BillingEntry, ClientServicePrice, ClientSummary
from ..schemas.closing import (
    ClosureBatch,
    ClosureGroup,
    ClosureLine,
    MissingPrice,
    RejectionReason,
)
from .price_resolver import PriceResolver

LOGGER = logging.getLogger(__name__)

CENTS = Decimal("0.01")

REJECTION_ENTRY_NOT_FOUND = "entry_not_found"
REJECTION_CLIENT_NOT_FOUND = "client_not_found"


class ClosureValidationError(ValueError):
    """Raised when a selection of billing entries cannot be closed."""

    def __init__(self, message: str, entry_ids: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.entry_ids = list(entry_ids)


class EmptySelectionError(ClosureValidationError):
    """Raised when no billing entry was selected."""


class NonBillableEntriesError(ClosureValidationError):
    """Raised when the selection contains entries flagged as non billable."""


class AlreadyInvoicedError(ClosureValidationError):
    """Raised when the selection contains entries already linked to an invoice."""


def _unique(values: Iterable[str]) -> list[str]:
    return list(OrderedDict.fromkeys(values))


def _validate_entries(selected: Sequence[BillingEntry]) -> None:
    non_billable = [entry.id for entry in selected if not entry.is_billable]
    if non_billable:
        raise NonBillableEntriesError(
            f"Non billable entries cannot be closed: {', '.join(non_billable)}",
            non_billable,
        )

    invoiced = [entry.id for entry in selected if entry.is_invoiced]
    if invoiced:
        raise AlreadyInvoicedError(
            f"Entries already linked to an invoice: {', '.join(invoiced)}",
            invoiced,
        )


def _price_group(
    client: ClientSummary,
    entries: list[BillingEntry],
    resolver: PriceResolver,
    closing_date: date,
) -> ClosureGroup:
    lines: list[ClosureLine] = []
    missing: list[MissingPrice] = []
    total = Decimal("0")

    for entry in entries:
        unit_price = resolver.find(entry.client_id, entry.service_id, closing_date)
        if unit_price is None:
            missing.append(MissingPrice(entry_id=entry.id, service_id=entry.service_id))
            line_total = Decimal("0")
        else:
            line_total = entry.quantity * unit_price
        total += line_total
        lines.append(
            ClosureLine(
                entry_id=entry.id,
                service_id=entry.service_id,
                service_date=entry.service_date,
                quantity=entry.quantity,
                unit_price=unit_price,
                line_total=line_total.quantize(CENTS, rounding=ROUND_HALF_UP),
            )
        )

    return ClosureGroup(
        client=client,
        entries=entries,
        lines=lines,
        total_amount=total.quantize(CENTS, rounding=ROUND_HALF_UP),
        missing_prices=missing,
    )


def build_groups(
    selected_entry_ids: Iterable[str],
    entries: Iterable[BillingEntry],
    clients: Iterable[ClientSummary],
    prices: Iterable[ClientServicePrice] = (),
    *,
    closing_date: Optional[date] = None,
) -> ClosureBatch:
    """Validate the selection and partition it into one group per client.

    Eligibility is checked for the whole selection before anything is
    grouped: a single non billable or already invoiced entry rejects the
    batch. Selected ids missing from the snapshots are reported in
    ``rejected`` and left out of the groups.
    """

    selected_ids = _unique(selected_entry_ids)
    if not selected_ids:
        raise EmptySelectionError("Select at least one billing entry to close")

    entries_by_id = {entry.id: entry for entry in entries}
    clients_by_id = {client.id: client for client in clients}
    reference = closing_date or date.today()

    rejected: list[RejectionReason] = []
    selected: list[BillingEntry] = []
    for entry_id in selected_ids:
        entry = entries_by_id.get(entry_id)
        if entry is None:
            rejected.append(
                RejectionReason(
                    entry_id=entry_id,
                    code=REJECTION_ENTRY_NOT_FOUND,
                    message=f"Billing entry {entry_id} was not found",
                )
            )
            continue
        selected.append(entry)

    _validate_entries(selected)

    partitions: dict[str, list[BillingEntry]] = OrderedDict()
    for entry in selected:
        if entry.client_id not in clients_by_id:
            rejected.append(
                RejectionReason(
                    entry_id=entry.id,
                    code=REJECTION_CLIENT_NOT_FOUND,
                    message=f"Client {entry.client_id} was not found",
                )
            )
            continue
        partitions.setdefault(entry.client_id, []).append(entry)

    resolver = PriceResolver(prices)
    groups = [
        _price_group(
            clients_by_id[client_id],
            sorted(client_entries, key=lambda item: (item.service_date, item.id)),
            resolver,
            reference,
        )
        for client_id, client_entries in partitions.items()
    ]
    groups.sort(key=lambda group: (group.client.trade_name.casefold(), group.client.id))

    if rejected:
        LOGGER.info("Left %s selected entries out of the closure", len(rejected))
    LOGGER.debug(
        "Built %s closure groups from %s entries",
        len(groups),
        sum(len(group.entries) for group in groups),
    )
    return ClosureBatch(groups=groups, rejected=rejected)
