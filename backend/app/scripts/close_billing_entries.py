"""Command line entry-point to close a snapshot of billing entries.

The snapshot is a JSON document with the selected entry ids and the data the
closure needs::

    {
      "entryIds": ["e1", "e2"],
      "entries": [...],
      "clients": [...],
      "prices": [...],
      "closingDate": "2024-03-31",
      "configurations": {"c1": {"closeOption": "with_installments", ...}}
    }

Groups are closed in order and the run stops at the first failure.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from ..schemas.closing import ClosingConfiguration, ClosingSessionCreate
from ..services.closing_workflow import ClosingWorkflow
from ..services.closure_groups import ClosureValidationError, build_groups
from ..services.formatting import format_currency
from ..services.installments import InvalidScheduleError
from ..services.invoice_gateway import (
    ConfigurationError,
    ConsoleInvoiceGateway,
    InvoiceGateway,
    build_invoice_gateway_from_env,
)

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_GROUP_FAILED = 1
EXIT_PREFLIGHT_ERROR = 2


class SnapshotError(ValueError):
    """Raised when the snapshot file cannot be read or validated."""


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fecha os lançamentos selecionados agrupando-os por cliente."
    )
    parser.add_argument(
        "snapshot",
        type=Path,
        help="Arquivo JSON com a seleção, os lançamentos, clientes e preços.",
    )
    parser.add_argument(
        "--transport",
        choices=["auto", "http", "console"],
        default=os.getenv("INVOICE_GATEWAY_TRANSPORT", "auto"),
        help="Serviço que receberá os fechamentos (auto=desde variáveis de ambiente).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Não envia nada, apenas registra as requisições no console.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Imprime informação adicional para depuração.",
    )
    return parser.parse_args(argv)


def _build_gateway(args: argparse.Namespace) -> InvoiceGateway:
    if args.dry_run:
        LOGGER.info("Execução em modo --dry-run: as requisições só serão registradas.")
        return ConsoleInvoiceGateway()

    return build_invoice_gateway_from_env(transport=args.transport or "auto")


def load_snapshot(
    path: Path,
) -> tuple[ClosingSessionCreate, dict[str, ClosingConfiguration]]:
    """Read the selection and the per-client configurations from ``path``."""

    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise SnapshotError(f"Cannot read snapshot {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise SnapshotError(f"Snapshot {path} is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise SnapshotError("The snapshot must be a JSON object")

    try:
        payload = ClosingSessionCreate.model_validate(raw)
        configurations = {
            str(client_id): ClosingConfiguration.model_validate(value)
            for client_id, value in (raw.get("configurations") or {}).items()
        }
    except ValidationError as exc:
        raise SnapshotError(f"Invalid snapshot: {exc}") from exc
    return payload, configurations


def run(
    payload: ClosingSessionCreate,
    configurations: dict[str, ClosingConfiguration],
    gateway: InvoiceGateway,
) -> int:
    """Close every group in order and return the process exit code."""

    try:
        batch = build_groups(
            payload.entry_ids,
            payload.entries,
            payload.clients,
            payload.prices,
            closing_date=payload.closing_date,
        )
    except ClosureValidationError as exc:
        LOGGER.error("Seleção inválida: %s (%s)", exc, ", ".join(exc.entry_ids))
        return EXIT_PREFLIGHT_ERROR

    for reason in batch.rejected:
        LOGGER.warning("Lançamento %s ignorado: %s", reason.entry_id, reason.message)
    if not batch.groups:
        LOGGER.error("Nenhum lançamento selecionado pode ser fechado.")
        return EXIT_PREFLIGHT_ERROR

    workflow = ClosingWorkflow(batch.groups, gateway)
    workflow.start()

    while not workflow.is_finished:
        group = workflow.current_group
        current, total = workflow.progress
        LOGGER.info(
            "[%s/%s] %s: %s lançamentos, %s",
            current,
            total,
            group.client.trade_name,
            len(group.entries),
            format_currency(group.total_amount),
        )
        configuration = configurations.get(group.client_id)
        if configuration is not None:
            workflow.configure(configuration)

        try:
            outcome = workflow.submit()
        except InvalidScheduleError as exc:
            LOGGER.error("Parcelamento inválido para %s: %s", group.client_id, exc)
            return EXIT_PREFLIGHT_ERROR

        if not outcome.success:
            LOGGER.error(
                "Falha ao fechar %s: %s. %s de %s clientes fechados.",
                group.client.trade_name,
                outcome.message,
                len(workflow.closed_client_ids),
                total,
            )
            return EXIT_GROUP_FAILED
        LOGGER.info(outcome.message)

    LOGGER.info("Fechamento concluído para %s clientes.", len(workflow.closed_client_ids))
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    try:
        payload, configurations = load_snapshot(args.snapshot)
        gateway = _build_gateway(args)
    except SnapshotError as exc:
        LOGGER.error("%s", exc)
        return EXIT_PREFLIGHT_ERROR
    except ConfigurationError as exc:
        LOGGER.error("Configuração inválida do serviço de faturamento: %s", exc)
        return EXIT_PREFLIGHT_ERROR

    return run(payload, configurations, gateway)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
