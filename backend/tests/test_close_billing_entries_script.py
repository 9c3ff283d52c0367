from __future__ import annotations

import json
from datetime import date

import pytest

from backend.app.models import CloseOption
from backend.app.schemas import ClosingConfiguration
from backend.app.scripts.close_billing_entries import (
    EXIT_GROUP_FAILED,
    EXIT_OK,
    EXIT_PREFLIGHT_ERROR,
    SnapshotError,
    _build_gateway,
    _parse_args,
    load_snapshot,
    main,
    run,
)
from backend.app.services.invoice_gateway import HttpInvoiceGateway


@pytest.fixture
def snapshot_file(tmp_path, snapshot):
    snapshot["configurations"] = {
        "c-beta": {
            "closeOption": "with_installments",
            "installmentCount": 2,
            "firstDueDate": "2024-04-20",
        }
    }
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(snapshot), encoding="utf-8")
    return path


def test_load_snapshot_reads_selection_and_configurations(snapshot_file):
    payload, configurations = load_snapshot(snapshot_file)

    assert payload.entry_ids == ["e1", "e2", "e3", "e4"]
    assert payload.closing_date == date(2024, 3, 31)
    assert configurations["c-beta"].close_option is CloseOption.WITH_INSTALLMENTS


def test_load_snapshot_rejects_invalid_files(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    with pytest.raises(SnapshotError):
        load_snapshot(broken)
    with pytest.raises(SnapshotError):
        load_snapshot(tmp_path / "missing.json")


def test_run_closes_every_group_with_its_configuration(snapshot_file, gateway):
    payload, configurations = load_snapshot(snapshot_file)

    assert run(payload, configurations, gateway) == EXIT_OK

    acme, beta = gateway.requests
    assert acme.installments is None
    assert acme.due_date is not None
    assert [item.due_date for item in beta.installments] == [date(2024, 4, 20), date(2024, 5, 20)]


def test_run_stops_at_first_failure(snapshot_file, gateway, gateway_failure):
    payload, configurations = load_snapshot(snapshot_file)
    gateway.results.append(gateway_failure())

    assert run(payload, configurations, gateway) == EXIT_GROUP_FAILED
    assert [request.client_id for request in gateway.requests] == ["c-acme"]


def test_run_reports_invalid_schedules_as_preflight_errors(snapshot_file, gateway):
    payload, _ = load_snapshot(snapshot_file)
    configurations = {
        "c-acme": ClosingConfiguration(close_option=CloseOption.WITH_INSTALLMENTS)
    }

    assert run(payload, configurations, gateway) == EXIT_PREFLIGHT_ERROR
    assert gateway.requests == []


def test_run_rejects_invoiced_selection(snapshot_file, gateway):
    payload, configurations = load_snapshot(snapshot_file)
    payload.entries[0] = payload.entries[0].model_copy(update={"invoice_id": "inv-1"})

    assert run(payload, configurations, gateway) == EXIT_PREFLIGHT_ERROR


def test_main_dry_run_uses_console_gateway(snapshot_file):
    assert main([str(snapshot_file), "--dry-run"]) == EXIT_OK


def test_main_fails_fast_on_missing_gateway_configuration(snapshot_file, monkeypatch):
    monkeypatch.delenv("INVOICE_GATEWAY_BASE_URL", raising=False)

    assert main([str(snapshot_file), "--transport", "http"]) == EXIT_PREFLIGHT_ERROR


def test_main_fails_fast_on_unreadable_snapshot(tmp_path):
    assert main([str(tmp_path / "missing.json"), "--dry-run"]) == EXIT_PREFLIGHT_ERROR


def test_http_transport_flag_honours_configured_timeout(monkeypatch):
    monkeypatch.setenv("INVOICE_GATEWAY_BASE_URL", "https://faturamento.example.com")
    monkeypatch.setenv("INVOICE_GATEWAY_TOKEN", "secret")
    monkeypatch.setenv("INVOICE_GATEWAY_TIMEOUT", "45")
    args = _parse_args(["snapshot.json", "--transport", "http"])

    gateway = _build_gateway(args)

    assert isinstance(gateway, HttpInvoiceGateway)
    assert gateway.timeout == 45.0
