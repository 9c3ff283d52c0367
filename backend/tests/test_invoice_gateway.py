from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from backend.app.models import InvoiceStatus, MissingPriceBehavior
from backend.app.schemas import CloseRequest, Installment, Invoice
from backend.app.services.invoice_gateway import (
    ConfigurationError,
    ConsoleInvoiceGateway,
    HttpInvoiceGateway,
    InvoiceGatewayError,
    build_invoice_gateway_from_env,
)


@pytest.fixture
def close_request() -> CloseRequest:
    return CloseRequest(
        client_id="c-acme",
        issue_date=date(2024, 3, 10),
        missing_price_behavior=MissingPriceBehavior.BLOCK,
        total_amount=Decimal("1000.00"),
        installments=[
            Installment(number=1, amount=Decimal("333.33"), due_date=date(2024, 4, 10)),
            Installment(number=2, amount=Decimal("333.33"), due_date=date(2024, 5, 10)),
            Installment(number=3, amount=Decimal("333.34"), due_date=date(2024, 6, 10)),
        ],
    )


def _gateway(handler, **kwargs) -> HttpInvoiceGateway:
    return HttpInvoiceGateway(
        base_url="https://faturamento.example.com/api/",
        token="secret-token",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_http_gateway_puts_camel_case_payload(close_request):
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"closed": True})

    result = _gateway(handler).close_invoices_for_client(close_request)

    assert result.success
    assert result.status_code == 200
    assert captured["method"] == "PUT"
    assert captured["url"] == "https://faturamento.example.com/api/billing/Invoices/close"
    assert captured["auth"] == "Bearer secret-token"
    assert captured["body"]["clientId"] == "c-acme"
    assert captured["body"]["missingPriceBehavior"] == 0
    assert captured["body"]["totalAmount"] == 1000.0
    assert captured["body"]["installments"][2] == {
        "number": 3,
        "amount": 333.34,
        "dueDate": "2024-06-10",
    }
    assert "dueDate" not in captured["body"]


def test_http_gateway_reports_service_message_on_rejection(close_request):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Lançamentos sem preço."})

    result = _gateway(handler).close_invoices_for_client(close_request)

    assert not result.success
    assert result.status_code == 422
    assert result.message == "Lançamentos sem preço."


def test_http_gateway_falls_back_to_generic_message(close_request):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, content=b"")

    result = _gateway(handler).close_invoices_for_client(close_request)

    assert not result.success
    assert result.error is None
    assert result.message == "Não foi possível fechar as faturas."


def test_http_gateway_uses_plain_text_errors(close_request):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="Cliente inativo")

    result = _gateway(handler).close_invoices_for_client(close_request)

    assert result.message == "Cliente inativo"


def test_http_gateway_raises_on_network_errors(close_request):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(InvoiceGatewayError, match="Network error"):
        _gateway(handler).close_invoices_for_client(close_request)


def test_http_gateway_raises_on_timeouts(close_request):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(InvoiceGatewayError, match="Timed out"):
        _gateway(handler, timeout=5).close_invoices_for_client(close_request)


def test_http_gateway_requires_base_url():
    with pytest.raises(ConfigurationError):
        HttpInvoiceGateway(base_url=None)


def test_console_gateway_records_requests(close_request):
    gateway = ConsoleInvoiceGateway()

    result = gateway.close_invoices_for_client(close_request)

    assert result.success
    assert gateway.requests == [close_request]


def test_builder_uses_http_gateway_when_configured(monkeypatch):
    monkeypatch.setenv("INVOICE_GATEWAY_TRANSPORT", "auto")
    monkeypatch.setenv("INVOICE_GATEWAY_BASE_URL", "https://faturamento.example.com")
    monkeypatch.setenv("INVOICE_GATEWAY_TIMEOUT", "12.5")

    gateway = build_invoice_gateway_from_env()

    assert isinstance(gateway, HttpInvoiceGateway)
    assert gateway.timeout == 12.5
    assert gateway.endpoint == "https://faturamento.example.com/billing/Invoices/close"


def test_builder_falls_back_to_console_without_base_url(monkeypatch):
    monkeypatch.delenv("INVOICE_GATEWAY_TRANSPORT", raising=False)
    monkeypatch.delenv("INVOICE_GATEWAY_BASE_URL", raising=False)

    assert isinstance(build_invoice_gateway_from_env(), ConsoleInvoiceGateway)
    with pytest.raises(ConfigurationError):
        build_invoice_gateway_from_env(fallback_to_console=False)


def test_builder_refuses_explicit_http_without_base_url(monkeypatch):
    monkeypatch.setenv("INVOICE_GATEWAY_TRANSPORT", "http")
    monkeypatch.delenv("INVOICE_GATEWAY_BASE_URL", raising=False)

    with pytest.raises(ConfigurationError):
        build_invoice_gateway_from_env()


def test_builder_ignores_invalid_timeout(monkeypatch):
    monkeypatch.setenv("INVOICE_GATEWAY_TRANSPORT", "http")
    monkeypatch.setenv("INVOICE_GATEWAY_BASE_URL", "https://faturamento.example.com")
    monkeypatch.setenv("INVOICE_GATEWAY_TIMEOUT", "soon")

    assert build_invoice_gateway_from_env().timeout == 30.0


def test_builder_rejects_unknown_transport(monkeypatch):
    monkeypatch.setenv("INVOICE_GATEWAY_TRANSPORT", "carrier-pigeon")

    with pytest.raises(ConfigurationError):
        build_invoice_gateway_from_env()


def test_invoice_snapshot_reads_service_json():
    invoice = Invoice.model_validate(
        {
            "id": "inv-1",
            "clientId": "c-acme",
            "issueDate": "2024-03-10",
            "dueDate": "2024-04-05",
            "status": "Closed",
            "totalAmount": 530.5,
        }
    )

    assert invoice.status is InvoiceStatus.CLOSED
    assert invoice.total_amount == Decimal("530.5")
    assert invoice.model_dump(mode="json", by_alias=True)["totalAmount"] == 530.5


def test_builder_transport_argument_overrides_environment(monkeypatch):
    monkeypatch.setenv("INVOICE_GATEWAY_TRANSPORT", "console")
    monkeypatch.setenv("INVOICE_GATEWAY_BASE_URL", "https://faturamento.example.com")
    monkeypatch.setenv("INVOICE_GATEWAY_TIMEOUT", "3")

    gateway = build_invoice_gateway_from_env(transport="http")

    assert isinstance(gateway, HttpInvoiceGateway)
    assert gateway.timeout == 3.0
