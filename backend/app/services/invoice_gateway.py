"""Clients for the remote invoicing service that closes billing periods."""

from __future__ import annotations

import abc
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx

from ..schemas.closing import CloseRequest

LOGGER = logging.getLogger(__name__)

GENERIC_CLOSE_ERROR = "Não foi possível fechar as faturas."
DEFAULT_TIMEOUT = 30.0
CLOSE_INVOICES_PATH = "billing/Invoices/close"


class ConfigurationError(RuntimeError):
    """Raised when an invoice gateway cannot be configured."""


class InvoiceGatewayError(RuntimeError):
    """Raised when the invoicing service cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GatewayResult:
    """Outcome returned by the invoicing service for a close request."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def message(self) -> str:
        return self.error or GENERIC_CLOSE_ERROR


class InvoiceGateway(abc.ABC):
    """Interface implemented by invoicing service adapters."""

    channel: str

    @abc.abstractmethod
    def close_invoices_for_client(self, request: CloseRequest) -> GatewayResult:
        """Close the client's pending entries into an invoice."""


class ConsoleInvoiceGateway(InvoiceGateway):
    """Fallback gateway that only logs the requests it receives."""

    channel = "console"

    def __init__(self) -> None:
        self.requests: list[CloseRequest] = []

    def close_invoices_for_client(self, request: CloseRequest) -> GatewayResult:
        self.requests.append(request)
        LOGGER.info(
            "[console] Close request for client %s: %s",
            request.client_id,
            json.dumps(request.to_payload(), ensure_ascii=False),
        )
        return GatewayResult(success=True, status_code=200)


def _extract_error_message(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        text = response.text.strip()
        return text or None

    if isinstance(payload, dict):
        for key in ("message", "detail", "title"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    elif isinstance(payload, str) and payload.strip():
        return payload.strip()
    return None


class HttpInvoiceGateway(InvoiceGateway):
    """Close invoices through the invoicing service REST API."""

    channel = "http"

    def __init__(
        self,
        *,
        base_url: str | None,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ConfigurationError(
                "INVOICE_GATEWAY_BASE_URL is required to reach the invoicing service."
            )
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{CLOSE_INVOICES_PATH}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def close_invoices_for_client(self, request: CloseRequest) -> GatewayResult:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.put(
                    self.endpoint,
                    headers=self._headers(),
                    json=request.to_payload(),
                )
        except httpx.TimeoutException as exc:
            raise InvoiceGatewayError(
                f"Timed out after {self.timeout:.0f}s waiting for the invoicing service"
            ) from exc
        except httpx.HTTPError as exc:
            raise InvoiceGatewayError(f"Network error contacting the invoicing service: {exc}") from exc

        if response.status_code >= 400:
            return GatewayResult(
                success=False,
                status_code=response.status_code,
                error=_extract_error_message(response),
            )

        return GatewayResult(success=True, status_code=response.status_code)


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning("Invalid value for %s=%s; using %s", name, raw, default)
        return default
    if value <= 0:
        LOGGER.warning("%s must be positive; using %s", name, default)
        return default
    return value


def build_invoice_gateway_from_env(
    *, transport: Optional[str] = None, fallback_to_console: bool = True
) -> InvoiceGateway:
    """Instantiate an invoice gateway from environment variables.

    ``transport`` takes precedence over ``INVOICE_GATEWAY_TRANSPORT``.
    """

    if transport is None:
        transport = os.getenv("INVOICE_GATEWAY_TRANSPORT", "auto")
    transport = transport.strip().lower()

    if transport == "console":
        return ConsoleInvoiceGateway()

    if transport in {"auto", "http"}:
        try:
            return HttpInvoiceGateway(
                base_url=os.getenv("INVOICE_GATEWAY_BASE_URL"),
                token=os.getenv("INVOICE_GATEWAY_TOKEN"),
                timeout=_read_float("INVOICE_GATEWAY_TIMEOUT", DEFAULT_TIMEOUT),
            )
        except ConfigurationError as exc:
            if transport == "http" or not fallback_to_console:
                raise
            LOGGER.warning("%s; close requests will only be logged.", exc)
            return ConsoleInvoiceGateway()

    raise ConfigurationError(f"Unknown INVOICE_GATEWAY_TRANSPORT: {transport}")
