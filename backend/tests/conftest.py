from __future__ import annotations

from datetime import date
from decimal import Decimal
import os
import sys
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("RUN_MIGRATIONS_ON_START", "0")

from backend.app.database import Base, get_db
from backend.app.main import app
from backend.app.routers.closures import get_invoice_gateway
from backend.app.schemas import (
    BillingEntry,
    ClientServicePrice,
    ClientSummary,
    CloseRequest,
)
from backend.app.services.invoice_gateway import (
    GatewayResult,
    InvoiceGateway,
    InvoiceGatewayError,
)


class RecordingGateway(InvoiceGateway):
    """Gateway double answering with queued results."""

    channel = "test"

    def __init__(self, *results: GatewayResult | Exception) -> None:
        self.results = list(results)
        self.requests: list[CloseRequest] = []

    def close_invoices_for_client(self, request: CloseRequest) -> GatewayResult:
        self.requests.append(request)
        if not self.results:
            return GatewayResult(success=True, status_code=200)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def failure(message: str = "Cliente bloqueado", status_code: int = 422) -> GatewayResult:
    return GatewayResult(success=False, status_code=status_code, error=message)


def unreachable() -> InvoiceGatewayError:
    return InvoiceGatewayError("Network error contacting the invoicing service")


SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="session", autouse=True)
def setup_database() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def gateway_factory() -> Callable[..., RecordingGateway]:
    """Build gateway doubles answering with the given results in order."""

    return RecordingGateway


@pytest.fixture
def gateway_failure() -> Callable[..., GatewayResult]:
    return failure


@pytest.fixture
def gateway_unreachable() -> Callable[[], InvoiceGatewayError]:
    return unreachable


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def client(db_session: Session, gateway: RecordingGateway) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_invoice_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_invoice_gateway, None)


@pytest.fixture
def clients() -> list[ClientSummary]:
    return [
        ClientSummary(id="c-acme", trade_name="Acme", billing_due_day=5),
        ClientSummary(id="c-beta", trade_name="Beta Logística", billing_due_day=20),
    ]


@pytest.fixture
def entries() -> list[BillingEntry]:
    return [
        BillingEntry(
            id="e1",
            client_id="c-acme",
            service_id="s-visit",
            quantity=Decimal("2"),
            service_date=date(2024, 3, 4),
        ),
        BillingEntry(
            id="e2",
            client_id="c-acme",
            service_id="s-visit",
            quantity=Decimal("1"),
            service_date=date(2024, 3, 1),
        ),
        BillingEntry(
            id="e3",
            client_id="c-acme",
            service_id="s-report",
            quantity=Decimal("1"),
            service_date=date(2024, 3, 2),
        ),
        BillingEntry(
            id="e4",
            client_id="c-beta",
            service_id="s-visit",
            quantity=Decimal("3"),
            service_date=date(2024, 3, 5),
        ),
    ]


@pytest.fixture
def prices() -> list[ClientServicePrice]:
    return [
        ClientServicePrice(
            client_id="c-acme",
            service_id="s-visit",
            unit_price=Decimal("150.00"),
            start_date=date(2024, 1, 1),
        ),
        ClientServicePrice(
            client_id="c-acme",
            service_id="s-report",
            unit_price=Decimal("80.50"),
            start_date=date(2024, 1, 1),
        ),
        ClientServicePrice(
            client_id="c-beta",
            service_id="s-visit",
            unit_price=Decimal("100.00"),
            start_date=date(2024, 1, 1),
        ),
    ]


@pytest.fixture
def snapshot(entries, clients, prices) -> dict:
    """Request body used to open a closing session through the API."""

    return {
        "entryIds": [entry.id for entry in entries],
        "entries": [entry.model_dump(mode="json", by_alias=True) for entry in entries],
        "clients": [item.model_dump(mode="json", by_alias=True) for item in clients],
        "prices": [price.model_dump(mode="json", by_alias=True) for price in prices],
        "closingDate": "2024-03-31",
        "createdBy": "operadora@example.com",
    }
