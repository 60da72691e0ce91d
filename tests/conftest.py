"""Pytest fixtures for testing"""

import os

# In-memory SQLite shared through a StaticPool; must be set before settings load
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from banking_monitor.api.main import create_app
from banking_monitor.domain.models import (
    AccountType,
    BankAccount,
    BankConnection,
    ConnectionStatus,
    Direction,
    Transaction,
    TransactionStatus,
)
from banking_monitor.infrastructure.database.models import Base
from banking_monitor.infrastructure.database.repositories import SqlAlchemyBankingStore
from banking_monitor.infrastructure.database.session import SessionLocal, engine, get_db

TENANT_ID = "tenant-1"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db: Session) -> SqlAlchemyBankingStore:
    return SqlAlchemyBankingStore(db)


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def gateway() -> AsyncMock:
    """Provider gateway with an empty requisition and no transactions"""
    gateway = AsyncMock()
    gateway.get_requisition.return_value = {"id": "req-1", "status": "LN", "accounts": []}
    gateway.get_account.return_value = {}
    gateway.get_account_details.return_value = {"account": {}}
    gateway.get_account_balances.return_value = {"balances": []}
    gateway.get_account_transactions.return_value = {"transactions": {"booked": [], "pending": []}}
    return gateway


@pytest.fixture
def make_connection(store: SqlAlchemyBankingStore) -> Callable[..., BankConnection]:
    """Persist a connection with one account per external id"""

    def _make(
        connection_id: str = "conn-1",
        account_external_ids: tuple = ("ext-acc-1",),
        status: ConnectionStatus = ConnectionStatus.LINKED,
        tenant_id: str = TENANT_ID,
    ) -> BankConnection:
        store.save_connection(
            BankConnection(
                id=connection_id,
                tenant_id=tenant_id,
                institution_id="SANDBOXFINANCE_SFIN0000",
                requisition_id=f"req-{connection_id}",
                status=status,
            )
        )
        for external_id in account_external_ids:
            store.save_account(
                BankAccount(
                    connection_id=connection_id,
                    external_id=external_id,
                    iban=f"ES91{external_id}",
                    name="Main account",
                    owner_name="Acme SL",
                    currency="EUR",
                    account_type=AccountType.CHECKING,
                    balance=Decimal("0"),
                    balance_updated_at=None,
                )
            )
        store.commit()
        return store.get_connection(connection_id)

    return _make


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Canonical transaction with overridable fields"""

    def _make(**overrides: Any) -> Transaction:
        values: Dict[str, Any] = dict(
            account_id="acc-1",
            external_id="tx-1",
            amount=Decimal("120.00"),
            currency="EUR",
            direction=Direction.DEBIT,
            status=TransactionStatus.BOOKED,
            booking_date=datetime(2024, 3, 12, 14, 30, tzinfo=timezone.utc),
            value_date=date(2024, 3, 12),
            description="Office supplies",
            counterparty_name="Papeleria Sol",
            counterparty_iban="ES7620770024003102575766",
        )
        values.update(overrides)
        return Transaction(**values)

    return _make


def nordigen_transaction(
    transaction_id: str | None = "tx-1",
    amount: str = "-120.00",
    booking_date: str = "2024-03-12",
    **extra: Any,
) -> Dict[str, Any]:
    """Raw Nordigen transaction record as returned by the provider"""
    raw: Dict[str, Any] = {
        "bookingDate": booking_date,
        "valueDate": booking_date,
        "transactionAmount": {"amount": amount, "currency": "EUR"},
        "remittanceInformationUnstructured": "Compra material oficina",
    }
    if transaction_id is not None:
        raw["transactionId"] = transaction_id
    raw.update(extra)
    return raw


@pytest.fixture
def raw_transaction() -> Callable[..., Dict[str, Any]]:
    return nordigen_transaction
