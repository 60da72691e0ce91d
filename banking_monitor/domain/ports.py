"""Interfaces of the collaborators the pipeline consumes but does not own"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from banking_monitor.domain.models import (
    BankAccount,
    BankConnection,
    BankingAlert,
    Direction,
    FlagType,
    Transaction,
)


class UpsertStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class ProviderGateway(Protocol):
    """Open banking provider; token lifecycle stays behind this interface"""

    async def get_requisition(self, requisition_id: str) -> Dict[str, Any]: ...

    async def get_account(self, account_id: str) -> Dict[str, Any]: ...

    async def get_account_details(self, account_id: str) -> Dict[str, Any]: ...

    async def get_account_balances(self, account_id: str) -> Dict[str, Any]: ...

    async def get_account_transactions(
        self, account_id: str, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> Dict[str, Any]: ...


class BankingStore(Protocol):
    """Connection, account and transaction persistence used by the sync"""

    def get_connection(self, connection_id: str) -> Optional[BankConnection]: ...

    def get_accounts_by_connection(self, connection_id: str) -> List[BankAccount]: ...

    def save_account(self, account: BankAccount) -> BankAccount: ...

    def update_account_balance(self, account_id: str, balance: Decimal, reference_date: datetime) -> None: ...

    def update_connection_sync_time(self, connection_id: str, synced_at: datetime) -> None: ...

    def get_last_transaction(self, account_id: str) -> Optional[Transaction]: ...

    def upsert_transaction(self, transaction: Transaction) -> Tuple[Transaction, UpsertStatus]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class TransactionHistory(Protocol):
    """Read-only history queries used by the built-in detectors"""

    def get_transactions_by_account(self, account_id: str, days: int) -> List[Transaction]: ...

    def get_average_amount(
        self, account_id: str, direction: Direction, before: Optional[datetime] = None
    ) -> Decimal: ...

    def get_known_counterparties(self, account_id: str, before: Optional[datetime] = None) -> List[str]: ...

    def get_last_activity_date(self, account_id: str, before: Optional[datetime] = None) -> Optional[datetime]: ...


class AlertStore(Protocol):
    def create_alert(self, alert: BankingAlert) -> BankingAlert: ...

    def has_open_alert(self, transaction_id: str, alert_type: FlagType) -> bool: ...
