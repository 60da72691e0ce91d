"""Incremental transaction sync from the open banking provider"""

import asyncio
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from banking_monitor.config import settings
from banking_monitor.domain.exceptions import ConnectionNotFoundError, ConnectionNotLinkedError
from banking_monitor.domain.mapper import map_account_type, map_transaction, pick_current_balance
from banking_monitor.domain.models import (
    BankAccount,
    BankConnection,
    ConnectionStatus,
    SyncResult,
    TransactionStatus,
)
from banking_monitor.domain.ports import BankingStore, ProviderGateway, UpsertStatus
from banking_monitor.infrastructure.observability.logging import log_sync_result
from banking_monitor.infrastructure.observability.metrics import record_sync_result
from banking_monitor.utils.date_utils import lookback_start, parse_provider_datetime, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_NAME = "Main account"
DEFAULT_CURRENCY = "EUR"


class SyncService:
    """
    Syncs every account of a bank connection.

    Only a missing or non-linked connection aborts a sync. Account and
    transaction failures are collected into each account's SyncResult.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        store: BankingStore,
        max_concurrency: Optional[int] = None,
        account_timeout: Optional[float] = None,
        lookback_days: Optional[int] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.max_concurrency = max_concurrency or settings.sync_max_concurrency
        self.account_timeout = account_timeout or settings.account_sync_timeout_seconds
        self.lookback_days = lookback_days or settings.sync_lookback_days

    async def sync_connection(self, connection_id: str, deadline: Optional[float] = None) -> List[SyncResult]:
        """
        Discover new accounts, then sync all accounts of the connection.

        Args:
            connection_id: Connection to sync
            deadline: Optional overall budget in seconds. When it expires the
                unfinished account syncs are cancelled and only completed
                results are returned; last_synced_at is then left unchanged.

        Raises:
            ConnectionNotFoundError: Connection does not exist
            ConnectionNotLinkedError: Connection is not in linked status
        """
        connection = self.store.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        if connection.status != ConnectionStatus.LINKED:
            raise ConnectionNotLinkedError(f"Connection {connection_id} is not in linked status")

        # Discovery is persisted before any worker starts so no account is synced twice
        await self.refresh_accounts(connection)
        self.store.commit()

        accounts = self.store.get_accounts_by_connection(connection_id)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._sync_account_bounded(connection_id, account, semaphore))
            for account in accounts
        ]
        if not tasks:
            self.store.update_connection_sync_time(connection_id, utcnow())
            self.store.commit()
            return []

        done, pending = await asyncio.wait(tasks, timeout=deadline)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Connection sync deadline reached, returning partial results",
                extra={"connection_id": connection_id, "completed": len(done), "cancelled": len(pending)},
            )
            return [task.result() for task in tasks if task in done]

        self.store.update_connection_sync_time(connection_id, utcnow())
        self.store.commit()
        return [task.result() for task in tasks]

    async def refresh_accounts(self, connection: BankConnection) -> List[BankAccount]:
        """Persist provider accounts not yet known on the connection"""
        try:
            requisition = await self.gateway.get_requisition(connection.requisition_id)
        except Exception as e:
            # Known accounts can still be synced without the requisition
            logger.error(
                f"Requisition lookup failed, skipping account discovery: {e}",
                extra={"connection_id": connection.id, "requisition_id": connection.requisition_id},
            )
            return []

        known = {account.external_id for account in connection.accounts}
        discovered = []

        for provider_account_id in requisition.get("accounts", []):
            if provider_account_id in known:
                continue
            try:
                account = await self._discover_account(connection.id, provider_account_id)
            except Exception as e:
                logger.error(
                    f"Account discovery failed: {e}",
                    extra={"connection_id": connection.id, "external_account_id": provider_account_id},
                )
                continue
            known.add(provider_account_id)
            discovered.append(account)
        return discovered

    async def _discover_account(self, connection_id: str, provider_account_id: str) -> BankAccount:
        meta = await self.gateway.get_account(provider_account_id)
        details = (await self.gateway.get_account_details(provider_account_id)).get("account", {})
        balances = await self.gateway.get_account_balances(provider_account_id)
        current = pick_current_balance(balances.get("balances", []))

        account = self.store.save_account(
            BankAccount(
                connection_id=connection_id,
                external_id=provider_account_id,
                iban=details.get("iban") or meta.get("iban"),
                name=details.get("name") or DEFAULT_ACCOUNT_NAME,
                owner_name=details.get("ownerName") or meta.get("owner_name"),
                currency=details.get("currency") or DEFAULT_CURRENCY,
                account_type=map_account_type(details.get("cashAccountType")),
                balance=Decimal(str(current["balanceAmount"]["amount"])) if current else Decimal("0"),
                balance_updated_at=_balance_reference_date(current),
            )
        )
        logger.info(
            "Discovered bank account",
            extra={"connection_id": connection_id, "account_id": account.id, "external_account_id": provider_account_id},
        )
        return account

    async def _sync_account_bounded(
        self, connection_id: str, account: BankAccount, semaphore: asyncio.Semaphore
    ) -> SyncResult:
        async with semaphore:
            start = time.monotonic()
            try:
                result = await asyncio.wait_for(self.sync_account(account), timeout=self.account_timeout)
            except asyncio.TimeoutError:
                result = SyncResult(
                    account_id=account.id,
                    errors=[f"Account sync timed out after {self.account_timeout}s"],
                    synced_at=utcnow(),
                )
            except Exception as e:
                result = SyncResult(account_id=account.id, errors=[str(e) or repr(e)], synced_at=utcnow())

            duration = time.monotonic() - start
            record_sync_result(result, duration)
            log_sync_result(connection_id, result, duration * 1000)
            return result

    async def sync_account(self, account: BankAccount) -> SyncResult:
        """
        Fetch the account's window and balances, then write them in one unit.

        All provider calls finish before the first write. The writes and the
        commit contain no await, so a timeout or cancellation never leaves
        rows half-written and concurrent workers never interleave inside the
        shared session.
        """
        now = utcnow()
        result = SyncResult(account_id=account.id, synced_at=now)

        try:
            last = self.store.get_last_transaction(account.id)
            date_from = last.booking_date.date() if last else lookback_start(now, self.lookback_days)
            response = await self.gateway.get_account_transactions(account.external_id, date_from, now.date())
        except Exception as e:
            result.errors.append(str(e) or repr(e))
            return result

        current = None
        try:
            balances = await self.gateway.get_account_balances(account.external_id)
            current = pick_current_balance(balances.get("balances", []))
        except Exception as e:
            result.errors.append(f"Balance refresh failed: {e}")

        self._write_account(account, response.get("transactions", {}), current, result, now)
        return result

    def _write_account(
        self,
        account: BankAccount,
        transactions: Dict[str, Any],
        current: Optional[Dict[str, Any]],
        result: SyncResult,
        now: datetime,
    ) -> None:
        try:
            for raw in transactions.get("booked", []):
                self._upsert(raw, account, TransactionStatus.BOOKED, result)
            # Pending rows are superseded later by booked rows with the same external id
            for raw in transactions.get("pending", []):
                self._upsert(raw, account, TransactionStatus.PENDING, result)

            if current:
                self.store.update_account_balance(
                    account.id,
                    Decimal(str(current["balanceAmount"]["amount"])),
                    _balance_reference_date(current) or now,
                )
            self.store.commit()
        except Exception as e:
            # Only this account's writes are pending at this point
            self.store.rollback()
            result.new_transactions = 0
            result.updated_transactions = 0
            result.transaction_ids = []
            result.errors.append(f"Failed to persist account sync: {e}")

    def _upsert(self, raw: Dict[str, Any], account: BankAccount, status: TransactionStatus, result: SyncResult) -> None:
        try:
            tx = map_transaction(raw, account.id, status)
            saved, outcome = self.store.upsert_transaction(tx)
        except Exception as e:
            label = "pending transaction" if status == TransactionStatus.PENDING else "transaction"
            result.errors.append(f"Failed to process {label} {raw.get('transactionId')}: {e}")
            return

        if outcome == UpsertStatus.UNCHANGED:
            return
        if outcome == UpsertStatus.UPDATED and status == TransactionStatus.BOOKED:
            result.updated_transactions += 1
        else:
            # Every created or changed pending row counts as new
            result.new_transactions += 1
        result.transaction_ids.append(saved.id)


def _balance_reference_date(balance: Optional[Dict[str, Any]]):
    if not balance or not balance.get("referenceDate"):
        return None
    return parse_provider_datetime(balance["referenceDate"])
