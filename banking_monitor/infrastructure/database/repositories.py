"""Data access layer implementing the banking store, history and alert interfaces"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from banking_monitor.domain.models import (
    AccountType,
    AlertStatus,
    AnomalyRule,
    BankAccount,
    BankConnection,
    BankingAlert,
    ConnectionStatus,
    Direction,
    FlagType,
    RuleAction,
    RuleCondition,
    Severity,
    Transaction,
    TransactionCategory,
    TransactionFlag,
    TransactionMetadata,
    TransactionStatus,
)
from banking_monitor.domain.ports import UpsertStatus
from banking_monitor.infrastructure.database.models import (
    AnomalyRuleRow,
    BankAccountRow,
    BankConnectionRow,
    BankingAlertRow,
    TransactionRow,
)
from banking_monitor.utils.date_utils import ensure_utc, utcnow

# Columns compared on upsert; analysis output and timestamps are excluded
_SYNCED_COLUMNS = (
    "amount",
    "currency",
    "direction",
    "status",
    "booking_date",
    "value_date",
    "description",
    "merchant_name",
    "merchant_category",
    "counterparty_name",
    "counterparty_iban",
    "reference",
    "category",
    "provider_metadata",
)


class SqlAlchemyBankingStore:
    """Repository for connections, accounts, transactions, rules and alerts"""

    def __init__(self, db: Session):
        self.db = db

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # Connections and accounts

    def save_connection(self, connection: BankConnection) -> BankConnection:
        row = self.db.get(BankConnectionRow, connection.id) or BankConnectionRow(id=connection.id)
        row.tenant_id = connection.tenant_id
        row.institution_id = connection.institution_id
        row.requisition_id = connection.requisition_id
        row.status = connection.status.value
        row.last_synced_at = connection.last_synced_at
        self.db.add(row)
        self.db.flush()
        return self.get_connection(connection.id)

    def get_connection(self, connection_id: str) -> Optional[BankConnection]:
        row = self.db.get(BankConnectionRow, connection_id)
        if row is None:
            return None
        return BankConnection(
            id=row.id,
            tenant_id=row.tenant_id,
            institution_id=row.institution_id,
            requisition_id=row.requisition_id,
            status=ConnectionStatus(row.status),
            accounts=self.get_accounts_by_connection(row.id),
            last_synced_at=ensure_utc(row.last_synced_at),
        )

    def get_accounts_by_connection(self, connection_id: str) -> List[BankAccount]:
        rows = (
            self.db.query(BankAccountRow)
            .filter(BankAccountRow.connection_id == connection_id)
            .order_by(BankAccountRow.external_id)
            .all()
        )
        return [_to_account(row) for row in rows]

    def save_account(self, account: BankAccount) -> BankAccount:
        row = BankAccountRow(
            connection_id=account.connection_id,
            external_id=account.external_id,
            iban=account.iban,
            name=account.name,
            owner_name=account.owner_name,
            currency=account.currency,
            account_type=account.account_type.value,
            balance=account.balance,
            balance_updated_at=account.balance_updated_at,
            status=account.status,
        )
        if account.id:
            row.id = account.id
        self.db.add(row)
        self.db.flush()
        return _to_account(row)

    def update_account_balance(self, account_id: str, balance: Decimal, reference_date: datetime) -> None:
        row = self.db.get(BankAccountRow, account_id)
        if row is None:
            return
        row.balance = balance
        row.balance_updated_at = reference_date
        self.db.flush()

    def update_connection_sync_time(self, connection_id: str, synced_at: datetime) -> None:
        row = self.db.get(BankConnectionRow, connection_id)
        if row is None:
            return
        row.last_synced_at = synced_at
        self.db.flush()

    # Transactions

    def get_last_transaction(self, account_id: str) -> Optional[Transaction]:
        row = (
            self.db.query(TransactionRow)
            .filter(TransactionRow.account_id == account_id)
            .order_by(TransactionRow.booking_date.desc())
            .first()
        )
        return _to_transaction(row) if row else None

    def upsert_transaction(self, transaction: Transaction) -> Tuple[Transaction, UpsertStatus]:
        """
        Insert or update keyed on (account_id, external_id).

        Rows whose synced columns are unchanged are left untouched so repeated
        syncs of the same provider data report UNCHANGED. The write runs in a
        savepoint: a failing row is rolled back alone and the session's other
        pending work stays intact.
        """
        values = _synced_values(transaction)
        row = (
            self.db.query(TransactionRow)
            .filter(
                TransactionRow.account_id == transaction.account_id,
                TransactionRow.external_id == transaction.external_id,
            )
            .one_or_none()
        )

        if row is None:
            with self.db.begin_nested():
                now = utcnow()
                row = TransactionRow(
                    account_id=transaction.account_id,
                    external_id=transaction.external_id,
                    flags=[],
                    created_at=now,
                    updated_at=now,
                    **values,
                )
                self.db.add(row)
                self.db.flush()
            return _to_transaction(row), UpsertStatus.CREATED

        changed = {name: value for name, value in values.items() if not _same(getattr(row, name), value)}
        if not changed:
            return _to_transaction(row), UpsertStatus.UNCHANGED

        with self.db.begin_nested():
            for name, value in changed.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            self.db.flush()
        return _to_transaction(row), UpsertStatus.UPDATED

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = self.db.get(TransactionRow, transaction_id)
        return _to_transaction(row) if row else None

    def get_transactions(self, transaction_ids: Iterable[str]) -> List[Transaction]:
        ids = list(transaction_ids)
        if not ids:
            return []
        rows = (
            self.db.query(TransactionRow)
            .filter(TransactionRow.id.in_(ids))
            .order_by(TransactionRow.booking_date, TransactionRow.external_id)
            .all()
        )
        return [_to_transaction(row) for row in rows]

    def get_unanalyzed_transaction_ids(self, account_ids: Iterable[str]) -> List[str]:
        """Transactions that were stored but never scored"""
        ids = list(account_ids)
        if not ids:
            return []
        rows = (
            self.db.query(TransactionRow.id)
            .filter(TransactionRow.account_id.in_(ids), TransactionRow.anomaly_score.is_(None))
            .order_by(TransactionRow.booking_date, TransactionRow.external_id)
            .all()
        )
        return [row_id for (row_id,) in rows]

    def update_transaction_analysis(self, transaction_id: str, score: int, flags: List[TransactionFlag]) -> None:
        """Overwrite score and flags; flags from earlier passes are discarded"""
        row = self.db.get(TransactionRow, transaction_id)
        if row is None:
            return
        row.anomaly_score = score
        row.flags = [flag.to_dict() for flag in flags]
        self.db.flush()

    def get_transaction_tenant_id(self, transaction_id: str) -> Optional[str]:
        """Tenant owning the transaction, through its account and connection"""
        return (
            self.db.query(BankConnectionRow.tenant_id)
            .join(BankAccountRow, BankAccountRow.connection_id == BankConnectionRow.id)
            .join(TransactionRow, TransactionRow.account_id == BankAccountRow.id)
            .filter(TransactionRow.id == transaction_id)
            .scalar()
        )

    # History queries for the detectors

    def get_transactions_by_account(self, account_id: str, days: int) -> List[Transaction]:
        since = utcnow() - timedelta(days=days)
        rows = (
            self.db.query(TransactionRow)
            .filter(TransactionRow.account_id == account_id, TransactionRow.booking_date >= since)
            .order_by(TransactionRow.booking_date.desc())
            .all()
        )
        return [_to_transaction(row) for row in rows]

    def get_average_amount(
        self, account_id: str, direction: Direction, before: Optional[datetime] = None
    ) -> Decimal:
        query = self.db.query(func.avg(TransactionRow.amount)).filter(
            TransactionRow.account_id == account_id,
            TransactionRow.direction == direction.value,
        )
        if before is not None:
            query = query.filter(TransactionRow.booking_date < before)
        average = query.scalar()
        return Decimal(str(average)) if average is not None else Decimal("0")

    def get_known_counterparties(self, account_id: str, before: Optional[datetime] = None) -> List[str]:
        """Distinct counterparty ids (IBAN, else name) seen on the account"""
        counterparty = func.coalesce(TransactionRow.counterparty_iban, TransactionRow.counterparty_name)
        query = self.db.query(counterparty).filter(
            TransactionRow.account_id == account_id,
            or_(TransactionRow.counterparty_iban.isnot(None), TransactionRow.counterparty_name.isnot(None)),
        )
        if before is not None:
            query = query.filter(TransactionRow.booking_date < before)
        return sorted({value for (value,) in query.distinct().all()})

    def get_last_activity_date(self, account_id: str, before: Optional[datetime] = None) -> Optional[datetime]:
        query = self.db.query(func.max(TransactionRow.booking_date)).filter(TransactionRow.account_id == account_id)
        if before is not None:
            query = query.filter(TransactionRow.booking_date < before)
        value = query.scalar()
        if isinstance(value, str):
            # SQLite returns aggregates over DateTime columns as raw text
            value = datetime.fromisoformat(value)
        return ensure_utc(value)

    # Alerts

    def create_alert(self, alert: BankingAlert) -> BankingAlert:
        now = utcnow()
        row = BankingAlertRow(
            tenant_id=alert.tenant_id,
            transaction_id=alert.transaction_id,
            account_id=alert.account_id,
            type=alert.type.value,
            severity=alert.severity.value,
            title=alert.title,
            description=alert.description,
            status=alert.status.value,
            assigned_to=alert.assigned_to,
            resolved_by=alert.resolved_by,
            resolved_at=alert.resolved_at,
            resolution=alert.resolution,
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        self.db.flush()
        return _to_alert(row)

    def has_open_alert(self, transaction_id: str, alert_type: FlagType) -> bool:
        return (
            self.db.query(BankingAlertRow.id)
            .filter(
                BankingAlertRow.transaction_id == transaction_id,
                BankingAlertRow.type == alert_type.value,
                BankingAlertRow.status == AlertStatus.OPEN.value,
            )
            .first()
            is not None
        )

    def get_alerts(self, tenant_id: str, status: Optional[AlertStatus] = None) -> List[BankingAlert]:
        query = self.db.query(BankingAlertRow).filter(BankingAlertRow.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(BankingAlertRow.status == status.value)
        return [_to_alert(row) for row in query.order_by(BankingAlertRow.created_at).all()]

    # Rules

    def get_rules(self, tenant_id: Optional[str] = None) -> List[AnomalyRule]:
        """Global rules plus the tenant's own rules (enabled or not)"""
        query = self.db.query(AnomalyRuleRow)
        if tenant_id is not None:
            query = query.filter(or_(AnomalyRuleRow.tenant_id.is_(None), AnomalyRuleRow.tenant_id == tenant_id))
        return [_to_rule(row) for row in query.order_by(AnomalyRuleRow.created_at, AnomalyRuleRow.id).all()]

    def save_rule(self, rule: AnomalyRule) -> AnomalyRule:
        row = self.db.get(AnomalyRuleRow, rule.id) or AnomalyRuleRow(id=rule.id)
        row.tenant_id = rule.tenant_id
        row.name = rule.name
        row.description = rule.description
        row.type = rule.type.value
        row.severity = rule.severity.value
        row.enabled = rule.enabled
        row.conditions = [
            {"field": c.field, "operator": c.operator, "value": c.value, "unit": c.unit} for c in rule.conditions
        ]
        row.actions = [{"type": a.type, "config": a.config} for a in rule.actions]
        row.updated_at = utcnow()
        self.db.add(row)
        self.db.flush()
        return _to_rule(row)

    def seed_rules(self, rules: List[AnomalyRule]) -> List[AnomalyRule]:
        """Insert rules whose id is not stored yet; existing rules keep their edits"""
        existing = {rule_id for (rule_id,) in self.db.query(AnomalyRuleRow.id).all()}
        return [self.save_rule(rule) for rule in rules if rule.id not in existing]


def _synced_values(tx: Transaction) -> dict:
    return {
        "amount": tx.amount,
        "currency": tx.currency,
        "direction": tx.direction.value,
        "status": tx.status.value,
        "booking_date": tx.booking_date,
        "value_date": tx.value_date,
        "description": tx.description,
        "merchant_name": tx.merchant_name,
        "merchant_category": tx.merchant_category,
        "counterparty_name": tx.counterparty_name,
        "counterparty_iban": tx.counterparty_iban,
        "reference": tx.reference,
        "category": tx.category.value if tx.category else None,
        "provider_metadata": tx.metadata.to_dict(),
    }


def _same(stored, incoming) -> bool:
    if isinstance(stored, datetime) and isinstance(incoming, datetime):
        return ensure_utc(stored) == ensure_utc(incoming)
    if isinstance(stored, (Decimal, int, float)) and isinstance(incoming, (Decimal, int, float)):
        return Decimal(str(stored)) == Decimal(str(incoming))
    return stored == incoming


def _to_account(row: BankAccountRow) -> BankAccount:
    return BankAccount(
        id=row.id,
        connection_id=row.connection_id,
        external_id=row.external_id,
        iban=row.iban,
        name=row.name,
        owner_name=row.owner_name,
        currency=row.currency,
        account_type=AccountType(row.account_type),
        balance=Decimal(str(row.balance)),
        balance_updated_at=ensure_utc(row.balance_updated_at),
        status=row.status,
    )


def _to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        account_id=row.account_id,
        external_id=row.external_id,
        amount=Decimal(str(row.amount)),
        currency=row.currency,
        direction=Direction(row.direction),
        status=TransactionStatus(row.status),
        booking_date=ensure_utc(row.booking_date),
        value_date=row.value_date,
        description=row.description,
        merchant_name=row.merchant_name,
        merchant_category=row.merchant_category,
        counterparty_name=row.counterparty_name,
        counterparty_iban=row.counterparty_iban,
        reference=row.reference,
        category=TransactionCategory(row.category) if row.category else None,
        metadata=TransactionMetadata.from_dict(row.provider_metadata),
        anomaly_score=row.anomaly_score,
        flags=[TransactionFlag.from_dict(flag) for flag in row.flags or []],
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _to_alert(row: BankingAlertRow) -> BankingAlert:
    return BankingAlert(
        id=row.id,
        tenant_id=row.tenant_id,
        transaction_id=row.transaction_id,
        account_id=row.account_id,
        type=FlagType(row.type),
        severity=Severity(row.severity),
        title=row.title,
        description=row.description,
        status=AlertStatus(row.status),
        assigned_to=row.assigned_to,
        resolved_by=row.resolved_by,
        resolved_at=ensure_utc(row.resolved_at),
        resolution=row.resolution,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _to_rule(row: AnomalyRuleRow) -> AnomalyRule:
    return AnomalyRule(
        id=row.id,
        name=row.name,
        description=row.description,
        type=FlagType(row.type),
        severity=Severity(row.severity),
        conditions=[
            RuleCondition(field=c["field"], operator=c["operator"], value=c.get("value"), unit=c.get("unit"))
            for c in row.conditions or []
        ],
        actions=[RuleAction(type=a["type"], config=a.get("config") or {}) for a in row.actions or []],
        enabled=row.enabled,
        tenant_id=row.tenant_id,
    )
