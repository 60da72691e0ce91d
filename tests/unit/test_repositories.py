"""Unit tests for the SQLAlchemy store"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from banking_monitor.domain.models import (
    AlertStatus,
    BankingAlert,
    Direction,
    FlagType,
    Severity,
    TransactionFlag,
    TransactionStatus,
)
from banking_monitor.domain.ports import UpsertStatus
from banking_monitor.domain.rules import default_rules
from banking_monitor.utils.date_utils import utcnow


@pytest.fixture
def account_id(make_connection):
    return make_connection().accounts[0].id


def test_upsert_created_then_unchanged_then_updated(store, account_id, make_transaction):
    tx = make_transaction(account_id=account_id)

    created, status = store.upsert_transaction(tx)
    assert status == UpsertStatus.CREATED
    assert created.id
    assert created.created_at == created.updated_at

    same, status = store.upsert_transaction(make_transaction(account_id=account_id))
    assert status == UpsertStatus.UNCHANGED
    assert same.id == created.id
    assert same.updated_at == created.updated_at

    updated, status = store.upsert_transaction(make_transaction(account_id=account_id, description="Corrected"))
    assert status == UpsertStatus.UPDATED
    assert updated.id == created.id
    assert updated.description == "Corrected"
    assert updated.created_at == created.created_at


def test_upsert_keeps_analysis_results(store, account_id, make_transaction):
    saved, _ = store.upsert_transaction(make_transaction(account_id=account_id))
    flag = TransactionFlag(
        type=FlagType.ROUND_AMOUNT,
        severity=Severity.LOW,
        message="round",
        rule_id="builtin:round_amount",
        detected_at=utcnow(),
    )
    store.update_transaction_analysis(saved.id, 10, [flag])

    again, status = store.upsert_transaction(make_transaction(account_id=account_id, status=TransactionStatus.PENDING))

    assert status == UpsertStatus.UPDATED
    assert again.anomaly_score == 10
    assert [f.type for f in again.flags] == [FlagType.ROUND_AMOUNT]


def test_rejected_upsert_keeps_earlier_rows(db, store, account_id, make_transaction):
    kept, _ = store.upsert_transaction(make_transaction(account_id=account_id, external_id="tx-ok"))

    with pytest.raises(IntegrityError):
        store.upsert_transaction(make_transaction(account_id=account_id, external_id="tx-bad", currency=None))

    after, status = store.upsert_transaction(make_transaction(account_id=account_id, external_id="tx-after"))
    store.commit()
    db.rollback()

    assert status == UpsertStatus.CREATED
    assert store.get_transaction(kept.id) is not None
    assert store.get_transaction(after.id) is not None
    assert {tx.external_id for tx in store.get_transactions([kept.id, after.id])} == {"tx-ok", "tx-after"}


def test_unanalyzed_transaction_ids(store, account_id, make_transaction):
    scored, _ = store.upsert_transaction(make_transaction(account_id=account_id, external_id="tx-scored"))
    unscored, _ = store.upsert_transaction(make_transaction(account_id=account_id, external_id="tx-unscored"))
    store.update_transaction_analysis(scored.id, 0, [])

    assert store.get_unanalyzed_transaction_ids([account_id]) == [unscored.id]
    assert store.get_unanalyzed_transaction_ids([]) == []


def test_transaction_round_trip(store, account_id, make_transaction):
    tx = make_transaction(account_id=account_id, amount=Decimal("1234.56"))
    tx.metadata.entry_reference = "entry-1"

    saved, _ = store.upsert_transaction(tx)
    loaded = store.get_transaction(saved.id)

    assert loaded.amount == Decimal("1234.56")
    assert loaded.direction == Direction.DEBIT
    assert loaded.booking_date == tx.booking_date
    assert loaded.booking_date.tzinfo is not None
    assert loaded.value_date == tx.value_date
    assert loaded.metadata.entry_reference == "entry-1"
    assert store.get_transaction("missing") is None


def test_history_queries_respect_before(store, account_id, make_transaction):
    march = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    for i, (amount, iban) in enumerate([("100", "ES01"), ("300", "ES02"), ("1000", "ES03")]):
        store.upsert_transaction(
            make_transaction(
                account_id=account_id,
                external_id=f"tx-{i}",
                amount=Decimal(amount),
                counterparty_iban=iban,
                booking_date=march + timedelta(days=i),
            )
        )

    cutoff = march + timedelta(days=2)
    assert round(store.get_average_amount(account_id, Direction.DEBIT), 2) == Decimal("466.67")
    assert store.get_average_amount(account_id, Direction.DEBIT, before=cutoff) == Decimal("200")
    assert store.get_average_amount(account_id, Direction.CREDIT) == Decimal("0")
    assert store.get_known_counterparties(account_id, before=cutoff) == ["ES01", "ES02"]
    assert store.get_last_activity_date(account_id) == march + timedelta(days=2)
    assert store.get_last_activity_date(account_id, before=march) is None


def test_known_counterparties_fall_back_to_name(store, account_id, make_transaction):
    store.upsert_transaction(make_transaction(account_id=account_id, counterparty_iban=None, counterparty_name="Acme"))
    store.upsert_transaction(
        make_transaction(account_id=account_id, external_id="tx-2", counterparty_iban=None, counterparty_name=None)
    )

    assert store.get_known_counterparties(account_id) == ["Acme"]


def test_recent_transactions_window(store, account_id, make_transaction):
    now = utcnow()
    store.upsert_transaction(make_transaction(account_id=account_id, external_id="new", booking_date=now))
    store.upsert_transaction(
        make_transaction(account_id=account_id, external_id="old", booking_date=now - timedelta(days=10))
    )

    assert [t.external_id for t in store.get_transactions_by_account(account_id, 7)] == ["new"]


def test_alerts(store, account_id, make_transaction):
    saved, _ = store.upsert_transaction(make_transaction(account_id=account_id))

    alert = store.create_alert(
        BankingAlert(
            tenant_id="tenant-1",
            transaction_id=saved.id,
            account_id=account_id,
            type=FlagType.STRUCTURING,
            severity=Severity.HIGH,
            title="Possible structuring",
            description="Amount just below the reporting threshold",
        )
    )

    assert alert.id
    assert alert.status == AlertStatus.OPEN
    assert store.has_open_alert(saved.id, FlagType.STRUCTURING)
    assert not store.has_open_alert(saved.id, FlagType.DUPLICATE)
    assert [a.id for a in store.get_alerts("tenant-1", AlertStatus.OPEN)] == [alert.id]
    assert store.get_alerts("tenant-2") == []


def test_rules_seeded_once_and_scoped(store):
    assert len(store.seed_rules(default_rules())) == 3
    assert store.seed_rules(default_rules()) == []

    tenant_rule = default_rules()[0]
    tenant_rule.id = "tenant-rule"
    tenant_rule.tenant_id = "tenant-1"
    store.save_rule(tenant_rule)

    assert len(store.get_rules("tenant-1")) == 4
    assert len(store.get_rules("tenant-2")) == 3
    saved = {r.id: r for r in store.get_rules("tenant-1")}["default:large_international"]
    assert [c.operator for c in saved.conditions] == ["gt", "regex"]


def test_transaction_tenant(store, account_id, make_transaction):
    saved, _ = store.upsert_transaction(make_transaction(account_id=account_id))

    assert store.get_transaction_tenant_id(saved.id) == "tenant-1"
    assert store.get_transaction_tenant_id("missing") is None
