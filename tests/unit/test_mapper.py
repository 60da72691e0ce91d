"""Unit tests for Nordigen record mapping"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from banking_monitor.domain.exceptions import InvalidTransactionDataError
from banking_monitor.domain.mapper import (
    NO_DESCRIPTION,
    categorize,
    map_account_type,
    map_transaction,
    pick_current_balance,
)
from banking_monitor.domain.models import AccountType, Direction, TransactionCategory, TransactionStatus


def test_debit_takes_creditor_as_counterparty(raw_transaction):
    """Outgoing payment: the creditor is the counterparty"""
    raw = raw_transaction(
        amount="-250.50",
        creditorName="Acme",
        creditorAccount={"iban": "DE89370400440532013000"},
        debtorName="Us SL",
        debtorAccount={"iban": "ES9121000418450200051332"},
    )

    tx = map_transaction(raw, "acc-1", TransactionStatus.BOOKED)

    assert tx.direction == Direction.DEBIT
    assert tx.amount == Decimal("250.50")
    assert tx.counterparty_name == "Acme"
    assert tx.counterparty_iban == "DE89370400440532013000"
    assert tx.merchant_name == "Acme"


def test_credit_takes_debtor_as_counterparty(raw_transaction):
    """Incoming payment: the debtor is the counterparty"""
    raw = raw_transaction(
        amount="1000.00",
        creditorName="Us SL",
        debtorName="Acme",
        debtorAccount={"iban": "FR1420041010050500013M02606"},
    )

    tx = map_transaction(raw, "acc-1", TransactionStatus.BOOKED)

    assert tx.direction == Direction.CREDIT
    assert tx.amount == Decimal("1000.00")
    assert tx.counterparty_name == "Acme"
    assert tx.counterparty_iban == "FR1420041010050500013M02606"


def test_zero_amount_is_debit(raw_transaction):
    tx = map_transaction(raw_transaction(amount="0.00"), "acc-1", TransactionStatus.BOOKED)
    assert tx.direction == Direction.DEBIT
    assert tx.amount == Decimal("0.00")


def test_booking_date_time_preferred_over_booking_date(raw_transaction):
    raw = raw_transaction(booking_date="2024-03-12", bookingDateTime="2024-03-12T03:15:00Z")

    tx = map_transaction(raw, "acc-1", TransactionStatus.BOOKED)

    assert tx.booking_date == datetime(2024, 3, 12, 3, 15, tzinfo=timezone.utc)


def test_value_date_falls_back_to_booking_date(raw_transaction):
    raw = raw_transaction(booking_date="2024-03-12")
    del raw["valueDate"]

    tx = map_transaction(raw, "acc-1", TransactionStatus.PENDING)

    assert tx.value_date == date(2024, 3, 12)
    assert tx.status == TransactionStatus.PENDING


def test_description_fallback_chain(raw_transaction):
    """unstructured, then structured, then counterparty, then placeholder"""
    raw = raw_transaction(remittanceInformationStructured="INV-2024-001")
    assert map_transaction(raw, "acc-1", TransactionStatus.BOOKED).description == "Compra material oficina"

    del raw["remittanceInformationUnstructured"]
    tx = map_transaction(raw, "acc-1", TransactionStatus.BOOKED)
    assert tx.description == "INV-2024-001"
    assert tx.reference == "INV-2024-001"

    del raw["remittanceInformationStructured"]
    raw["creditorName"] = "Acme"
    assert map_transaction(raw, "acc-1", TransactionStatus.BOOKED).description == "Acme"

    del raw["creditorName"]
    tx = map_transaction(raw, "acc-1", TransactionStatus.BOOKED)
    assert tx.description == NO_DESCRIPTION
    assert tx.reference is None


def test_metadata_and_merchant_category(raw_transaction):
    raw = raw_transaction(
        bankTransactionCode="PMNT-ICDT-STDO",
        proprietaryBankTransactionCode="TRF",
        internalTransactionId="int-77",
        entryReference="ref-9",
    )

    tx = map_transaction(raw, "acc-1", TransactionStatus.BOOKED)

    assert tx.merchant_category == "PMNT-ICDT-STDO"
    assert tx.metadata.bank_transaction_code == "PMNT-ICDT-STDO"
    assert tx.metadata.proprietary_bank_transaction_code == "TRF"
    assert tx.metadata.internal_transaction_id == "int-77"
    assert tx.metadata.entry_reference == "ref-9"


def test_internal_transaction_id_used_when_transaction_id_missing(raw_transaction):
    raw = raw_transaction(transaction_id=None, internalTransactionId="int-42")
    assert map_transaction(raw, "acc-1", TransactionStatus.BOOKED).external_id == "int-42"


def test_missing_ids_synthesized_when_allowed(raw_transaction):
    raw = raw_transaction(transaction_id=None)

    first = map_transaction(raw, "acc-1", TransactionStatus.BOOKED, allow_synthesized_ids=True)
    second = map_transaction(raw, "acc-1", TransactionStatus.BOOKED, allow_synthesized_ids=True)

    assert first.external_id
    assert first.external_id != second.external_id


def test_missing_ids_rejected_when_synthesis_disabled(raw_transaction):
    with pytest.raises(InvalidTransactionDataError):
        map_transaction(raw_transaction(transaction_id=None), "acc-1", TransactionStatus.BOOKED, allow_synthesized_ids=False)


@pytest.mark.parametrize("field", ["transactionAmount", "bookingDate"])
def test_missing_required_fields_raise(raw_transaction, field):
    raw = raw_transaction()
    del raw[field]
    with pytest.raises(InvalidTransactionDataError):
        map_transaction(raw, "acc-1", TransactionStatus.BOOKED)


def test_unparseable_amount_raises(raw_transaction):
    with pytest.raises(InvalidTransactionDataError):
        map_transaction(raw_transaction(amount="12,50"), "acc-1", TransactionStatus.BOOKED)


def test_categorize_first_matching_category_wins():
    # "nomina" (salary) and "transferencia" (transfers) both match; salary is listed first
    raw = {"remittanceInformationUnstructured": "Transferencia NOMINA marzo"}
    assert categorize(raw) == TransactionCategory.SALARY


def test_categorize_uses_party_names_without_remittance():
    assert categorize({"creditorName": "Vodafone Espana"}) == TransactionCategory.UTILITIES
    assert categorize({"debtorName": "Mapfre Seguros"}) == TransactionCategory.INSURANCE
    assert categorize({"creditorName": "Zzz"}) is None


def test_map_account_type():
    assert map_account_type("CACC") == AccountType.CHECKING
    assert map_account_type("svgs") == AccountType.SAVINGS
    assert map_account_type("CARD") == AccountType.CREDIT
    assert map_account_type("LOAN") == AccountType.LOAN
    assert map_account_type("TRAS") == AccountType.OTHER
    assert map_account_type(None) == AccountType.CHECKING


def test_pick_current_balance_prefers_interim_available():
    balances = [
        {"balanceType": "expected", "balanceAmount": {"amount": "90.00", "currency": "EUR"}},
        {"balanceType": "interimAvailable", "balanceAmount": {"amount": "100.00", "currency": "EUR"}},
    ]
    assert pick_current_balance(balances)["balanceAmount"]["amount"] == "100.00"
    assert pick_current_balance(balances[:1])["balanceAmount"]["amount"] == "90.00"
    assert pick_current_balance([{"balanceType": "closingBooked"}]) is None
