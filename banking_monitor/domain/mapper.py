"""Mapping of provider-native (Nordigen) records into the canonical model"""

import logging
import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from banking_monitor.config import settings
from banking_monitor.domain.exceptions import InvalidTransactionDataError
from banking_monitor.domain.models import (
    AccountType,
    Direction,
    Transaction,
    TransactionCategory,
    TransactionMetadata,
    TransactionStatus,
)
from banking_monitor.utils.date_utils import parse_provider_datetime

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description"

# Ordered: the first category with a matching keyword wins.
CATEGORY_KEYWORDS: List[Tuple[TransactionCategory, List[str]]] = [
    (TransactionCategory.SALARY, ["nomina", "salario", "sueldo", "payroll"]),
    (TransactionCategory.TAXES, ["hacienda", "aeat", "impuesto", "iva", "irpf", "tax"]),
    (
        TransactionCategory.UTILITIES,
        ["luz", "agua", "gas", "electricidad", "telefono", "internet", "vodafone", "movistar", "orange"],
    ),
    (TransactionCategory.RENT, ["alquiler", "arrendamiento", "rent"]),
    (TransactionCategory.SUPPLIERS, ["proveedor", "supplier", "factura", "invoice"]),
    (TransactionCategory.SERVICES, ["consultoria", "asesoria", "servicio", "service"]),
    (TransactionCategory.EQUIPMENT, ["equipamiento", "hardware", "software", "licencia"]),
    (TransactionCategory.TRAVEL, ["viaje", "vuelo", "hotel", "renfe", "iberia", "booking"]),
    (TransactionCategory.MARKETING, ["publicidad", "marketing", "google ads", "facebook", "linkedin"]),
    (TransactionCategory.INSURANCE, ["seguro", "insurance", "mutua", "mapfre", "axa"]),
    (TransactionCategory.LOANS, ["prestamo", "credito", "hipoteca", "loan", "mortgage"]),
    (TransactionCategory.TRANSFERS, ["transferencia", "transfer", "bizum"]),
    (TransactionCategory.FEES, ["comision", "fee", "cargo", "mantenimiento"]),
    (TransactionCategory.REFUNDS, ["devolucion", "refund", "reembolso"]),
]

ACCOUNT_TYPES: Dict[str, AccountType] = {
    "CACC": AccountType.CHECKING,
    "SVGS": AccountType.SAVINGS,
    "CARD": AccountType.CREDIT,
    "LOAN": AccountType.LOAN,
}


def map_transaction(
    raw: Dict[str, Any],
    account_id: str,
    status: TransactionStatus,
    allow_synthesized_ids: Optional[bool] = None,
) -> Transaction:
    """
    Convert a Nordigen transaction record into a canonical Transaction.

    The result has no id or timestamps; those are assigned by the store.

    Raises:
        InvalidTransactionDataError: On missing amount, currency or booking
            date, or on a missing transaction id when synthesized ids are
            disabled.
    """
    if allow_synthesized_ids is None:
        allow_synthesized_ids = settings.allow_synthesized_external_ids

    try:
        signed_amount = Decimal(str(raw["transactionAmount"]["amount"]))
        currency = raw["transactionAmount"]["currency"]
        booking_raw = raw.get("bookingDateTime") or raw["bookingDate"]
        booking_date = parse_provider_datetime(booking_raw)
        value_raw = raw.get("valueDate")
        value_date = date.fromisoformat(value_raw[:10]) if value_raw else booking_date.date()
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise InvalidTransactionDataError(f"Invalid transaction data from provider: {e!r}") from e

    is_credit = signed_amount > 0

    # Money comes from the debtor on a credit and goes to the creditor on a debit
    if is_credit:
        counterparty_name = raw.get("debtorName") or None
        counterparty_iban = (raw.get("debtorAccount") or {}).get("iban") or None
    else:
        counterparty_name = raw.get("creditorName") or None
        counterparty_iban = (raw.get("creditorAccount") or {}).get("iban") or None

    unstructured = raw.get("remittanceInformationUnstructured") or None
    structured = raw.get("remittanceInformationStructured") or None
    description = unstructured or structured or counterparty_name or NO_DESCRIPTION

    return Transaction(
        account_id=account_id,
        external_id=_external_id(raw, allow_synthesized_ids),
        amount=abs(signed_amount),
        currency=currency,
        direction=Direction.CREDIT if is_credit else Direction.DEBIT,
        status=status,
        booking_date=booking_date,
        value_date=value_date,
        description=description,
        merchant_name=counterparty_name,
        merchant_category=raw.get("bankTransactionCode") or None,
        counterparty_name=counterparty_name,
        counterparty_iban=counterparty_iban,
        reference=structured or unstructured,
        category=categorize(raw),
        metadata=TransactionMetadata(
            bank_transaction_code=raw.get("bankTransactionCode"),
            proprietary_bank_transaction_code=raw.get("proprietaryBankTransactionCode"),
            internal_transaction_id=raw.get("internalTransactionId"),
            entry_reference=raw.get("entryReference"),
        ),
    )


def _external_id(raw: Dict[str, Any], allow_synthesized_ids: bool) -> str:
    external_id = raw.get("transactionId") or raw.get("internalTransactionId")
    if external_id:
        return external_id

    if not allow_synthesized_ids:
        raise InvalidTransactionDataError("Provider transaction has no transactionId or internalTransactionId")

    # Synthesized ids differ on every sync, so these rows cannot be deduplicated
    logger.warning(
        "Provider transaction without id, synthesizing one",
        extra={"booking_date": raw.get("bookingDate")},
    )
    return str(uuid.uuid4())


def categorize(raw: Dict[str, Any]) -> Optional[TransactionCategory]:
    """Keyword-based category inference on remittance text or party names"""
    text = (
        raw.get("remittanceInformationUnstructured")
        or raw.get("creditorName")
        or raw.get("debtorName")
        or ""
    ).lower()

    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return None


def map_account_type(cash_account_type: Optional[str]) -> AccountType:
    """Map an ISO 20022 cashAccountType code to an AccountType"""
    if not cash_account_type:
        return AccountType.CHECKING
    return ACCOUNT_TYPES.get(cash_account_type.upper(), AccountType.OTHER)


def pick_current_balance(balances: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Prefer interimAvailable, fall back to expected, else None"""
    for balance_type in ("interimAvailable", "expected"):
        for balance in balances:
            if balance.get("balanceType") == balance_type:
                return balance
    return None
