"""
Built-in anomaly detectors.

Each detector looks at one canonical transaction (plus account history where
needed) and returns a TransactionFlag or None. Detectors must not raise on
missing data: absent history or fields simply mean "not triggered".
"""

from decimal import Decimal
from typing import Callable, Dict, List, Optional

from banking_monitor.domain.models import FlagType, Severity, Transaction, TransactionFlag
from banking_monitor.domain.ports import TransactionHistory
from banking_monitor.utils.date_utils import ensure_utc, utcnow

# High-risk jurisdictions for AML screening (IBAN country prefixes)
HIGH_RISK_COUNTRIES = frozenset(
    [
        "AF", "BY", "CF", "CD", "CU", "GN", "GW", "HT", "IR", "IQ", "LB", "LY",
        "ML", "MM", "NI", "KP", "PK", "RU", "SO", "SS", "SD", "SY", "VE", "YE", "ZW",
    ]
)

# Cash reporting threshold in currency units (10,000 EUR in the EU)
REPORTING_THRESHOLD = Decimal("10000")
STRUCTURING_LOWER = REPORTING_THRESHOLD * Decimal("0.85")
STRUCTURING_UPPER = REPORTING_THRESHOLD * Decimal("0.99")

UNUSUAL_AMOUNT_RATIO = Decimal("5")
UNUSUAL_AMOUNT_HIGH_RATIO = Decimal("10")
ROUND_AMOUNT_FLOOR = Decimal("5000")
ROUND_AMOUNT_UNIT = Decimal("1000")
UNKNOWN_COUNTERPARTY_MEDIUM_AMOUNT = Decimal("1000")
DORMANT_DAYS = 90
DUPLICATE_LOOKBACK_DAYS = 7
DUPLICATE_MAX_DAY_GAP = 1


def _flag(flag_type: FlagType, severity: Severity, message: str) -> TransactionFlag:
    return TransactionFlag(
        type=flag_type,
        severity=severity,
        message=message,
        rule_id=f"builtin:{flag_type.value}",
        detected_at=utcnow(),
    )


def detect_unusual_amount(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    """Amount more than 5x the account's historical average for this direction"""
    average = Decimal(history.get_average_amount(tx.account_id, tx.direction, before=tx.booking_date) or 0)
    if average <= 0:
        return None

    ratio = tx.amount / average
    if ratio > UNUSUAL_AMOUNT_RATIO:
        return _flag(
            FlagType.UNUSUAL_AMOUNT,
            Severity.HIGH if ratio > UNUSUAL_AMOUNT_HIGH_RATIO else Severity.MEDIUM,
            f"Amount {ratio:.1f}x above the historical average ({average:.2f} {tx.currency})",
        )
    return None


def detect_unusual_time(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    """Booked between 01:00 and 05:59"""
    hour = tx.booking_date.hour
    if 1 <= hour <= 5:
        return _flag(
            FlagType.UNUSUAL_TIME,
            Severity.LOW,
            f"Transaction booked at {hour:02d}:00, outside usual hours",
        )
    return None


def detect_unknown_counterparty(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    """First transaction with a counterparty on an account that has history"""
    counterparty_id = tx.counterparty_iban or tx.counterparty_name
    if not counterparty_id:
        return None

    known = history.get_known_counterparties(tx.account_id, before=tx.booking_date)
    if known and counterparty_id not in known:
        return _flag(
            FlagType.UNKNOWN_COUNTERPARTY,
            Severity.MEDIUM if tx.amount > UNKNOWN_COUNTERPARTY_MEDIUM_AMOUNT else Severity.LOW,
            f"First transaction with {tx.counterparty_name or tx.counterparty_iban}",
        )
    return None


def detect_high_risk_country(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    if not tx.counterparty_iban:
        return None

    country = tx.counterparty_iban[:2].upper()
    if country in HIGH_RISK_COUNTRIES:
        return _flag(
            FlagType.HIGH_RISK_COUNTRY,
            Severity.HIGH,
            f"Counterparty in high-risk jurisdiction: {country}",
        )
    return None


def detect_round_amount(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    if tx.amount >= ROUND_AMOUNT_FLOOR and tx.amount % ROUND_AMOUNT_UNIT == 0:
        return _flag(
            FlagType.ROUND_AMOUNT,
            Severity.LOW,
            f"Suspiciously round amount: {tx.amount:,.0f} {tx.currency}",
        )
    return None


def detect_structuring(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    """Amount sized just below the reporting threshold (85%-99%)"""
    if STRUCTURING_LOWER <= tx.amount <= STRUCTURING_UPPER:
        return _flag(
            FlagType.STRUCTURING,
            Severity.HIGH,
            f"Amount just below the reporting threshold ({tx.amount:,.2f} {tx.currency})",
        )
    return None


def detect_dormant_activation(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    booking_date = ensure_utc(tx.booking_date)
    last_activity = ensure_utc(history.get_last_activity_date(tx.account_id, before=booking_date))
    if last_activity is None:
        return None

    idle_days = (booking_date - last_activity).days
    if idle_days > DORMANT_DAYS:
        return _flag(
            FlagType.DORMANT_ACTIVATION,
            Severity.MEDIUM,
            f"Account inactive for {idle_days} days before this transaction",
        )
    return None


def detect_duplicate(tx: Transaction, history: TransactionHistory) -> Optional[TransactionFlag]:
    """Same amount, direction and counterparty IBAN within a day, seen in the last week"""
    booking_date = ensure_utc(tx.booking_date)
    duplicates = [
        other
        for other in history.get_transactions_by_account(tx.account_id, DUPLICATE_LOOKBACK_DAYS)
        if other.id != tx.id
        and other.amount == tx.amount
        and other.direction == tx.direction
        and other.counterparty_iban == tx.counterparty_iban
        and abs(booking_date - ensure_utc(other.booking_date)).days <= DUPLICATE_MAX_DAY_GAP
    ]
    if duplicates:
        return _flag(
            FlagType.DUPLICATE,
            Severity.MEDIUM,
            f"Possible duplicate ({len(duplicates)} similar transaction(s) within 24h)",
        )
    return None


Detector = Callable[[Transaction, TransactionHistory], Optional[TransactionFlag]]

BUILTIN_DETECTORS: Dict[FlagType, Detector] = {
    FlagType.UNUSUAL_AMOUNT: detect_unusual_amount,
    FlagType.UNUSUAL_TIME: detect_unusual_time,
    FlagType.UNKNOWN_COUNTERPARTY: detect_unknown_counterparty,
    FlagType.HIGH_RISK_COUNTRY: detect_high_risk_country,
    FlagType.ROUND_AMOUNT: detect_round_amount,
    FlagType.STRUCTURING: detect_structuring,
    FlagType.DORMANT_ACTIVATION: detect_dormant_activation,
    FlagType.DUPLICATE: detect_duplicate,
}

SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.LOW: 10,
    Severity.MEDIUM: 25,
    Severity.HIGH: 50,
    Severity.CRITICAL: 100,
}

MAX_SCORE = 100


def calculate_anomaly_score(flags: List[TransactionFlag]) -> int:
    """
    Additive severity score capped at 100.

    Weights: low 10, medium 25, high 50, critical 100. No flags scores 0.
    """
    return min(MAX_SCORE, sum(SEVERITY_WEIGHTS[flag.severity] for flag in flags))
