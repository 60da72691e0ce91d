"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class Direction(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    BOOKED = "booked"
    PENDING = "pending"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FlagType(str, Enum):
    """Closed set of anomaly types a flag or rule can carry"""

    UNUSUAL_AMOUNT = "unusual_amount"
    UNUSUAL_TIME = "unusual_time"
    UNUSUAL_FREQUENCY = "unusual_frequency"
    UNKNOWN_COUNTERPARTY = "unknown_counterparty"
    HIGH_RISK_COUNTRY = "high_risk_country"
    ROUND_AMOUNT = "round_amount"
    STRUCTURING = "structuring"
    VELOCITY = "velocity"
    DORMANT_ACTIVATION = "dormant_activation"
    CATEGORY_MISMATCH = "category_mismatch"
    DUPLICATE = "duplicate"
    MANUAL_FLAG = "manual_flag"


class TransactionCategory(str, Enum):
    SALARY = "salary"
    TAXES = "taxes"
    UTILITIES = "utilities"
    RENT = "rent"
    SUPPLIERS = "suppliers"
    SERVICES = "services"
    EQUIPMENT = "equipment"
    TRAVEL = "travel"
    MARKETING = "marketing"
    INSURANCE = "insurance"
    LOANS = "loans"
    TRANSFERS = "transfers"
    FEES = "fees"
    REFUNDS = "refunds"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    LOAN = "loan"
    OTHER = "other"


class ConnectionStatus(str, Enum):
    LINKED = "linked"
    PENDING = "pending"
    EXPIRED = "expired"
    REVOKED = "revoked"


class AlertStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


@dataclass
class TransactionMetadata:
    """Provider passthrough fields kept on a transaction"""

    bank_transaction_code: Optional[str] = None
    proprietary_bank_transaction_code: Optional[str] = None
    internal_transaction_id: Optional[str] = None
    entry_reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TransactionMetadata":
        data = data or {}
        return cls(
            bank_transaction_code=data.get("bank_transaction_code"),
            proprietary_bank_transaction_code=data.get("proprietary_bank_transaction_code"),
            internal_transaction_id=data.get("internal_transaction_id"),
            entry_reference=data.get("entry_reference"),
        )


@dataclass
class TransactionFlag:
    """Single anomaly finding attached to a transaction"""

    type: FlagType
    severity: Severity
    message: str
    rule_id: str  # "builtin:<name>" or a custom rule id
    detected_at: datetime

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "rule_id": self.rule_id,
            "detected_at": self.detected_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionFlag":
        return cls(
            type=FlagType(data["type"]),
            severity=Severity(data["severity"]),
            message=data["message"],
            rule_id=data["rule_id"],
            detected_at=datetime.fromisoformat(data["detected_at"]),
        )


@dataclass
class Transaction:
    """Canonical, provider-agnostic bank transaction"""

    account_id: str
    external_id: str
    amount: Decimal  # absolute value, sign lives in direction
    currency: str
    direction: Direction
    status: TransactionStatus
    booking_date: datetime
    value_date: date
    description: str
    merchant_name: Optional[str] = None
    merchant_category: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    reference: Optional[str] = None
    category: Optional[TransactionCategory] = None
    metadata: TransactionMetadata = field(default_factory=TransactionMetadata)
    anomaly_score: Optional[int] = None
    flags: List[TransactionFlag] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RuleCondition:
    """Single (field, operator, value) test inside a rule"""

    field: str
    operator: str  # ConditionOperator value; unknown operators never match
    value: Any
    unit: Optional[str] = None


@dataclass
class RuleAction:
    """Advisory action metadata, not evaluated by the engine"""

    type: str  # "flag" | "alert" | "block" | "notify"
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AnomalyRule:
    """Tenant-defined (or global, tenant_id=None) detection rule"""

    id: str
    name: str
    description: str
    type: FlagType
    severity: Severity
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    enabled: bool = True
    tenant_id: Optional[str] = None


@dataclass
class BankAccount:
    connection_id: str
    external_id: str
    iban: Optional[str]
    name: str
    owner_name: Optional[str]
    currency: str
    account_type: AccountType
    balance: Decimal
    balance_updated_at: Optional[datetime]
    status: str = "active"
    id: Optional[str] = None


@dataclass
class BankConnection:
    id: str
    tenant_id: str
    institution_id: str
    requisition_id: str
    status: ConnectionStatus
    accounts: List[BankAccount] = field(default_factory=list)
    last_synced_at: Optional[datetime] = None


@dataclass
class BankingAlert:
    tenant_id: str
    transaction_id: str
    account_id: str
    type: FlagType
    severity: Severity
    title: str
    description: str
    status: AlertStatus = AlertStatus.OPEN
    assigned_to: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SyncResult:
    """Outcome of syncing one account; non-empty errors means partial failure"""

    account_id: str
    new_transactions: int = 0
    updated_transactions: int = 0
    errors: List[str] = field(default_factory=list)
    synced_at: Optional[datetime] = None
    transaction_ids: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class AnalysisResult:
    flags: List[TransactionFlag]
    score: int
    alerts: List[BankingAlert] = field(default_factory=list)
