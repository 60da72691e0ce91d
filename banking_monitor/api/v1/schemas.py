"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from banking_monitor.domain.models import (
    AnomalyRule,
    Direction,
    FlagType,
    RuleCondition,
    Severity,
    SyncResult,
    Transaction,
    TransactionFlag,
    TransactionStatus,
)


class SyncResultSchema(BaseModel):
    """Per-account sync outcome; non-empty errors means the account sync degraded"""

    account_id: str
    new_transactions: int
    updated_transactions: int
    errors: List[str]
    synced_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, result: SyncResult) -> "SyncResultSchema":
        return cls(
            account_id=result.account_id,
            new_transactions=result.new_transactions,
            updated_transactions=result.updated_transactions,
            errors=result.errors,
            synced_at=result.synced_at,
        )


class SyncResponse(BaseModel):
    """Response for POST /v1/connections/{connection_id}/sync"""

    connection_id: str
    results: List[SyncResultSchema]
    analyzed: int
    flagged: int
    alerts_created: int
    degraded: bool


class RuleConditionSchema(BaseModel):
    field: str = Field(..., min_length=1, description="Dot path into the transaction")
    operator: str
    value: Any = None
    unit: Optional[str] = None


class RuleSchema(BaseModel):
    """Rule definition as submitted for preview"""

    id: str = "preview"
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=1000)
    type: FlagType
    severity: Severity
    enabled: bool = True
    conditions: List[RuleConditionSchema]

    def to_domain(self, tenant_id: str) -> AnomalyRule:
        return AnomalyRule(
            id=self.id,
            name=self.name,
            description=self.description,
            type=self.type,
            severity=self.severity,
            enabled=self.enabled,
            tenant_id=tenant_id,
            conditions=[
                RuleCondition(field=c.field, operator=c.operator, value=c.value, unit=c.unit)
                for c in self.conditions
            ],
        )


class TransactionInput(BaseModel):
    """Canonical transaction fields accepted for rule preview"""

    external_id: str
    amount: Decimal = Field(..., ge=0)
    currency: str = "EUR"
    direction: Direction
    status: TransactionStatus = TransactionStatus.BOOKED
    booking_date: datetime
    value_date: Optional[date] = None
    description: str = ""
    merchant_name: Optional[str] = None
    merchant_category: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    reference: Optional[str] = None

    def to_domain(self) -> Transaction:
        return Transaction(
            account_id="preview",
            external_id=self.external_id,
            amount=self.amount,
            currency=self.currency,
            direction=self.direction,
            status=self.status,
            booking_date=self.booking_date,
            value_date=self.value_date or self.booking_date.date(),
            description=self.description,
            merchant_name=self.merchant_name,
            merchant_category=self.merchant_category,
            counterparty_name=self.counterparty_name,
            counterparty_iban=self.counterparty_iban,
            reference=self.reference,
        )


class RulePreviewRequest(BaseModel):
    """Request body for POST /v1/rules/preview"""

    rule: RuleSchema
    transactions: List[TransactionInput]


class RulePreviewMatch(BaseModel):
    external_id: str
    matched: bool


class RulePreviewResponse(BaseModel):
    matches: List[RulePreviewMatch]
    matched_count: int


class FlagRequest(BaseModel):
    """Request body for POST /v1/transactions/{transaction_id}/flag"""

    reason: Optional[str] = Field(None, max_length=1000)


class FlagSchema(BaseModel):
    type: FlagType
    severity: Severity
    message: str
    rule_id: str
    detected_at: datetime

    @classmethod
    def from_domain(cls, flag: TransactionFlag) -> "FlagSchema":
        return cls(
            type=flag.type,
            severity=flag.severity,
            message=flag.message,
            rule_id=flag.rule_id,
            detected_at=flag.detected_at,
        )


class TransactionFlagsResponse(BaseModel):
    transaction_id: str
    anomaly_score: Optional[int]
    flags: List[FlagSchema]
