"""SQLAlchemy ORM models for connections, accounts, transactions, rules and alerts"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from banking_monitor.utils.date_utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class BankConnectionRow(Base):
    """Consented access grant (requisition) to one or more bank accounts"""

    __tablename__ = "bank_connection"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(Text, nullable=False, index=True)
    institution_id = Column(Text, nullable=False)
    requisition_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    accounts = relationship("BankAccountRow", back_populates="connection", cascade="all, delete-orphan")


class BankAccountRow(Base):
    __tablename__ = "bank_account"
    __table_args__ = (UniqueConstraint("connection_id", "external_id", name="uq_bank_account_external"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    connection_id = Column(String(36), ForeignKey("bank_connection.id", ondelete="CASCADE"), nullable=False)
    external_id = Column(Text, nullable=False)
    iban = Column(Text, nullable=True)
    name = Column(Text, nullable=False)
    owner_name = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False)
    account_type = Column(Text, nullable=False, default="checking")
    balance = Column(Numeric(18, 2), nullable=False, default=0)
    balance_updated_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(Text, nullable=False, default="active")

    connection = relationship("BankConnectionRow", back_populates="accounts")


class TransactionRow(Base):
    """Canonical transaction; (account_id, external_id) is the upsert key"""

    __tablename__ = "bank_transaction"
    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_bank_transaction_external"),
        Index("ix_bank_transaction_account_booking", "account_id", "booking_date"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    account_id = Column(String(36), ForeignKey("bank_account.id", ondelete="CASCADE"), nullable=False)
    external_id = Column(Text, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    direction = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    booking_date = Column(DateTime(timezone=True), nullable=False)
    value_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    merchant_name = Column(Text, nullable=True)
    merchant_category = Column(Text, nullable=True)
    counterparty_name = Column(Text, nullable=True)
    counterparty_iban = Column(Text, nullable=True)
    reference = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    provider_metadata = Column("metadata", JSON, nullable=False, default=dict)
    anomaly_score = Column(Integer, nullable=True)
    flags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class AnomalyRuleRow(Base):
    __tablename__ = "anomaly_rule"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(Text, nullable=True, index=True)  # NULL = global rule
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(Text, nullable=False)
    severity = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    conditions = Column(JSON, nullable=False, default=list)
    actions = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class BankingAlertRow(Base):
    __tablename__ = "banking_alert"
    __table_args__ = (Index("ix_banking_alert_transaction_type", "transaction_id", "type"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(Text, nullable=False, index=True)
    transaction_id = Column(String(36), ForeignKey("bank_transaction.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(36), nullable=False)
    type = Column(Text, nullable=False)
    severity = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="open")
    assigned_to = Column(Text, nullable=True)
    resolved_by = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
