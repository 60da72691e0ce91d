"""Anomaly engine - built-in detectors plus tenant rules, scoring and alerting"""

import logging
from typing import Dict, List, Optional

from banking_monitor.config import settings
from banking_monitor.domain.detectors import BUILTIN_DETECTORS, calculate_anomaly_score
from banking_monitor.domain.models import (
    AnalysisResult,
    AnomalyRule,
    BankingAlert,
    FlagType,
    Severity,
    Transaction,
    TransactionFlag,
)
from banking_monitor.domain.ports import AlertStore, TransactionHistory
from banking_monitor.domain.rules import evaluate_rule
from banking_monitor.infrastructure.observability.logging import log_analysis
from banking_monitor.infrastructure.observability.metrics import alerts_created_counter, record_analysis
from banking_monitor.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

ALERT_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)

ALERT_TITLES: Dict[FlagType, str] = {
    FlagType.UNUSUAL_AMOUNT: "Unusual amount detected",
    FlagType.UNUSUAL_TIME: "Transaction at unusual time",
    FlagType.UNUSUAL_FREQUENCY: "Abnormal transaction frequency",
    FlagType.UNKNOWN_COUNTERPARTY: "Unknown counterparty",
    FlagType.HIGH_RISK_COUNTRY: "High-risk country transaction",
    FlagType.ROUND_AMOUNT: "Suspiciously round amount",
    FlagType.STRUCTURING: "Possible structuring",
    FlagType.VELOCITY: "Rapid movement of funds",
    FlagType.DORMANT_ACTIVATION: "Dormant account activation",
    FlagType.CATEGORY_MISMATCH: "Category does not match profile",
    FlagType.DUPLICATE: "Possible duplicate transaction",
    FlagType.MANUAL_FLAG: "Manually flagged",
}
DEFAULT_ALERT_TITLE = "Anomaly detected"


def alert_title(flag_type: FlagType) -> str:
    return ALERT_TITLES.get(flag_type, DEFAULT_ALERT_TITLE)


class AnomalyEngine:
    """
    Evaluates transactions against built-in detectors and custom rules.

    Stateless across transactions: all history is read through the
    TransactionHistory interface. Analysis never raises for bad or missing
    data; a failing detector or rule contributes no flag.
    """

    def __init__(
        self,
        rules: List[AnomalyRule],
        history: TransactionHistory,
        alert_store: AlertStore,
        dedupe_open_alerts: Optional[bool] = None,
    ):
        self.rules = [rule for rule in rules if rule.enabled]
        self.history = history
        self.alert_store = alert_store
        self.dedupe_open_alerts = (
            settings.dedupe_open_alerts if dedupe_open_alerts is None else dedupe_open_alerts
        )

    def analyze_transaction(self, transaction: Transaction, tenant_id: str) -> AnalysisResult:
        flags = self.run_builtin_detectors(transaction) + self.run_custom_rules(transaction, tenant_id)
        score = calculate_anomaly_score(flags)

        alerts = self.create_alerts(transaction, flags, tenant_id)

        record_analysis(flags, score)
        if flags:
            log_analysis(transaction.id, tenant_id, [flag.type.value for flag in flags], score)
        return AnalysisResult(flags=flags, score=score, alerts=alerts)

    def analyze_transactions(self, transactions: List[Transaction], tenant_id: str) -> Dict[str, AnalysisResult]:
        """Analyze each transaction independently, keyed by transaction id"""
        return {tx.id: self.analyze_transaction(tx, tenant_id) for tx in transactions}

    def run_builtin_detectors(self, transaction: Transaction) -> List[TransactionFlag]:
        flags = []
        for flag_type, detector in BUILTIN_DETECTORS.items():
            try:
                flag = detector(transaction, self.history)
            except Exception:
                logger.exception(
                    "Detector failed, treating as not triggered",
                    extra={"detector": flag_type.value, "transaction_id": transaction.id},
                )
                continue
            if flag is not None:
                flags.append(flag)
        return flags

    def run_custom_rules(self, transaction: Transaction, tenant_id: str) -> List[TransactionFlag]:
        flags = []
        for rule in self.applicable_rules(tenant_id):
            try:
                fired = evaluate_rule(rule, transaction)
            except Exception:
                logger.exception(
                    "Rule evaluation failed, treating as not fired",
                    extra={"rule_id": rule.id, "transaction_id": transaction.id},
                )
                continue
            if fired:
                flags.append(
                    TransactionFlag(
                        type=rule.type,
                        severity=rule.severity,
                        message=rule.description,
                        rule_id=rule.id,
                        detected_at=utcnow(),
                    )
                )
        return flags

    def applicable_rules(self, tenant_id: str) -> List[AnomalyRule]:
        """Global rules and the tenant's own rules"""
        return [rule for rule in self.rules if rule.tenant_id is None or rule.tenant_id == tenant_id]

    def create_alerts(self, transaction: Transaction, flags: List[TransactionFlag], tenant_id: str) -> List[BankingAlert]:
        """One alert per high or critical flag"""
        created = []
        for flag in flags:
            if flag.severity not in ALERT_SEVERITIES:
                continue
            if self.dedupe_open_alerts and self.alert_store.has_open_alert(transaction.id, flag.type):
                continue

            alert = self.alert_store.create_alert(
                BankingAlert(
                    tenant_id=tenant_id,
                    transaction_id=transaction.id,
                    account_id=transaction.account_id,
                    type=flag.type,
                    severity=flag.severity,
                    title=alert_title(flag.type),
                    description=flag.message,
                )
            )
            alerts_created_counter.labels(type=flag.type.value).inc()
            created.append(alert)
        return created
