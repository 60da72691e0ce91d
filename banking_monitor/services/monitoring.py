"""Monitoring pipeline - sync a connection, then analyze what changed"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from banking_monitor.domain.detectors import calculate_anomaly_score
from banking_monitor.domain.exceptions import TransactionNotFoundError
from banking_monitor.domain.models import (
    AnalysisResult,
    FlagType,
    Severity,
    SyncResult,
    Transaction,
    TransactionFlag,
)
from banking_monitor.domain.ports import ProviderGateway
from banking_monitor.infrastructure.database.repositories import SqlAlchemyBankingStore
from banking_monitor.services.anomaly import AnomalyEngine
from banking_monitor.services.sync import SyncService
from banking_monitor.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

MANUAL_FLAG_MESSAGE = "Manually flagged for review"


@dataclass
class PipelineReport:
    """Outcome of one pipeline run for a connection"""

    connection_id: str
    sync_results: List[SyncResult] = field(default_factory=list)
    analyzed: int = 0
    flagged: int = 0
    alerts_created: int = 0

    @property
    def degraded(self) -> bool:
        return any(result.has_errors for result in self.sync_results)


class MonitoringPipeline:
    """
    Runs sync and anomaly analysis for one connection as a background job.

    Every created or changed transaction is re-analyzed and its score and
    flags are overwritten, never appended. Stored transactions that were
    never scored (anomaly_score IS NULL) are picked up by the next run.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        store: SqlAlchemyBankingStore,
        sync_service: Optional[SyncService] = None,
    ):
        self.store = store
        self.sync_service = sync_service or SyncService(gateway, store)

    async def run(self, connection_id: str, tenant_id: str, deadline: Optional[float] = None) -> PipelineReport:
        sync_results = await self.sync_service.sync_connection(connection_id, deadline=deadline)
        report = PipelineReport(connection_id=connection_id, sync_results=sync_results)

        transaction_ids = self._pending_analysis(connection_id, sync_results)
        if not transaction_ids:
            return report

        engine = AnomalyEngine(self.store.get_rules(tenant_id), self.store, self.store)
        for transaction in self.store.get_transactions(transaction_ids):
            analysis = self.analyze(engine, transaction, tenant_id)
            report.analyzed += 1
            if analysis.flags:
                report.flagged += 1
            report.alerts_created += len(analysis.alerts)
        self.store.commit()

        logger.info(
            "Monitoring pipeline completed",
            extra={
                "connection_id": connection_id,
                "tenant_id": tenant_id,
                "analyzed": report.analyzed,
                "flagged": report.flagged,
                "alerts_created": report.alerts_created,
                "degraded": report.degraded,
            },
        )
        return report

    def _pending_analysis(self, connection_id: str, sync_results: List[SyncResult]) -> List[str]:
        changed = [tx_id for result in sync_results for tx_id in result.transaction_ids]
        account_ids = [account.id for account in self.store.get_accounts_by_connection(connection_id)]
        unscored = self.store.get_unanalyzed_transaction_ids(account_ids)
        # dict keeps first-seen order while dropping duplicates
        return list(dict.fromkeys(changed + unscored))

    def analyze(self, engine: AnomalyEngine, transaction: Transaction, tenant_id: str) -> AnalysisResult:
        analysis = engine.analyze_transaction(transaction, tenant_id)
        self.store.update_transaction_analysis(transaction.id, analysis.score, analysis.flags)
        return analysis


def flag_transaction(store: SqlAlchemyBankingStore, transaction_id: str, reason: Optional[str] = None) -> Transaction:
    """Append a manual flag and recompute the score from the full flag set"""
    transaction = store.get_transaction(transaction_id)
    if transaction is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

    flags = transaction.flags + [
        TransactionFlag(
            type=FlagType.MANUAL_FLAG,
            severity=Severity.MEDIUM,
            message=reason or MANUAL_FLAG_MESSAGE,
            rule_id="manual",
            detected_at=utcnow(),
        )
    ]
    store.update_transaction_analysis(transaction_id, calculate_anomaly_score(flags), flags)
    store.commit()
    return store.get_transaction(transaction_id)
