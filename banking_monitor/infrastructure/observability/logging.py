"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from banking_monitor.config import settings
from banking_monitor.domain.models import SyncResult
from banking_monitor.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_sync_result(connection_id: str, result: SyncResult, duration_ms: float) -> None:
    """Log per-account sync outcome; degraded syncs are warnings"""
    extra = {
        "connection_id": connection_id,
        "account_id": result.account_id,
        "step": "account_sync_complete",
        "new_transactions": result.new_transactions,
        "updated_transactions": result.updated_transactions,
        "error_count": len(result.errors),
        "duration_ms": duration_ms,
    }
    if result.has_errors:
        logging.warning("Account sync degraded", extra={**extra, "errors": result.errors})
    else:
        logging.info("Account sync completed", extra=extra)


def log_analysis(transaction_id: str, tenant_id: str, flag_types: list, score: int) -> None:
    """Log analysis outcome for flagged transactions"""
    logging.info(
        "Transaction analyzed",
        extra={
            "transaction_id": transaction_id,
            "tenant_id": tenant_id,
            "step": "analysis_complete",
            "flags": flag_types,
            "anomaly_score": score,
        },
    )
