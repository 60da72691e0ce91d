"""Prometheus metrics for sync throughput, provider health and anomaly findings"""

from prometheus_client import Counter, Histogram

from banking_monitor.domain.models import SyncResult, TransactionFlag

# Sync metrics
synced_transactions_counter = Counter(
    "banking_synced_transactions_total",
    "Transactions written during account syncs",
    ["outcome"],  # new | updated
)

account_sync_errors_counter = Counter(
    "banking_account_sync_errors_total",
    "Errors collected into account sync results",
)

account_sync_duration_histogram = Histogram(
    "banking_account_sync_duration_seconds",
    "Duration of a single account sync",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Provider API metrics
provider_latency_histogram = Histogram(
    "banking_provider_request_seconds",
    "Open banking provider response time",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

provider_failures_counter = Counter(
    "banking_provider_failures_total",
    "Failed open banking provider calls (per attempt)",
    ["reason"],  # timeout | network | http_<status>
)

# Anomaly metrics
flags_counter = Counter(
    "banking_flags_total",
    "Anomaly flags raised",
    ["type", "severity"],
)

alerts_created_counter = Counter(
    "banking_alerts_created_total",
    "Alerts created for high and critical flags",
    ["type"],
)

anomaly_score_histogram = Histogram(
    "banking_anomaly_score",
    "Anomaly scores of analyzed transactions",
    buckets=[0, 10, 25, 50, 75, 100],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_sync_result(result: SyncResult, duration_seconds: float) -> None:
    synced_transactions_counter.labels(outcome="new").inc(result.new_transactions)
    synced_transactions_counter.labels(outcome="updated").inc(result.updated_transactions)
    account_sync_errors_counter.inc(len(result.errors))
    account_sync_duration_histogram.observe(duration_seconds)


def record_analysis(flags: list[TransactionFlag], score: int) -> None:
    for flag in flags:
        flags_counter.labels(type=flag.type.value, severity=flag.severity.value).inc()
    anomaly_score_histogram.observe(score)
