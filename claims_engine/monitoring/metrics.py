import time
import logging
from typing import Dict, Any, Optional
from prometheus_client import (
    Counter,
    Histogram,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST
)

logger = logging.getLogger(__name__)


class MetricsCollector:
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(__name__)

        # Rule engine metrics
        self.rule_evaluation_counter = Counter(
            'claims_rule_evaluations_total',
            'Claims evaluated against the rule set',
            ['outcome'],  # Labels: matched, unmatched, error
            registry=self.registry
        )

        self.rule_action_counter = Counter(
            'claims_rule_actions_total',
            'Actions returned by matching rules',
            ['action'],
            registry=self.registry
        )

        # Fraud metrics
        self.fraud_alert_counter = Counter(
            'claims_fraud_alerts_total',
            'Fraud alerts persisted',
            ['severity'],
            registry=self.registry
        )

        self.fraud_score_distribution = Histogram(
            'claims_fraud_score',
            'Distribution of claim anomaly scores',
            buckets=[0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
            registry=self.registry
        )

        # Approval metrics
        self.approval_decision_counter = Counter(
            'claims_approval_decisions_total',
            'Approver decisions submitted',
            ['decision'],  # Labels: approve, reject, request_info
            registry=self.registry
        )

        self.approval_chain_counter = Counter(
            'claims_approval_chains_total',
            'Approval chains by lifecycle event',
            ['status'],  # Labels: started, approved, rejected
            registry=self.registry
        )

        # Store metrics
        self.store_error_counter = Counter(
            'claims_store_errors_total',
            'Document store failures',
            ['operation'],
            registry=self.registry
        )

        # Performance metrics
        self.decision_latency = Histogram(
            'claims_decision_latency_seconds',
            'Latency of decisioning operations',
            ['operation'],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
            registry=self.registry
        )

        # Internal state
        self._start_time = time.time()
        self._evaluations = 0
        self._matches = 0
        self._alerts = 0

    # Rule tracking
    def record_rule_evaluation(self, matched: bool, action: Optional[str] = None):
        self.rule_evaluation_counter.labels(outcome="matched" if matched else "unmatched").inc()
        self._evaluations += 1
        if matched:
            self._matches += 1
            if action:
                self.rule_action_counter.labels(action=action).inc()

    def record_rule_failure(self):
        self.rule_evaluation_counter.labels(outcome="error").inc()

    # Fraud tracking
    def record_fraud_score(self, score: float):
        self.fraud_score_distribution.observe(score)

    def increment_fraud_alert(self, severity: str = "medium"):
        self.fraud_alert_counter.labels(severity=severity).inc()
        self._alerts += 1

    # Approval tracking
    def record_approval_decision(self, decision: str):
        self.approval_decision_counter.labels(decision=decision).inc()

    def record_chain_status(self, status: str):
        self.approval_chain_counter.labels(status=status).inc()

    # Store tracking
    def record_store_error(self, operation: str):
        self.store_error_counter.labels(operation=operation).inc()

    def record_latency(self, operation: str, latency_seconds: float):
        self.decision_latency.labels(operation=operation).observe(latency_seconds)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "rule_evaluations": self._evaluations,
            "rule_matches": self._matches,
            "fraud_alerts": self._alerts,
            "uptime_seconds": time.time() - self._start_time,
            "match_rate": (
                self._matches / self._evaluations
                if self._evaluations > 0 else 0.0
            )
        }

    def export_metrics(self) -> bytes:
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


class PerformanceMonitor:
    def __init__(self, collector: Optional[MetricsCollector], operation: str):
        self.collector = collector
        self.operation = operation
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time and self.collector is not None:
            latency = time.time() - self.start_time
            self.collector.record_latency(self.operation, latency)


_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
