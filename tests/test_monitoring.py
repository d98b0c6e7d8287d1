import json
import logging
import sys

import pytest
from prometheus_client import CollectorRegistry

from claims_engine.config.settings import ClaimsEngineConfig, Environment, MonitoringConfig
from claims_engine.monitoring.logging_config import (
    AuditLogger,
    EnvironmentFilter,
    StructuredFormatter,
    setup_logging,
)
from claims_engine.monitoring.metrics import MetricsCollector, PerformanceMonitor


class TestStructuredFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("claims_engine.test", logging.WARNING, __file__, 10, "hello %s", ("world",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_emits_json(self):
        payload = json.loads(StructuredFormatter().format(self._record()))
        assert payload["message"] == "hello world"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "claims_engine.test"
        assert "exception" not in payload

    def test_merges_extra_fields(self):
        record = self._record(extra_fields={"claim_id": "c1", "risk_score": 72.5})
        payload = json.loads(StructuredFormatter().format(record))
        assert payload["claim_id"] == "c1"
        assert payload["risk_score"] == 72.5

    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("t", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        payload = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in payload["exception"]

    def test_service_environment_and_timestamp(self):
        record = self._record()
        record.created = 1704067200.0
        payload = json.loads(StructuredFormatter().format(record))
        assert payload["service"] == "claims_engine"
        assert payload["environment"] is None
        assert payload["timestamp"] == "2024-01-01T00:00:00+00:00"

    def test_environment_filter_stamps_records(self):
        record = self._record()
        assert EnvironmentFilter("staging").filter(record)
        payload = json.loads(StructuredFormatter(service="claims_api").format(record))
        assert payload["environment"] == "staging"
        assert payload["service"] == "claims_api"


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    redis_level = logging.getLogger("redis").level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("redis").setLevel(redis_level)


class TestSetupLogging:
    def _config(self, **monitoring):
        return ClaimsEngineConfig(
            environment=Environment.STAGING,
            monitoring=MonitoringConfig(enable_prometheus=False, **monitoring),
        )

    def test_structured_output_to_stdout(self, root_logger):
        handlers = setup_logging(self._config(log_level="warning", log_format="structured", log_file=None))

        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, StructuredFormatter)
        assert root_logger.level == logging.WARNING
        assert logging.getLogger("redis").level == logging.WARNING

    def test_plain_output_also_goes_to_file(self, root_logger, tmp_path):
        log_file = tmp_path / "claims.log"
        handlers = setup_logging(self._config(log_level="INFO", log_format="standard", log_file=str(log_file)))

        assert isinstance(handlers[1], logging.FileHandler)
        assert not isinstance(handlers[0].formatter, StructuredFormatter)

        logging.getLogger("claims_engine.test").info("claim received")
        handlers[1].flush()
        assert "[staging] claim received" in log_file.read_text()


class TestAuditLogger:
    def test_rule_decision(self, caplog):
        caplog.set_level(logging.INFO, logger="claims_engine.audit")

        AuditLogger().log_rule_decision("c1", True, "Approve small", "auto_approve", "matched")

        record = caplog.records[-1]
        assert record.message == "Rule evaluation"
        assert record.extra_fields["event_type"] == "rule_decision"
        assert record.extra_fields["rule_name"] == "Approve small"

    def test_flagged_fraud_score_is_a_warning(self, caplog):
        caplog.set_level(logging.INFO, logger="claims_engine.audit")
        audit = AuditLogger()

        audit.log_fraud_score("c1", 12, "approve", {}, flagged=False)
        audit.log_fraud_score("c2", 85, "reject", {"duplicate_claim": 50}, flagged=True)

        assert [r.levelno for r in caplog.records] == [logging.INFO, logging.WARNING]
        assert caplog.records[-1].extra_fields["factors"] == {"duplicate_claim": 50}
        assert [r.extra_fields["flagged"] for r in caplog.records] == [False, True]

    def test_status_change(self, caplog):
        caplog.set_level(logging.INFO, logger="claims_engine.audit")
        audit = AuditLogger(logging.getLogger("claims_engine.audit"))
        audit.log_status_change("c1", "submitted", "rejected", reason="duplicate")

        fields = caplog.records[-1].extra_fields
        assert fields == {
            "event_type": "claim_status_change",
            "claim_id": "c1",
            "previous_status": "submitted",
            "new_status": "rejected",
            "reason": "duplicate",
        }


class TestMetricsCollector:
    def test_counters_and_export(self):
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        metrics.record_rule_evaluation(True, "auto_approve")
        metrics.record_rule_evaluation(False)
        metrics.increment_fraud_alert("high")
        metrics.record_fraud_score(72)

        assert registry.get_sample_value("claims_rule_evaluations_total", {"outcome": "matched"}) == 1
        assert registry.get_sample_value("claims_rule_evaluations_total", {"outcome": "unmatched"}) == 1
        assert registry.get_sample_value("claims_fraud_score_count") == 1
        assert b"claims_fraud_alerts_total" in metrics.export_metrics()
        assert metrics.get_content_type().startswith("text/plain")
        assert metrics.get_metrics()["match_rate"] == 0.5

    def test_performance_monitor_tolerates_missing_collector(self):
        with PerformanceMonitor(None, "noop"):
            pass

    def test_performance_monitor_records_failures_too(self):
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        with pytest.raises(ValueError):
            with PerformanceMonitor(metrics, "rule_evaluation"):
                raise ValueError("bad rule")

        assert registry.get_sample_value(
            "claims_decision_latency_seconds_count", {"operation": "rule_evaluation"}
        ) == 1
