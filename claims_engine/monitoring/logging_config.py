import logging
import json
import sys
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from ..config.settings import ClaimsEngineConfig, get_config

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(environment)s] %(message)s'

# Third-party loggers held at WARNING whatever the engine level is.
QUIET_LOGGERS = ("redis", "asyncio")


class EnvironmentFilter(logging.Filter):
    """Stamps every record with the deployment environment."""

    def __init__(self, environment: str):
        super().__init__()
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self.environment
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; audit events carry their fields at the top level."""

    def __init__(self, service: str = "claims_engine"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": self.service,
            "environment": getattr(record, "environment", None),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging(config: Optional[ClaimsEngineConfig] = None) -> List[logging.Handler]:
    """Install root handlers from the monitoring section of the engine config."""
    config = config or get_config()
    monitoring = config.monitoring
    numeric_level = getattr(logging, monitoring.log_level.upper(), logging.INFO)

    if monitoring.log_format == "structured":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(PLAIN_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if monitoring.log_file:
        handlers.append(logging.FileHandler(monitoring.log_file))

    environment_filter = EnvironmentFilter(config.environment.value)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(environment_filter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handlers


class AuditLogger:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("claims_engine.audit")

    def _emit(self, message: str, level: int = logging.INFO, **fields: Any):
        self.logger.log(level, message, extra={"extra_fields": fields})

    def log_rule_decision(
        self,
        claim_id: Optional[str],
        matched: bool,
        rule_name: Optional[str],
        action_type: Optional[str],
        explanation: str
    ):
        self._emit(
            "Rule evaluation",
            event_type="rule_decision",
            claim_id=claim_id,
            matched=matched,
            rule_name=rule_name,
            action_type=action_type,
            explanation=explanation
        )

    def log_fraud_score(
        self,
        claim_id: Optional[str],
        risk_score: float,
        recommendation: str,
        factors: Dict[str, float],
        flagged: bool
    ):
        self._emit(
            "Fraud score computed",
            level=logging.WARNING if flagged else logging.INFO,
            event_type="fraud_score",
            claim_id=claim_id,
            risk_score=risk_score,
            recommendation=recommendation,
            factors=factors,
            flagged=flagged
        )

    def log_approval(
        self,
        chain_id: Optional[str],
        claim_id: str,
        approver_id: str,
        decision: str,
        chain_status: str,
        current_step: int
    ):
        self._emit(
            "Approval decision recorded",
            event_type="approval_decision",
            chain_id=chain_id,
            claim_id=claim_id,
            approver_id=approver_id,
            decision=decision,
            chain_status=chain_status,
            current_step=current_step
        )

    def log_status_change(
        self,
        claim_id: str,
        previous_status: str,
        new_status: str,
        reason: Optional[str] = None
    ):
        self._emit(
            "Claim status changed",
            event_type="claim_status_change",
            claim_id=claim_id,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason
        )
