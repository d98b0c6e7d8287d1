from .claims import ClaimsService
from .fraud_alerts import FraudAlertService
from .rules import RulesService
from .workflows import WorkflowService

__all__ = [
    "ClaimsService",
    "FraudAlertService",
    "RulesService",
    "WorkflowService",
]
