from .decisioning import ClaimDecisioningPipeline, DecisionOutcome
from .logic.approval_chain import ApprovalChainStateMachine
from .logic.claim_rules import ClaimRuleEngine
from .logic.fraud_scoring import FraudScorer
from .services import ClaimsService, FraudAlertService, RulesService, WorkflowService
from .store import InMemoryDocumentStore, create_store

__version__ = "0.1.0"

__all__ = [
    "ApprovalChainStateMachine",
    "ClaimDecisioningPipeline",
    "ClaimRuleEngine",
    "ClaimsService",
    "DecisionOutcome",
    "FraudAlertService",
    "FraudScorer",
    "InMemoryDocumentStore",
    "RulesService",
    "WorkflowService",
    "create_store",
]
