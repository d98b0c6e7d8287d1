import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .config.settings import ClaimsEngineConfig, get_config
from .errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    InvalidWorkflowError,
    WorkflowNotFoundError,
)
from .models import (
    AnomalyScore,
    ApprovalChain,
    ApprovalDecision,
    ChainStatus,
    Claim,
    ClaimStatus,
    FraudAlert,
    Recommendation,
    RuleActionType,
    RuleEvaluationResult,
    coerce_enum,
    enum_value,
)
from .monitoring.logging_config import AuditLogger
from .monitoring.metrics import MetricsCollector, PerformanceMonitor, get_metrics_collector
from .services.base import Clock
from .services.claims import ClaimsService
from .services.fraud_alerts import FraudAlertService
from .services.rules import RulesService
from .services.workflows import WorkflowService
from .store import create_store
from .store.base import DocumentStore

logger = logging.getLogger(__name__)

MAX_DECISION_ATTEMPTS = 3


@dataclass
class DecisionOutcome:
    claim: Claim
    rule_result: RuleEvaluationResult
    anomaly_score: Optional[AnomalyScore] = None
    fraud_alert: Optional[FraudAlert] = None
    approval_chain: Optional[ApprovalChain] = None

    @property
    def status(self) -> Union[ClaimStatus, str]:
        return self.claim.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim": self.claim.to_dict(),
            "status": enum_value(self.status),
            "rule_result": self.rule_result.to_dict(),
            "anomaly_score": self.anomaly_score.to_dict() if self.anomaly_score else None,
            "fraud_alert": self.fraud_alert.to_dict() if self.fraud_alert else None,
            "approval_chain": self.approval_chain.to_dict() if self.approval_chain else None,
        }


class ClaimDecisioningPipeline:
    """Routes a submitted claim through rules, fraud scoring and approvals.

    A matching rule decides the claim. Without a match the claim is scored,
    an alert is raised at the configured threshold, and claims the scorer
    does not recommend approving go into the default approval workflow.
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        config: Optional[ClaimsEngineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or get_config()
        if metrics is None and self.config.monitoring.enable_prometheus:
            metrics = get_metrics_collector()
        self.metrics = metrics
        self.store = store or create_store(self.config)

        shared = dict(config=self.config, metrics=metrics, audit=audit, clock=clock)
        self.claims = ClaimsService(self.store, **shared)
        self.rules = RulesService(self.store, **shared)
        self.fraud = FraudAlertService(self.store, **shared)
        self.workflows = WorkflowService(self.store, **shared)

        logger.info(
            f"Initialized claim decisioning pipeline "
            f"(fraud scoring: {'on' if self.config.decisioning.enable_fraud_scoring else 'off'})"
        )

    async def process_claim(self, claim: Union[Claim, Dict[str, Any]]) -> DecisionOutcome:
        claim = await self._submitted(claim)

        with PerformanceMonitor(self.metrics, 'process_claim'):
            rule_result = await self.rules.evaluate_claim(claim)
            outcome = DecisionOutcome(claim=claim, rule_result=rule_result)

            if rule_result.matched and rule_result.action is not None:
                await self._apply_action(outcome)
            elif self.config.decisioning.enable_fraud_scoring:
                await self._score(outcome)

        logger.info(
            f"Claim {outcome.claim.claim_number} decisioned as {enum_value(outcome.status)}"
        )
        return outcome

    async def _submitted(self, claim: Union[Claim, Dict[str, Any]]) -> Claim:
        if isinstance(claim, dict):
            claim = Claim.from_dict(claim)

        if claim.id is None:
            data = claim.to_dict()
            data['status'] = ClaimStatus.SUBMITTED.value
            return await self.claims.create_claim(data)
        if claim.status == ClaimStatus.DRAFT:
            return await self.claims.update_claim_status(claim.id, ClaimStatus.SUBMITTED)
        return claim

    async def _move(self, claim: Claim, status: ClaimStatus, reason: Optional[str] = None) -> Claim:
        if claim.status == status:
            return claim
        return await self.claims.update_claim_status(claim.id, status, reason)

    async def _apply_action(self, outcome: DecisionOutcome) -> None:
        action = outcome.rule_result.action
        action_type = coerce_enum(RuleActionType, action.type)
        params = action.parameters or {}

        if action_type == RuleActionType.AUTO_APPROVE:
            outcome.claim = await self._move(outcome.claim, ClaimStatus.APPROVED)

        elif action_type == RuleActionType.AUTO_REJECT:
            reason = params.get('reason') or outcome.rule_result.explanation
            outcome.claim = await self._move(outcome.claim, ClaimStatus.REJECTED, reason)

        elif action_type == RuleActionType.ASSIGN_TO:
            assignee = params.get('assignee_id')
            if assignee:
                outcome.claim = await self.claims.assign_claim(outcome.claim.id, assignee)
            else:
                logger.warning(f"Rule '{outcome.rule_result.rule.name}' assigns claims without an assignee_id")
            outcome.claim = await self._move(outcome.claim, ClaimStatus.IN_REVIEW)

        elif action_type == RuleActionType.REQUIRE_APPROVAL:
            workflow_id = params.get('workflow_id') or await self._default_workflow_id()
            if workflow_id:
                try:
                    await self._route_to_workflow(outcome, workflow_id)
                    return
                except (WorkflowNotFoundError, InvalidWorkflowError) as exc:
                    logger.warning(f"Rule '{outcome.rule_result.rule.name}' cannot start workflow {workflow_id}: {exc}")
            else:
                logger.warning(f"No workflow available for claim {outcome.claim.claim_number}")
            logger.warning(f"Leaving claim {outcome.claim.claim_number} for manual review")
            outcome.claim = await self._move(outcome.claim, ClaimStatus.IN_REVIEW)

        else:
            logger.warning(f"Unknown rule action {enum_value(action.type)!r}; claim left unchanged")

    async def _score(self, outcome: DecisionOutcome) -> None:
        score, alert = await self.fraud.score_and_alert(outcome.claim)
        outcome.anomaly_score = score
        outcome.fraud_alert = alert

        if score.recommendation == Recommendation.APPROVE:
            return
        workflow_id = await self._default_workflow_id()
        if workflow_id:
            await self._route_to_workflow(outcome, workflow_id)
        else:
            logger.info(
                f"Claim {outcome.claim.claim_number} recommended for {score.recommendation.value} "
                f"but no default workflow is configured"
            )

    async def _default_workflow_id(self) -> Optional[str]:
        workflow = await self.workflows.get_default_workflow()
        return workflow.id if workflow else None

    async def _route_to_workflow(self, outcome: DecisionOutcome, workflow_id: str) -> None:
        chain = await self.workflows.start_workflow(outcome.claim.id, workflow_id)
        await self.claims.update_claim(outcome.claim.id, {'workflow_id': workflow_id})
        outcome.approval_chain = chain
        outcome.claim = await self.claims.update_claim_status(outcome.claim.id, ClaimStatus.PENDING_APPROVAL)

    async def record_decision(
        self,
        chain_id: str,
        approver_id: str,
        approver_name: str,
        decision: Union[ApprovalDecision, str],
        comment: Optional[str] = None,
    ) -> ApprovalChain:
        """Submit an approver decision and settle the claim once its chain finishes."""
        attempts = 0
        while True:
            attempts += 1
            try:
                chain = await self.workflows.submit_approval(
                    chain_id, approver_id, approver_name, decision, comment
                )
                break
            except ConcurrentModificationError:
                if attempts >= MAX_DECISION_ATTEMPTS:
                    raise
                logger.info(f"Approval chain {chain_id} changed underneath us, retrying decision")

        if chain.status == ChainStatus.PENDING:
            return chain

        target = ClaimStatus.APPROVED if chain.status == ChainStatus.APPROVED else ClaimStatus.REJECTED
        try:
            await self.claims.update_claim_status(
                chain.claim_id, target, comment if target == ClaimStatus.REJECTED else None
            )
        except InvalidTransitionError as exc:
            logger.warning(f"Chain {chain.id} finished {chain.status.value} but claim {chain.claim_id} was not updated: {exc}")
        return chain

    async def close(self) -> None:
        await self.store.close()
