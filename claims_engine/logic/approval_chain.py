import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from ..errors import InvalidTransitionError, InvalidWorkflowError
from ..models import (
    Approval,
    ApprovalChain,
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalStep,
    ChainStatus,
    StepStatus,
    Workflow,
    WorkflowStepType,
    coerce_enum,
)

logger = logging.getLogger(__name__)

COUNTED_DECISIONS = (ApprovalDecision.APPROVE, ApprovalDecision.REJECT)


class ApprovalChainStateMachine:
    """Step and chain transitions for multi-step approvals.

    Steps move pending -> in_progress -> approved | rejected and the chain
    moves pending -> approved | rejected. While the chain is pending exactly
    one step is in progress. A rejected step rejects the chain.
    """

    @staticmethod
    def build_steps(workflow: Workflow, now: Optional[datetime] = None) -> List[ApprovalStep]:
        now = now or datetime.now(timezone.utc)
        approval_steps = [s for s in workflow.steps if s.type == WorkflowStepType.APPROVAL]

        steps = []
        for index, step in enumerate(approval_steps):
            timeout = step.config.timeout_hours
            steps.append(ApprovalStep(
                step_number=index + 1,
                step_id=step.id,
                step_name=step.name,
                approver_ids=list(step.config.approvers),
                approval_type=step.config.approval_type or ApprovalPolicy.ANY,
                status=StepStatus.IN_PROGRESS if index == 0 else StepStatus.PENDING,
                # Informational only: nothing escalates an overdue step.
                due_date=now + timedelta(hours=timeout) if timeout else None,
            ))
        return steps

    @classmethod
    def build_chain(cls, claim_id: str, workflow: Workflow, now: Optional[datetime] = None) -> ApprovalChain:
        now = now or datetime.now(timezone.utc)
        steps = cls.build_steps(workflow, now)
        if not steps:
            raise InvalidWorkflowError(f"Workflow {workflow.id} has no approval steps")

        return ApprovalChain(
            claim_id=claim_id,
            workflow_id=workflow.id,
            steps=steps,
            current_step=0,
            status=ChainStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def is_step_complete(step: ApprovalStep) -> bool:
        # Approvals and rejections both count towards the threshold;
        # request_info never does.
        decisions = [a for a in step.approvals if a.decision in COUNTED_DECISIONS]
        if not decisions:
            return False

        policy = coerce_enum(ApprovalPolicy, step.approval_type)
        if policy == ApprovalPolicy.ANY:
            return True
        if policy == ApprovalPolicy.ALL:
            return len(decisions) == len(step.approver_ids)
        if policy == ApprovalPolicy.MAJORITY:
            return len(decisions) >= math.ceil(len(step.approver_ids) / 2)

        logger.warning(f"Unknown approval policy {step.approval_type!r}; step {step.step_id} never completes")
        return False

    @classmethod
    def submit(
        cls,
        chain: ApprovalChain,
        approver_id: str,
        approver_name: str,
        decision: Union[ApprovalDecision, str],
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalChain:
        """Record one decision on the current step and advance the chain in place."""
        decision = ApprovalDecision(decision)
        now = now or datetime.now(timezone.utc)

        if chain.status != ChainStatus.PENDING:
            raise InvalidTransitionError('approval chain', chain.status.value, decision.value)

        step = chain.active_step
        if step is None:
            raise InvalidTransitionError('approval chain', f"step {chain.current_step}", decision.value)

        if step.approver_ids and approver_id not in step.approver_ids:
            logger.warning(
                f"Approver {approver_id} is not listed on step '{step.step_name}' "
                f"of chain {chain.id}"
            )

        step.approvals.append(Approval(
            id=f"appr_{uuid.uuid4().hex[:12]}",
            approver_id=approver_id,
            approver_name=approver_name,
            decision=decision,
            comment=comment,
            timestamp=now,
        ))

        if cls.is_step_complete(step):
            # The step outcome follows the decision that completed it.
            approved = decision == ApprovalDecision.APPROVE
            step.status = StepStatus.APPROVED if approved else StepStatus.REJECTED
            step.completed_at = now

            if approved and chain.current_step < len(chain.steps) - 1:
                chain.current_step += 1
                chain.steps[chain.current_step].status = StepStatus.IN_PROGRESS
            else:
                chain.status = ChainStatus.APPROVED if approved else ChainStatus.REJECTED

            logger.info(
                f"Step {step.step_number} ('{step.step_name}') of chain {chain.id} "
                f"completed as {step.status.value}; chain is {chain.status.value}"
            )

        chain.updated_at = now
        return chain
