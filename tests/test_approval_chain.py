from datetime import datetime, timedelta, timezone

import pytest

from claims_engine.errors import InvalidTransitionError, InvalidWorkflowError
from claims_engine.logic.approval_chain import ApprovalChainStateMachine
from claims_engine.models import (
    Approval,
    ApprovalDecision,
    ApprovalStep,
    ChainStatus,
    StepStatus,
    Workflow,
)

from conftest import approval_workflow

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


def step_with(approvers, policy, *decisions):
    return ApprovalStep(
        step_number=1,
        step_id="s1",
        step_name="Review",
        approver_ids=list(approvers),
        approval_type=policy,
        approvals=[
            Approval(id=f"a{i}", approver_id=f"u{i}", approver_name=f"User {i}", decision=d, timestamp=NOW)
            for i, d in enumerate(decisions)
        ],
    )


def build(*steps):
    workflow = Workflow.from_dict(dict(approval_workflow(*steps), id="wf-1"))
    return ApprovalChainStateMachine.build_chain("claim-1", workflow, now=NOW)


class TestStepCompletion:
    def test_any_completes_with_one_decision(self):
        step = step_with(["u0", "u1"], "any", ApprovalDecision.APPROVE)
        assert ApprovalChainStateMachine.is_step_complete(step)

    def test_all_needs_every_approver(self):
        one = step_with(["u0", "u1"], "all", ApprovalDecision.APPROVE)
        two = step_with(["u0", "u1"], "all", ApprovalDecision.APPROVE, ApprovalDecision.APPROVE)
        assert not ApprovalChainStateMachine.is_step_complete(one)
        assert ApprovalChainStateMachine.is_step_complete(two)

    def test_majority_rounds_up(self):
        one = step_with(["u0", "u1", "u2"], "majority", ApprovalDecision.APPROVE)
        two = step_with(["u0", "u1", "u2"], "majority", ApprovalDecision.APPROVE, ApprovalDecision.REJECT)
        assert not ApprovalChainStateMachine.is_step_complete(one)
        assert ApprovalChainStateMachine.is_step_complete(two)

    def test_request_info_never_counts(self):
        step = step_with(["u0"], "any", ApprovalDecision.REQUEST_INFO, ApprovalDecision.REQUEST_INFO)
        assert not ApprovalChainStateMachine.is_step_complete(step)

    def test_no_decisions_is_incomplete(self):
        assert not ApprovalChainStateMachine.is_step_complete(step_with(["u0"], "any"))

    def test_unknown_policy_never_completes(self):
        step = step_with(["u0"], "unanimous-ish", ApprovalDecision.APPROVE)
        assert not ApprovalChainStateMachine.is_step_complete(step)


class TestChainConstruction:
    def test_only_approval_steps_are_kept(self):
        payload = approval_workflow((["u1"], "any"), (["u2"], "all"))
        payload["steps"].insert(1, {"id": "notify", "type": "notification", "name": "Email customer"})
        workflow = Workflow.from_dict(dict(payload, id="wf-1"))

        chain = ApprovalChainStateMachine.build_chain("claim-1", workflow, now=NOW)

        assert [s.step_id for s in chain.steps] == ["step-1", "step-2"]
        assert [s.step_number for s in chain.steps] == [1, 2]

    def test_first_step_starts_in_progress(self):
        chain = build((["u1"], "any"), (["u2"], "any"))
        assert chain.status == ChainStatus.PENDING
        assert chain.current_step == 0
        assert chain.steps[0].status == StepStatus.IN_PROGRESS
        assert chain.steps[1].status == StepStatus.PENDING
        assert chain.steps[0].due_date == NOW + timedelta(hours=24)

    def test_workflow_without_approval_steps_is_rejected(self):
        workflow = Workflow(name="Notify only", id="wf-2")
        with pytest.raises(InvalidWorkflowError):
            ApprovalChainStateMachine.build_chain("claim-1", workflow, now=NOW)


class TestChainProgression:
    def test_approval_advances_to_next_step(self):
        chain = build((["u1"], "any"), (["u2"], "any"))

        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "approve", now=NOW)

        assert chain.current_step == 1
        assert chain.steps[0].status == StepStatus.APPROVED
        assert chain.steps[0].completed_at == NOW
        assert chain.steps[1].status == StepStatus.IN_PROGRESS
        assert chain.status == ChainStatus.PENDING

    def test_last_approval_approves_chain(self):
        chain = build((["u1"], "any"), (["u2"], "any"))
        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "approve", now=NOW)
        ApprovalChainStateMachine.submit(chain, "u2", "User 2", "approve", now=NOW)

        assert chain.status == ChainStatus.APPROVED
        assert chain.current_step == 1
        assert all(s.status == StepStatus.APPROVED for s in chain.steps)

    def test_rejection_short_circuits(self):
        chain = build((["u1"], "any"), (["u2"], "any"), (["u3"], "any"))

        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "reject", comment="receipt missing", now=NOW)

        assert chain.status == ChainStatus.REJECTED
        assert chain.steps[0].status == StepStatus.REJECTED
        assert [s.status for s in chain.steps[1:]] == [StepStatus.PENDING, StepStatus.PENDING]
        assert chain.steps[0].approvals[0].comment == "receipt missing"

    def test_incomplete_step_keeps_waiting(self):
        chain = build((["u1", "u2"], "all"))
        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "approve", now=NOW)

        assert chain.status == ChainStatus.PENDING
        assert chain.steps[0].status == StepStatus.IN_PROGRESS
        assert len(chain.steps[0].approvals) == 1

    def test_completing_decision_sets_step_outcome(self):
        chain = build((["u1", "u2"], "all"))
        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "approve", now=NOW)
        ApprovalChainStateMachine.submit(chain, "u2", "User 2", "reject", now=NOW)

        assert chain.steps[0].status == StepStatus.REJECTED
        assert chain.status == ChainStatus.REJECTED

    def test_request_info_is_recorded_without_completing(self):
        chain = build((["u1"], "any"))
        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "request_info", now=NOW)

        assert chain.status == ChainStatus.PENDING
        assert chain.steps[0].approvals[0].decision == ApprovalDecision.REQUEST_INFO

    def test_finished_chain_refuses_decisions(self):
        chain = build((["u1"], "any"))
        ApprovalChainStateMachine.submit(chain, "u1", "User 1", "approve", now=NOW)

        with pytest.raises(InvalidTransitionError):
            ApprovalChainStateMachine.submit(chain, "u1", "User 1", "reject", now=NOW)

    def test_invalid_decision_value(self):
        chain = build((["u1"], "any"))
        with pytest.raises(ValueError):
            ApprovalChainStateMachine.submit(chain, "u1", "User 1", "maybe", now=NOW)

    def test_unlisted_approver_is_accepted(self):
        chain = build((["u1"], "any"))
        ApprovalChainStateMachine.submit(chain, "intruder", "Someone", "approve", now=NOW)
        assert chain.status == ChainStatus.APPROVED
