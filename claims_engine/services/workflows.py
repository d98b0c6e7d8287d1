import logging
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import ApprovalChainNotFoundError, StoreError, WorkflowNotFoundError
from ..logic.approval_chain import ApprovalChainStateMachine
from ..models import (
    ApprovalChain,
    ApprovalDecision,
    ChainStatus,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
    coerce_enum,
    format_datetime,
)
from ..store.base import APPROVAL_CHAINS, WORKFLOWS, Record, Unsubscribe
from .base import BaseService

logger = logging.getLogger(__name__)


def _normalize_workflow_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(data)
    if 'steps' in normalized:
        normalized['steps'] = [
            (s if isinstance(s, WorkflowStep) else WorkflowStep.from_dict(s)).to_dict()
            for s in normalized['steps'] or []
        ]
    if 'status' in normalized:
        status = coerce_enum(WorkflowStatus, normalized['status'])
        if not isinstance(status, WorkflowStatus):
            raise ValueError(f"Unknown workflow status: {normalized['status']!r}")
        normalized['status'] = status.value
    return normalized


def _latest_chain(records: List[Record]) -> Optional[ApprovalChain]:
    return ApprovalChain.from_dict(records[0]) if records else None


class WorkflowService(BaseService):
    """Workflow templates and the approval chains started from them."""

    async def get_workflows(self) -> List[Workflow]:
        try:
            records = await self.store.list(WORKFLOWS, order_by='created_at')
        except StoreError as exc:
            self._read_failed('get_workflows', exc)
            return []
        return [Workflow.from_dict(r) for r in records]

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        try:
            record = await self.store.get(WORKFLOWS, workflow_id)
        except StoreError as exc:
            self._read_failed('get_workflow', exc)
            return None
        return Workflow.from_dict(record) if record else None

    async def get_default_workflow(self) -> Optional[Workflow]:
        """The configured default workflow, else the active workflow flagged ``is_default``."""
        configured = self.config.decisioning.default_workflow_id
        if configured:
            return await self.get_workflow(configured)

        for workflow in await self.get_workflows():
            if workflow.is_default and workflow.status == WorkflowStatus.ACTIVE:
                return workflow
        return None

    async def create_workflow(self, data: Union[Workflow, Dict[str, Any]], created_by: Optional[str] = None) -> Workflow:
        raw = data.to_dict() if isinstance(data, Workflow) else _normalize_workflow_fields(data)
        workflow = Workflow.from_dict(raw)
        if not workflow.name:
            raise ValueError("Workflow needs a name")

        now = self.now()
        workflow.id = None
        workflow.created_by = created_by or workflow.created_by
        workflow.created_at = now
        workflow.updated_at = now

        record = workflow.to_dict()
        record.pop('id')
        stored = await self.store.create(WORKFLOWS, record)
        logger.info(f"Created workflow '{workflow.name}' ({stored['id']}) with {len(workflow.steps)} steps")
        return Workflow.from_dict(stored)

    async def update_workflow(self, workflow_id: str, updates: Dict[str, Any]) -> Workflow:
        updates = _normalize_workflow_fields(updates)
        for key in ('id', 'created_at', 'created_by', 'version'):
            updates.pop(key, None)
        updates['updated_at'] = format_datetime(self.now())

        record = await self.store.update(WORKFLOWS, workflow_id, updates)
        return Workflow.from_dict(record)

    async def delete_workflow(self, workflow_id: str) -> None:
        await self.store.delete(WORKFLOWS, workflow_id)
        logger.info(f"Deleted workflow {workflow_id}")

    async def start_workflow(self, claim_id: str, workflow_id: str) -> ApprovalChain:
        record = await self.store.get(WORKFLOWS, workflow_id)
        if record is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")

        workflow = Workflow.from_dict(record)
        chain = ApprovalChainStateMachine.build_chain(claim_id, workflow, now=self.now())

        chain_record = chain.to_dict()
        chain_record.pop('id')
        stored = await self.store.create(APPROVAL_CHAINS, chain_record)
        chain = ApprovalChain.from_dict(stored)

        logger.info(
            f"Started approval chain {chain.id} for claim {claim_id} "
            f"from workflow '{workflow.name}' ({len(chain.steps)} steps)"
        )
        if self.metrics is not None:
            self.metrics.record_chain_status('started')
        return chain

    async def submit_approval(
        self,
        chain_id: str,
        approver_id: str,
        approver_name: str,
        decision: Union[ApprovalDecision, str],
        comment: Optional[str] = None,
    ) -> ApprovalChain:
        """Record one approver decision and persist the advanced chain.

        The write is a compare-and-swap on the chain version; a concurrent
        submission surfaces as ``ConcurrentModificationError`` and the caller
        retries with a fresh read.
        """
        record = await self.store.get(APPROVAL_CHAINS, chain_id)
        if record is None:
            raise ApprovalChainNotFoundError(f"Approval chain {chain_id} not found")

        chain = ApprovalChain.from_dict(record)
        read_version = chain.version
        ApprovalChainStateMachine.submit(
            chain, approver_id, approver_name, decision, comment, now=self.now()
        )

        updated = chain.to_dict()
        stored = await self.store.update(
            APPROVAL_CHAINS,
            chain_id,
            {
                'steps': updated['steps'],
                'current_step': updated['current_step'],
                'status': updated['status'],
                'updated_at': updated['updated_at'],
            },
            expected_version=read_version,
        )
        chain = ApprovalChain.from_dict(stored)

        decision_value = ApprovalDecision(decision).value
        if self.metrics is not None:
            self.metrics.record_approval_decision(decision_value)
            if chain.status != ChainStatus.PENDING:
                self.metrics.record_chain_status(chain.status.value)
        self.audit.log_approval(
            chain.id, chain.claim_id, approver_id, decision_value, chain.status.value, chain.current_step
        )
        return chain

    async def get_approval_chain(self, claim_id: str) -> Optional[ApprovalChain]:
        """Most recently started chain for a claim."""
        try:
            records = await self.store.list(
                APPROVAL_CHAINS, {'claim_id': claim_id}, order_by='created_at', descending=True
            )
        except StoreError as exc:
            self._read_failed('get_approval_chain', exc)
            return None
        return _latest_chain(records)

    async def get_approval_chain_by_id(self, chain_id: str) -> Optional[ApprovalChain]:
        try:
            record = await self.store.get(APPROVAL_CHAINS, chain_id)
        except StoreError as exc:
            self._read_failed('get_approval_chain_by_id', exc)
            return None
        return ApprovalChain.from_dict(record) if record else None

    async def subscribe_to_approval_chain(
        self,
        claim_id: str,
        callback: Callable[[Optional[ApprovalChain]], Any],
    ) -> Unsubscribe:
        return await self.store.subscribe(
            APPROVAL_CHAINS,
            self._typed_callback(callback, _latest_chain),
            {'claim_id': claim_id},
            order_by='created_at',
            descending=True,
        )
