import logging
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import StoreError
from ..logic.claim_rules import ClaimRuleEngine
from ..models import (
    Claim,
    ClaimRule,
    RuleAction,
    RuleCondition,
    RuleEvaluationResult,
    RuleStatus,
    coerce_enum,
    enum_value,
    format_datetime,
)
from ..monitoring.metrics import PerformanceMonitor
from ..store.base import CLAIM_RULES, Record, Unsubscribe
from .base import BaseService

logger = logging.getLogger(__name__)


def parse_rules(records: List[Record]) -> List[ClaimRule]:
    rules = []
    for record in records:
        try:
            rules.append(ClaimRule.from_dict(record))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Skipping malformed rule {record.get('id')}: {exc}")
    return rules


def _normalize_rule_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Round-trip conditions and actions through the models so bad shapes fail on write."""
    normalized = dict(data)
    if 'conditions' in normalized:
        normalized['conditions'] = [
            (c if isinstance(c, RuleCondition) else RuleCondition.from_dict(c)).to_dict()
            for c in normalized['conditions'] or []
        ]
    if 'actions' in normalized:
        normalized['actions'] = [
            (a if isinstance(a, RuleAction) else RuleAction.from_dict(a)).to_dict()
            for a in normalized['actions'] or []
        ]
    if 'status' in normalized:
        status = coerce_enum(RuleStatus, normalized['status'])
        if not isinstance(status, RuleStatus):
            raise ValueError(f"Unknown rule status: {normalized['status']!r}")
        normalized['status'] = status.value
    if 'priority' in normalized:
        normalized['priority'] = int(normalized['priority'])
    return normalized


class RulesService(BaseService):
    async def _load_rules(self) -> List[ClaimRule]:
        records = await self.store.list(CLAIM_RULES, order_by='priority')
        return parse_rules(records)

    async def get_rules(self) -> List[ClaimRule]:
        try:
            return await self._load_rules()
        except StoreError as exc:
            self._read_failed('get_rules', exc)
            return []

    async def get_rule(self, rule_id: str) -> Optional[ClaimRule]:
        try:
            record = await self.store.get(CLAIM_RULES, rule_id)
        except StoreError as exc:
            self._read_failed('get_rule', exc)
            return None
        if record is None:
            return None
        parsed = parse_rules([record])
        return parsed[0] if parsed else None

    async def create_rule(self, data: Union[ClaimRule, Dict[str, Any]], created_by: Optional[str] = None) -> ClaimRule:
        raw = data.to_dict() if isinstance(data, ClaimRule) else _normalize_rule_fields(data)
        rule = ClaimRule.from_dict(raw)
        if not rule.name:
            raise ValueError("Rule needs a name")

        now = self.now()
        rule.id = None
        rule.created_by = created_by or rule.created_by
        rule.created_at = now
        rule.updated_at = now

        record = rule.to_dict()
        record.pop('id')
        stored = await self.store.create(CLAIM_RULES, record)
        logger.info(f"Created rule '{rule.name}' ({stored['id']}) with priority {rule.priority}")
        return ClaimRule.from_dict(stored)

    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> ClaimRule:
        updates = _normalize_rule_fields(updates)
        for key in ('id', 'created_at', 'created_by', 'version'):
            updates.pop(key, None)
        updates['updated_at'] = format_datetime(self.now())

        record = await self.store.update(CLAIM_RULES, rule_id, updates)
        logger.info(f"Updated rule {rule_id}: {sorted(updates)}")
        return ClaimRule.from_dict(record)

    async def delete_rule(self, rule_id: str) -> None:
        await self.store.delete(CLAIM_RULES, rule_id)
        logger.info(f"Deleted rule {rule_id}")

    async def evaluate_claim(self, claim: Claim) -> RuleEvaluationResult:
        """Run the active rules against ``claim``; the first match by priority wins.

        A failed rule fetch is logged and treated as an empty rule set, so this
        never raises into the claim submission flow.
        """
        try:
            rules = await self._load_rules()
        except StoreError as exc:
            self._read_failed('evaluate_claim', exc)
            if self.metrics is not None:
                self.metrics.record_rule_failure()
            rules = []

        engine = ClaimRuleEngine(rules)
        with PerformanceMonitor(self.metrics, 'rule_evaluation'):
            result = engine.evaluate(claim)

        action_type = enum_value(result.action.type) if result.action else None
        if self.metrics is not None:
            self.metrics.record_rule_evaluation(result.matched, action_type)
        self.audit.log_rule_decision(
            claim.id,
            result.matched,
            result.rule.name if result.rule else None,
            action_type,
            result.explanation,
        )
        return result

    @staticmethod
    def test_rule(rule: ClaimRule, claim: Claim) -> RuleEvaluationResult:
        return ClaimRuleEngine.test_rule(rule, claim)

    async def subscribe_to_rules(self, callback: Callable[[List[ClaimRule]], Any]) -> Unsubscribe:
        return await self.store.subscribe(
            CLAIM_RULES,
            self._typed_callback(callback, parse_rules),
            order_by='priority',
        )
