import logging
from typing import Iterable, List, Optional

from ..models import Claim, ClaimRule, RuleEvaluationResult
from .conditions import evaluate_conditions
from .rule_engine import RuleEngine

logger = logging.getLogger(__name__)


class ClaimRuleEngine(RuleEngine[ClaimRule, Claim, RuleEvaluationResult]):
    def __init__(self, rules: Optional[Iterable[ClaimRule]] = None):
        super().__init__()
        if rules:
            self.load_rules(rules)

    @property
    def active_rules(self) -> List[ClaimRule]:
        return [rule for rule in self.rules if rule.is_active]

    def evaluate(self, payload: Claim) -> RuleEvaluationResult:
        for rule in self.active_rules:
            if not evaluate_conditions(payload, rule.conditions):
                continue

            # Only the first action of a matched rule is ever executed.
            action = rule.actions[0] if rule.actions else None
            logger.info(
                f"Claim {payload.claim_number or payload.id} matched rule "
                f"'{rule.name}' (priority: {rule.priority})"
            )
            return RuleEvaluationResult(
                matched=True,
                rule=rule,
                action=action,
                explanation=f"Matched rule: {rule.name}",
            )

        return RuleEvaluationResult(matched=False, explanation="No matching rules found")

    def evaluate_claim(self, claim: Claim) -> RuleEvaluationResult:
        return self.evaluate(claim)

    @staticmethod
    def test_rule(rule: ClaimRule, claim: Claim) -> RuleEvaluationResult:
        matched = evaluate_conditions(claim, rule.conditions)
        if not matched:
            return RuleEvaluationResult(
                matched=False,
                explanation=f'Rule "{rule.name}" does not match',
            )
        return RuleEvaluationResult(
            matched=True,
            rule=rule,
            action=rule.actions[0] if rule.actions else None,
            explanation=f'Rule "{rule.name}" would match this claim',
        )
