from abc import ABC, abstractmethod
from typing import Generic, Iterable, List, TypeVar

RuleType = TypeVar('RuleType')
ResultType = TypeVar('ResultType')
PayloadType = TypeVar('PayloadType')


class RuleEngine(ABC, Generic[RuleType, PayloadType, ResultType]):
    """Holds rules in evaluation order: ascending priority, lowest first.

    The sort is stable, so rules sharing a priority keep insertion order.
    """

    def __init__(self):
        self.rules: List[RuleType] = []

    def add_rule(self, rule: RuleType) -> None:
        self.rules.append(rule)
        self._sort_rules()

    def load_rules(self, rules: Iterable[RuleType]) -> None:
        self.rules = list(rules)
        self._sort_rules()

    def _sort_rules(self) -> None:
        self.rules.sort(key=lambda r: getattr(r, 'priority', 0))

    @abstractmethod
    def evaluate(self, payload: PayloadType) -> ResultType:
        raise NotImplementedError
