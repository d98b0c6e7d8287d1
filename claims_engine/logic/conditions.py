import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Union

from ..models import (
    Claim,
    ConditionField,
    ConditionOperator,
    LogicOperator,
    RuleCondition,
    coerce_enum,
    enum_value,
)

logger = logging.getLogger(__name__)

BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 17

# Fixed stand-ins until customer profiles and claim history feed the evaluator.
DEFAULT_CUSTOMER_TIER = "standard"
DEFAULT_CLAIM_COUNT = 0


def local_hour(moment: datetime) -> int:
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.hour


def submitted_in_business_hours(claim: Claim) -> bool:
    if claim.submitted_at is None:
        return False
    hour = local_hour(claim.submitted_at)
    return BUSINESS_HOURS_START <= hour <= BUSINESS_HOURS_END


FIELD_ACCESSORS: Dict[ConditionField, Callable[[Claim], Any]] = {
    ConditionField.AMOUNT: lambda claim: claim.amount,
    ConditionField.TYPE: lambda claim: enum_value(claim.type),
    ConditionField.CATEGORY: lambda claim: claim.category,
    ConditionField.CUSTOMER_TIER: lambda claim: DEFAULT_CUSTOMER_TIER,
    ConditionField.CLAIM_COUNT: lambda claim: DEFAULT_CLAIM_COUNT,
    ConditionField.SUBMISSION_TIME: submitted_in_business_hours,
}


def get_field_value(claim: Claim, field: Union[ConditionField, str]) -> Any:
    field = coerce_enum(ConditionField, field)
    accessor = FIELD_ACCESSORS.get(field) if isinstance(field, ConditionField) else None
    if accessor is None:
        logger.debug(f"No accessor for condition field {field!r}")
        return None
    return accessor(claim)


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if value is None:
        return math.nan
    try:
        return float(enum_value(value))
    except (TypeError, ValueError):
        return math.nan


def _to_text(value: Any) -> str:
    value = enum_value(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def values_equal(left: Any, right: Any) -> bool:
    left, right = enum_value(left), enum_value(right)
    # True == 1 in Python; a boolean only ever equals another boolean here.
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _in_range(field_value: Any, bounds: Any) -> bool:
    if not isinstance(bounds, Sequence) or isinstance(bounds, str) or len(bounds) != 2:
        logger.debug(f"in_range expects [min, max], got {bounds!r}")
        return False
    number = to_number(field_value)
    return to_number(bounds[0]) <= number <= to_number(bounds[1])


OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: values_equal,
    ConditionOperator.NOT_EQUALS: lambda field_value, target: not values_equal(field_value, target),
    ConditionOperator.GREATER_THAN: lambda field_value, target: to_number(field_value) > to_number(target),
    ConditionOperator.LESS_THAN: lambda field_value, target: to_number(field_value) < to_number(target),
    ConditionOperator.GREATER_OR_EQUAL: lambda field_value, target: to_number(field_value) >= to_number(target),
    ConditionOperator.LESS_OR_EQUAL: lambda field_value, target: to_number(field_value) <= to_number(target),
    ConditionOperator.CONTAINS: lambda field_value, target: _to_text(target).lower() in _to_text(field_value).lower(),
    ConditionOperator.IN_RANGE: _in_range,
}


def evaluate_condition(claim: Claim, condition: RuleCondition) -> bool:
    operator = coerce_enum(ConditionOperator, condition.operator)
    compare = OPERATORS.get(operator) if isinstance(operator, ConditionOperator) else None
    if compare is None:
        logger.debug(f"Unknown operator {condition.operator!r} evaluates to False")
        return False

    field_value = get_field_value(claim, condition.field)
    try:
        return bool(compare(field_value, condition.value))
    except (TypeError, ValueError) as exc:
        logger.debug(f"Condition {condition.to_dict()} could not be compared: {exc}")
        return False


def evaluate_conditions(claim: Claim, conditions: Sequence[RuleCondition]) -> bool:
    """Fold conditions strictly left to right.

    The logic operator stored on condition *i* decides how condition *i+1*
    combines with the running result; there is no precedence or grouping.
    An empty list matches every claim.
    """
    result = True
    current_logic: Optional[LogicOperator] = LogicOperator.AND

    for condition in conditions:
        condition_result = evaluate_condition(claim, condition)

        if current_logic == LogicOperator.OR:
            result = result or condition_result
        else:
            result = result and condition_result

        current_logic = condition.logic_operator or LogicOperator.AND

    return result
