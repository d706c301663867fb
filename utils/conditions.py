"""
Condition evaluator — used by the dialogue state machine for branch preconditions.

Evaluates RuleCondition objects against the JSON snapshot of a session
context. A fact counts as present only when it is set and non-empty.
"""
from __future__ import annotations

import re
import operator as op
from typing import Any, Optional

from models.schemas import RuleCondition


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True


OPERATORS: dict[str, Any] = {
    "exists": lambda a, b: _present(a),
    "not_exists": lambda a, b: not _present(a),
    "eq": op.eq,
    "neq": op.ne,
    "gt": op.gt,
    "gte": op.ge,
    "lt": op.lt,
    "lte": op.le,
    "in": lambda a, b: a in b,
    "regex": lambda a, b: a is not None and bool(re.search(str(b), str(a))),
}


def get_nested_value(data: dict, field: str) -> Any:
    """Get a value from nested dict using dot notation. e.g. 'selected_idea.title'"""
    current = data
    for part in field.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def evaluate_condition(condition: RuleCondition, data: dict[str, Any]) -> bool:
    fn = OPERATORS.get(condition.operator)
    if fn is None:
        return False
    try:
        return fn(get_nested_value(data, condition.field), condition.value)
    except (TypeError, ValueError):
        return False


def first_failed(conditions: list[RuleCondition], data: dict[str, Any]) -> Optional[RuleCondition]:
    """Return the first condition that does not hold, or None when all pass."""
    for condition in conditions:
        if not evaluate_condition(condition, data):
            return condition
    return None


def evaluate_conditions(conditions: list[RuleCondition], data: dict[str, Any]) -> bool:
    """Evaluate all conditions (AND logic). Returns True if all pass."""
    return first_failed(conditions, data) is None
