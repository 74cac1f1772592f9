"""
Trigger condition evaluation.

Conditions are `{field, operator, value}` triples. `field` is a dotted path
looked up in an evaluation context holding the event body (`event`), its
nested payload (`payload`) and the resolved document (`relatedDoc`). A bare
path that does not start with one of those roots is looked up in the
resolved document first, then in the payload, then in the event body.
"""

from typing import Any

from ..models import ConditionLogic, TriggerCondition

_MISSING = object()

_ALIASES = {
    "eq": "equals",
    "==": "equals",
    "neq": "not_equals",
    "!=": "not_equals",
    "gt": "greater_than",
    ">": "greater_than",
    "gte": "greater_equal",
    ">=": "greater_equal",
    "lt": "less_than",
    "<": "less_than",
    "lte": "less_equal",
    "<=": "less_equal",
}

_ROOTS = ("event", "payload", "relatedDoc")


def build_context(
    event_body: dict[str, Any], related_doc: dict[str, Any] | None
) -> dict[str, Any]:
    payload = event_body.get("payload")
    return {
        "event": event_body,
        "payload": payload if isinstance(payload, dict) else {},
        "relatedDoc": related_doc or {},
    }


def resolve_path(container: Any, path: str) -> Any:
    """Walk a dotted path through dicts and lists; missing segments give _MISSING."""
    current = container
    for part in [item for item in path.strip().split(".") if item]:
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list | tuple):
            if not part.isdigit() or int(part) >= len(current):
                return _MISSING
            current = current[int(part)]
        else:
            return _MISSING
    return current


def lookup(context: dict[str, Any], field: str) -> Any:
    root = field.split(".", 1)[0]
    if root in _ROOTS:
        return resolve_path(context, field)
    for scope in ("relatedDoc", "payload", "event"):
        value = resolve_path(context[scope], field)
        if value is not _MISSING:
            return value
    return _MISSING


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equals(left: Any, right: Any) -> bool:
    if left is _MISSING:
        return False
    if left == right:
        return True
    # ObjectIds and other ids compare by their string form
    if isinstance(right, str) and not isinstance(left, str | int | float | bool | type(None)):
        return str(left) == right
    left_number, right_number = _to_number(left), _to_number(right)
    if isinstance(left, str) != isinstance(right, str) and None not in (left_number, right_number):
        return left_number == right_number
    return False


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, list | tuple | set):
        return expected in actual
    if isinstance(actual, dict):
        return expected in actual
    return False


def condition_matches(condition: TriggerCondition, context: dict[str, Any]) -> bool:
    operator = condition.operator.strip().lower()
    operator = _ALIASES.get(operator, operator)
    actual = lookup(context, condition.field)
    expected = condition.value

    if operator == "exists":
        return actual is not _MISSING and actual is not None
    if operator == "not_exists":
        return actual is _MISSING or actual is None
    if operator == "equals":
        return _equals(actual, expected)
    if operator == "not_equals":
        return not _equals(actual, expected)

    if operator in ("greater_than", "greater_equal", "less_than", "less_equal"):
        left, right = _to_number(None if actual is _MISSING else actual), _to_number(expected)
        if left is None or right is None:
            return False
        if operator == "greater_than":
            return left > right
        if operator == "greater_equal":
            return left >= right
        if operator == "less_than":
            return left < right
        return left <= right

    if operator == "contains":
        return _contains(actual, expected)
    if operator == "not_contains":
        return actual is not _MISSING and not _contains(actual, expected)
    if operator == "in":
        return isinstance(expected, list | tuple | set) and actual in expected
    if operator == "not_in":
        return isinstance(expected, list | tuple | set) and actual is not _MISSING and actual not in expected

    return False


def evaluate_conditions(
    conditions: list[TriggerCondition],
    logic: str,
    context: dict[str, Any],
) -> bool:
    """Combine condition results with AND/OR; no conditions always matches."""
    if not conditions:
        return True
    results = (condition_matches(condition, context) for condition in conditions)
    if logic == ConditionLogic.OR:
        return any(results)
    return all(results)
