"""Two-level AND/OR rule engine gating end-of-conversation notifications.

A condition set holds groups, a group holds rules. Rules in a group combine
with the group's logic, groups combine with the set's logic. The same shape
drives declarative action inference.
"""

import re
from typing import Any, Optional, Union

from voxtro.logging_config import get_logger
from voxtro.schemas.conditions import ConditionGroup, ConditionRule, ConditionSet

logger = get_logger("condition_service")

TEXT_OPERATORS = {
    "equals": lambda field, value: field == value,
    "not_equals": lambda field, value: field != value,
    "contains": lambda field, value: value in field,
    "not_contains": lambda field, value: value not in field,
    "starts_with": lambda field, value: field.startswith(value),
    "ends_with": lambda field, value: field.endswith(value),
}

NUMERIC_OPERATORS = {
    "equals": lambda field, value: field == value,
    "not_equals": lambda field, value: field != value,
    "greater_than": lambda field, value: field > value,
    "less_than": lambda field, value: field < value,
    "greater_than_equal": lambda field, value: field >= value,
    "less_than_equal": lambda field, value: field <= value,
}

NUMERIC_ONLY = {"greater_than", "less_than", "greater_than_equal", "less_than_equal"}

# custom_parameter fields computed from the conversation itself
WELL_KNOWN_FIELDS = {
    "conversation_length": ("message_count", "number"),
    "conversation_duration": ("duration_minutes", "number"),
    "user_rating": ("user_rating", "number"),
    "summary_sentiment": ("summary_sentiment", "text"),
    "agent_name": ("bot_name", "text"),
}

SENDER_BY_FIELD = {"user_message": "user", "bot_message": "bot", "any_message": "any"}


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_text(value: Any) -> str:
    return "" if value is None else str(value)


def compare(field_value: Any, operator: str, value: Any, *, case_sensitive: bool = False, numeric: bool = False) -> bool:
    """Apply one operator to a resolved field value."""
    if operator == "matches":
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            return re.search(_to_text(value), _to_text(field_value), flags) is not None
        except re.error as exc:
            logger.warning("Invalid match pattern", extra={"context": {"pattern": value, "error": str(exc)}})
            return False

    if numeric or operator in NUMERIC_ONLY:
        left = _to_number(field_value)
        right = _to_number(value)
        op = NUMERIC_OPERATORS.get(operator)
        if op is not None and left is not None and right is not None:
            return op(left, right)
        if operator in NUMERIC_ONLY or (op is None and operator not in TEXT_OPERATORS):
            return False

    op = TEXT_OPERATORS.get(operator)
    if op is None:
        return False
    left = _to_text(field_value)
    right = _to_text(value)
    if not case_sensitive:
        left = left.lower()
        right = right.lower()
    return op(left, right)


def _select_messages(rule: ConditionRule, messages: list[dict]) -> list[dict]:
    sender = rule.sender or SENDER_BY_FIELD.get(rule.field, "any")
    if sender == "user":
        return [m for m in messages if m.get("role") == "user"]
    if sender == "bot":
        return [m for m in messages if m.get("role") == "assistant"]
    if sender == "last_user":
        user_messages = [m for m in messages if m.get("role") == "user"]
        return user_messages[-1:]
    if sender == "conversation":
        # whole transcript as one text, so a cue in one turn can pair with a reply in the next
        text = " ".join(str(m.get("content") or "") for m in messages)
        return [{"role": "conversation", "content": text}]
    return list(messages)


def _evaluate_message_content(rule: ConditionRule, data: dict) -> bool:
    messages = _select_messages(rule, data.get("messages") or [])
    return any(
        compare(message.get("content"), rule.operator, rule.value, case_sensitive=rule.case_sensitive)
        for message in messages
    )


def _lookup_parameter(name: str, data: dict) -> Any:
    if name.startswith("tool_"):
        source = data.get("tool_parameters") or {}
    else:
        source = data.get("custom_parameters") or {}
    if name in source:
        return source[name]
    return data.get(name)


def _evaluate_custom_parameter(rule: ConditionRule, data: dict) -> bool:
    name = rule.parameter_name or rule.field
    declared_type = rule.parameter_type
    if name in WELL_KNOWN_FIELDS:
        key, default_type = WELL_KNOWN_FIELDS[name]
        field_value = data.get(key)
        if field_value is None and key == "message_count":
            field_value = len(data.get("messages") or [])
        declared_type = declared_type or default_type
    else:
        field_value = _lookup_parameter(name, data)
    return compare(field_value, rule.operator, rule.value, numeric=declared_type == "number")


def _evaluate_parameter_exists(rule: ConditionRule, data: dict) -> bool:
    name = rule.parameter_name or rule.field
    source = data.get("tool_parameters" if name.startswith("tool_") else "custom_parameters") or {}
    exists = source.get(name) not in (None, "")
    return not exists if rule.operator == "not_exists" else exists


def evaluate_rule(rule: ConditionRule, data: dict) -> bool:
    if rule.type == "basic":
        return _to_text(rule.value).lower() == "true"
    if rule.type == "message_content":
        return _evaluate_message_content(rule, data)
    if rule.type == "custom_parameter":
        return _evaluate_custom_parameter(rule, data)
    if rule.type == "parameter_exists":
        return _evaluate_parameter_exists(rule, data)
    return False


def _combine(logic: str, results: list[bool]) -> bool:
    return all(results) if logic == "AND" else any(results)


def evaluate_group(group: ConditionGroup, data: dict) -> bool:
    return _combine(group.logic, [evaluate_rule(rule, data) for rule in group.rules])


def evaluate(conditions: Union[ConditionSet, dict, None], data: dict) -> bool:
    """Decide whether a condition set holds for the given evaluation data.

    `conditions` may be a parsed ConditionSet, the raw stored dict (including
    the legacy flat form) or None, which is the always-true base case.
    """
    if conditions is None:
        conditions = ConditionSet.always()
    elif isinstance(conditions, dict):
        conditions = ConditionSet.model_validate(conditions)

    group_results = [evaluate_group(group, data) for group in conditions.groups]
    result = _combine(conditions.logic, group_results)
    logger.debug(
        "Conditions evaluated",
        extra={"context": {"groups": group_results, "logic": conditions.logic, "result": result}},
    )
    return result
