"""Static validation of rules and conditions (core domain).

Validation needs no article. It never mutates its input and never raises:
every problem is reported as a message so an authoring surface can show all
of them at once.
"""

from __future__ import annotations

import logging
import re
from typing import List

from core.conditions import RANGE_OPERATORS, VALUELESS_OPERATORS, compile_pattern
from core.models import ActionType, Condition, Operator, Rule, RuleScope, ValidationResult
from core.scope import parse_id_list

LOGGER = logging.getLogger(__name__)

MAX_RULE_NAME_LENGTH = 200


def _is_blank(value) -> bool:
    return value is None or not str(value).strip()


def condition_errors(condition: Condition) -> List[str]:
    """Return every structural problem found in a condition."""

    if condition is None:
        return ["condition is missing"]

    errors: List[str] = []
    operator = condition.operator
    if operator is Operator.REGEX:
        if _is_blank(condition.regex_pattern):
            errors.append("regex pattern is required for the regex operator")
        else:
            try:
                compile_pattern(condition.regex_pattern, condition.case_sensitive)
            except re.error as exc:
                errors.append(f"regex pattern {condition.regex_pattern!r} does not compile: {exc}")
    if operator not in VALUELESS_OPERATORS and _is_blank(condition.value):
        errors.append(f"a value is required for the {operator.value} operator")
    if operator in RANGE_OPERATORS and _is_blank(condition.value2):
        errors.append(f"a second value is required for the {operator.value} operator")
    if condition.group_id < 0:
        errors.append(f"group id cannot be negative ({condition.group_id})")
    if condition.order < 0:
        errors.append(f"order cannot be negative ({condition.order})")
    return errors


def validate_condition(condition: Condition) -> bool:
    errors = condition_errors(condition)
    for error in errors:
        LOGGER.debug("Condition %s invalid: %s", getattr(condition, "id", None), error)
    return not errors


def _describe_condition(condition: Condition) -> str:
    return (
        f"field={condition.field.value}, operator={condition.operator.value}, "
        f"value={condition.value!r}"
    )


def validate_rule_conditions(rule: Rule) -> ValidationResult:
    """Validate all conditions of a rule; the rule is invalid if any is."""

    result = ValidationResult()
    if rule is None:
        result.add_error("rule is missing")
        return result
    for condition in rule.conditions:
        errors = condition_errors(condition)
        if errors:
            result.add_error(
                f"Invalid condition ({_describe_condition(condition)}): {'; '.join(errors)}"
            )
    return result


def validate_rule(rule: Rule) -> ValidationResult:
    """Validate a whole rule: identity, scope, action parameters and conditions."""

    result = validate_rule_conditions(rule)
    if rule is None:
        return result

    if _is_blank(rule.name):
        result.add_error("rule name is required")
    elif len(rule.name) > MAX_RULE_NAME_LENGTH:
        result.add_error(f"rule name cannot exceed {MAX_RULE_NAME_LENGTH} characters")

    if rule.scope is RuleScope.SPECIFIC_FEEDS:
        feed_ids = parse_id_list(rule.feed_ids)
        if feed_ids is None:
            result.add_error(f"feed id list is malformed: {rule.feed_ids!r}")
        elif not feed_ids:
            result.add_error("feed ids are required when scope is specific_feeds")
    elif rule.scope is RuleScope.SPECIFIC_CATEGORIES:
        category_ids = parse_id_list(rule.category_ids)
        if category_ids is None:
            result.add_error(f"category id list is malformed: {rule.category_ids!r}")
        elif not category_ids:
            result.add_error("category ids are required when scope is specific_categories")

    if rule.action_type is ActionType.APPLY_TAGS and not rule.tag_ids:
        result.add_error("tag ids are required when action is apply_tags")
    if rule.action_type is ActionType.MOVE_TO_CATEGORY and rule.category_id is None:
        result.add_error("category id is required when action is move_to_category")

    return result
