"""Human-readable rule descriptions and match statistics."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from core.conditions import RANGE_OPERATORS, group_conditions
from core.models import Condition, LogicalOperator, Operator, Rule


class RuleHealth(str, Enum):
    DISABLED = "disabled"
    NEVER_MATCHED = "never_matched"
    ACTIVE = "active"
    NORMAL = "normal"
    INFREQUENT = "infrequent"
    STALE = "stale"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def rule_health(rule: Rule, now: Optional[datetime] = None) -> RuleHealth:
    """Classify a rule by how recently it last matched."""

    if not rule.is_enabled:
        return RuleHealth.DISABLED
    if rule.last_match_date is None:
        return RuleHealth.NEVER_MATCHED
    now = _as_utc(now or datetime.now(timezone.utc))
    days = (now - _as_utc(rule.last_match_date)).total_seconds() / 86400
    if days <= 1:
        return RuleHealth.ACTIVE
    if days <= 7:
        return RuleHealth.NORMAL
    if days <= 30:
        return RuleHealth.INFREQUENT
    return RuleHealth.STALE


def format_time_ago(then: Optional[datetime], now: Optional[datetime] = None) -> str:
    if then is None:
        return "never"
    now = _as_utc(now or datetime.now(timezone.utc))
    seconds = max(0, int((now - _as_utc(then)).total_seconds()))
    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


def describe_condition(condition: Condition) -> str:
    """Return a one-line description such as ``NOT title contains 'rust'``."""

    prefix = "NOT " if condition.negate else ""
    suffix = " (case-sensitive)" if condition.case_sensitive else ""
    field = condition.field.value
    operator = condition.operator.value.replace("_", " ")
    if condition.operator is Operator.REGEX:
        return f"{prefix}{field} matches '{condition.regex_pattern}'{suffix}"
    if condition.operator in (Operator.IS_EMPTY, Operator.IS_NOT_EMPTY):
        return f"{prefix}{field} {operator}"
    if condition.operator in RANGE_OPERATORS:
        return f"{prefix}{field} {operator} '{condition.value}' and '{condition.value2}'{suffix}"
    return f"{prefix}{field} {operator} '{condition.value}'{suffix}"


def describe_rule_conditions(rule: Rule) -> str:
    """Describe all condition groups of a rule in evaluation order."""

    if not rule.conditions:
        return "always matches (no conditions)"

    group_texts = []
    for group in group_conditions(rule.conditions).values():
        ordered = sorted(group, key=lambda condition: condition.order)
        parts = [describe_condition(ordered[0])]
        for previous, current in zip(ordered, ordered[1:]):
            parts.append(previous.combine_with_next.value.upper())
            parts.append(describe_condition(current))
        group_texts.append(" ".join(parts))

    if len(group_texts) == 1:
        return group_texts[0]
    joiner = " AND " if rule.group_logic is LogicalOperator.AND else " OR "
    return joiner.join(f"({text})" for text in group_texts)
