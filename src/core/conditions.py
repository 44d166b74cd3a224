"""Condition evaluation and group composition (core domain).

Evaluation is a pure function of an article snapshot and a condition. It
never raises for bad input: a malformed condition (missing value, invalid
regex) is logged and treated as a non-match so one broken rule cannot stop
the rest of a batch.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence

from core.fields import FieldValue, extract_field, field_as_text, is_blank
from core.models import Article, Condition, LogicalOperator, Operator

LOGGER = logging.getLogger(__name__)

ORDERING_OPERATORS = frozenset(
    {Operator.GREATER_THAN, Operator.LESS_THAN, Operator.BETWEEN, Operator.NOT_BETWEEN}
)
RANGE_OPERATORS = frozenset({Operator.BETWEEN, Operator.NOT_BETWEEN})
VALUELESS_OPERATORS = frozenset({Operator.IS_EMPTY, Operator.IS_NOT_EMPTY, Operator.REGEX})

_TEXT_OPERATORS = {
    Operator.CONTAINS: lambda text, value: value in text,
    Operator.NOT_CONTAINS: lambda text, value: value not in text,
    Operator.EQUALS: lambda text, value: text == value,
    Operator.NOT_EQUALS: lambda text, value: text != value,
    Operator.STARTS_WITH: lambda text, value: text.startswith(value),
    Operator.ENDS_WITH: lambda text, value: text.endswith(value),
}

# Category and tag targets are sets of names: these operators test
# membership instead of substring-of-concatenation.
_MEMBERSHIP_OPERATORS = {
    Operator.CONTAINS: True,
    Operator.EQUALS: True,
    Operator.NOT_CONTAINS: False,
    Operator.NOT_EQUALS: False,
}


class MalformedConditionError(ValueError):
    """Raised internally when a condition cannot be evaluated as written."""


@lru_cache(maxsize=512)
def compile_pattern(pattern: str, case_sensitive: bool) -> "re.Pattern[str]":
    """Compile and cache a condition regex; raises ``re.error`` if invalid."""

    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(pattern, flags)


def parse_number(text: str) -> Optional[float]:
    try:
        number = float(text.strip())
    except (AttributeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(text: str) -> Optional[datetime]:
    """Parse ISO-8601 first, then RFC 2822 (feed dates), normalized to UTC."""

    if not text or not text.strip():
        return None
    raw = text.strip()
    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    try:
        return _as_utc(datetime.fromisoformat(raw))
    except ValueError:
        pass
    try:
        return _as_utc(parsedate_to_datetime(text.strip()))
    except (TypeError, ValueError, IndexError):
        return None


def _sign(left, right) -> int:
    return (left > right) - (left < right)


def compare_values(left: FieldValue, right: str) -> Optional[int]:
    """Compare an extracted value with a condition value.

    Tries a numeric comparison, then a date/time comparison, then falls back
    to a case-insensitive lexical one. Returns None when the left side has no
    value at all (e.g. an article without a published date).
    """

    if left is None:
        return None
    if isinstance(left, datetime):
        right_date = parse_datetime(right)
        if right_date is not None:
            return _sign(_as_utc(left), right_date)
        left = left.isoformat()

    left_number = parse_number(left)
    right_number = parse_number(right)
    if left_number is not None and right_number is not None:
        return _sign(left_number, right_number)

    left_date = parse_datetime(left)
    right_date = parse_datetime(right)
    if left_date is not None and right_date is not None:
        return _sign(left_date, right_date)

    return _sign(left.casefold(), right.casefold())


def _fold(text: str, case_sensitive: bool) -> str:
    return text if case_sensitive else text.casefold()


def _required_value(condition: Condition) -> str:
    if condition.value is None or not condition.value.strip():
        raise MalformedConditionError(f"operator {condition.operator.value} requires a value")
    return condition.value


def _pattern_for(condition: Condition) -> "re.Pattern[str]":
    pattern = condition.regex_pattern
    if not pattern or not pattern.strip():
        raise MalformedConditionError("regex operator requires a pattern")
    try:
        return compile_pattern(pattern, condition.case_sensitive)
    except re.error as exc:
        raise MalformedConditionError(f"invalid regex pattern {pattern!r}: {exc}") from exc


def _check_ordering(operator: Operator, value: FieldValue, condition: Condition) -> bool:
    lower = _required_value(condition)
    if operator in RANGE_OPERATORS:
        upper = condition.value2
        if upper is None or not upper.strip():
            raise MalformedConditionError(f"operator {operator.value} requires a second value")
        above = compare_values(value, lower)
        below = compare_values(value, upper)
        if above is None or below is None:
            return False
        inside = above >= 0 and below <= 0
        return inside if operator is Operator.BETWEEN else not inside

    result = compare_values(value, lower)
    if result is None:
        return False
    if operator is Operator.GREATER_THAN:
        return result > 0
    return result < 0


def _apply_operator(value: FieldValue, condition: Condition) -> bool:
    operator = condition.operator
    if operator is Operator.IS_EMPTY:
        return is_blank(value)
    if operator is Operator.IS_NOT_EMPTY:
        return not is_blank(value)

    members = sorted(value) if isinstance(value, frozenset) else None

    if operator is Operator.REGEX:
        pattern = _pattern_for(condition)
        if members is not None:
            return any(pattern.search(member) for member in members)
        return pattern.search(field_as_text(value)) is not None

    if operator in ORDERING_OPERATORS:
        if members is not None:
            return any(_check_ordering(operator, member, condition) for member in members)
        return _check_ordering(operator, value, condition)

    text_operator = _TEXT_OPERATORS.get(operator)
    if text_operator is None:
        raise MalformedConditionError(f"unsupported operator {operator!r}")
    expected = _fold(_required_value(condition), condition.case_sensitive)

    if members is not None:
        folded = [_fold(member, condition.case_sensitive) for member in members]
        wanted = _MEMBERSHIP_OPERATORS.get(operator)
        if wanted is not None:
            return (expected in folded) is wanted
        return any(text_operator(member, expected) for member in folded)

    return text_operator(_fold(field_as_text(value), condition.case_sensitive), expected)


def _evaluate_value(value: FieldValue, condition: Condition, subject: object) -> bool:
    try:
        result = _apply_operator(value, condition)
    except MalformedConditionError as exc:
        LOGGER.warning(
            "Condition %s treated as non-match for %s: %s",
            condition.id if condition.id is not None else "<inline>",
            subject,
            exc,
        )
        return False
    # Negation wraps the operator result so every operator supports it.
    return not result if condition.negate else result


def evaluate_condition(article: Optional[Article], condition: Optional[Condition]) -> bool:
    """Evaluate a single condition against an article."""

    if article is None or condition is None:
        return False
    value = extract_field(article, condition.field)
    return _evaluate_value(value, condition, f"article {article.id}")


def evaluate_condition_text(text: Optional[str], condition: Optional[Condition]) -> bool:
    """Evaluate a condition against free-form sample text instead of an article."""

    if text is None or condition is None:
        return False
    return _evaluate_value(text, condition, "sample text")


def evaluate_group(conditions: Optional[Sequence[Condition]], article: Optional[Article]) -> bool:
    """Fold an ordered condition chain into one boolean.

    The chain is strictly left-associative: ``A AND B OR C`` is
    ``(A AND B) OR C``. A condition whose result cannot change the running
    value is skipped, so AND-after-false and OR-after-true never evaluate.
    An empty chain is vacuously true.
    """

    if not conditions:
        return True

    ordered = sorted(conditions, key=lambda condition: condition.order)
    result = evaluate_condition(article, ordered[0])
    for previous, current in zip(ordered, ordered[1:]):
        if previous.combine_with_next is LogicalOperator.OR:
            if result:
                continue
        elif not result:
            continue
        result = evaluate_condition(article, current)
    return result


def group_conditions(conditions: Iterable[Condition]) -> Dict[int, List[Condition]]:
    """Split conditions by group id, keeping authoring order inside a group."""

    groups: Dict[int, List[Condition]] = {}
    for condition in conditions:
        groups.setdefault(condition.group_id, []).append(condition)
    return dict(sorted(groups.items()))


def evaluate_groups(
    conditions: Optional[Sequence[Condition]],
    article: Optional[Article],
    group_logic: LogicalOperator = LogicalOperator.AND,
) -> bool:
    """Evaluate every condition group of a rule and combine them."""

    if not conditions:
        return True

    for group in group_conditions(conditions).values():
        matched = evaluate_group(group, article)
        if group_logic is LogicalOperator.OR and matched:
            return True
        if group_logic is LogicalOperator.AND and not matched:
            return False
    return group_logic is LogicalOperator.AND
