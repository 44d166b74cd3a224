"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Optional, Type, TypeVar

from core.conditions import evaluate_groups
from core.models import (
    DEFAULT_NOTIFICATION_TEMPLATE,
    ActionType,
    Article,
    Condition,
    FieldTarget,
    LogicalOperator,
    NotificationPriority,
    Operator,
    Rule,
    RuleScope,
)
from core.scope import format_id_list, parse_id_list

LOGGER = logging.getLogger(__name__)

_E = TypeVar("_E", bound=Enum)

# Keys that describe an inline (single) condition directly on the rule config.
_INLINE_CONDITION_KEYS = ("field", "operator", "value", "regex", "regex_pattern")


def _enum_value(enum_type: Type[_E], raw: Any, default: _E, label: str, rule_name: str) -> _E:
    if raw is None or raw == "":
        return default
    if isinstance(raw, enum_type):
        return raw
    try:
        return enum_type(str(raw).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Rule {rule_name!r}: unsupported {label} {raw!r} (expected one of: {allowed})") from exc


def _optional_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return str(raw)


def _id_list_text(raw: Any) -> str:
    if raw is None:
        return "[]"
    if isinstance(raw, str):
        # Keep the stored text as-is; malformed lists are detected at match time.
        return raw
    return format_id_list(raw)


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        return None


def build_condition(config: dict, rule_name: str, default_order: int = 0) -> Condition:
    """Normalize one condition config into a Condition."""

    return Condition(
        field=_enum_value(FieldTarget, config.get("field"), FieldTarget.TITLE, "field", rule_name),
        operator=_enum_value(Operator, config.get("operator"), Operator.CONTAINS, "operator", rule_name),
        value=_optional_text(config.get("value")),
        value2=_optional_text(config.get("value2")),
        regex_pattern=_optional_text(config.get("regex_pattern", config.get("regex"))),
        case_sensitive=bool(config.get("case_sensitive", False)),
        negate=bool(config.get("negate", False)),
        group_id=int(config.get("group_id", 0)),
        order=int(config.get("order", default_order)),
        combine_with_next=_enum_value(
            LogicalOperator, config.get("combine_with_next"), LogicalOperator.AND, "combine_with_next", rule_name
        ),
        id=config.get("id"),
    )


def build_rule(config: dict, default_id: int = 0) -> Rule:
    """Normalize one rule config (as stored in config.json) into a Rule.

    A rule may carry an inline condition (``field``/``operator``/``value``)
    and/or a ``conditions`` list; the inline one becomes the first condition
    of group 0.
    """

    name = str(config.get("name") or "").strip()
    conditions: List[Condition] = []
    if any(key in config for key in _INLINE_CONDITION_KEYS):
        conditions.append(build_condition(config, name, default_order=0))
    for index, condition_config in enumerate(config.get("conditions") or [], start=len(conditions)):
        conditions.append(build_condition(condition_config, name, default_order=index))

    return Rule(
        id=int(config.get("id", default_id)),
        name=name,
        conditions=tuple(conditions),
        action_type=_enum_value(ActionType, config.get("action"), ActionType.NOTIFY, "action", name),
        category_id=config.get("category_id"),
        tag_ids=tuple(int(tag_id) for tag_id in config.get("tag_ids") or []),
        notification_priority=_enum_value(
            NotificationPriority,
            config.get("notification_priority"),
            NotificationPriority.NORMAL,
            "notification_priority",
            name,
        ),
        notification_template=config.get("notification_template") or DEFAULT_NOTIFICATION_TEMPLATE,
        priority=int(config.get("priority", 100)),
        is_enabled=bool(config.get("enabled", True)),
        stop_on_match=bool(config.get("stop_on_match", False)),
        scope=_enum_value(RuleScope, config.get("scope"), RuleScope.ALL_FEEDS, "scope", name),
        feed_ids=_id_list_text(config.get("feed_ids")),
        category_ids=_id_list_text(config.get("category_ids")),
        group_logic=_enum_value(LogicalOperator, config.get("group_logic"), LogicalOperator.AND, "group_logic", name),
        match_count=int(config.get("match_count", 0)),
        last_match_date=_parse_timestamp(config.get("last_match_date")),
        description=config.get("description"),
    )


def build_rules(rules_config: Iterable[dict]) -> List[Rule]:
    """Normalize rule configs, assigning positional ids to rules without one."""

    return [build_rule(config, default_id=index) for index, config in enumerate(rules_config, start=1)]


def active_rules(rules: Iterable[Rule]) -> List[Rule]:
    """Enabled rules in evaluation order: ascending priority, then id."""

    return sorted((rule for rule in rules if rule.is_enabled), key=lambda rule: (rule.priority, rule.id))


def rule_applies_to_article(rule: Rule, article: Article) -> bool:
    """Apply the rule's scope filter to an article."""

    # Articles that do not belong to a feed are outside every scope.
    if article.feed_id is None:
        return False
    if rule.scope is RuleScope.ALL_FEEDS:
        return True
    if rule.scope is RuleScope.SPECIFIC_FEEDS:
        feed_ids = parse_id_list(rule.feed_ids)
        if feed_ids is None:
            LOGGER.warning("Rule %s (%s) skipped: malformed feed id list %r", rule.id, rule.name, rule.feed_ids)
            return False
        return article.feed_id in feed_ids
    if rule.scope is RuleScope.SPECIFIC_CATEGORIES:
        category_ids = parse_id_list(rule.category_ids)
        if category_ids is None:
            LOGGER.warning(
                "Rule %s (%s) skipped: malformed category id list %r", rule.id, rule.name, rule.category_ids
            )
            return False
        return bool(category_ids & article.category_ids)
    return False


def evaluate_rule(rule: Rule, article: Optional[Article]) -> bool:
    """Return True when the article is in scope and satisfies the rule's conditions."""

    if rule is None or article is None:
        return False
    if not rule_applies_to_article(rule, article):
        return False
    return evaluate_groups(rule.conditions, article, rule.group_logic)


def match_rules(article: Optional[Article], rules: Iterable[Rule]) -> List[Rule]:
    """Return the rules matching an article, in evaluation order.

    Matching logic:
    - Only enabled rules are considered, lowest priority value first.
    - A rule outside its scope never matches.
    - A matching rule with stop_on_match ends the scan for this article.
    """

    matches: List[Rule] = []
    if article is None:
        return matches

    for rule in active_rules(rules):
        if not evaluate_rule(rule, article):
            continue
        matches.append(rule)
        if rule.stop_on_match:
            LOGGER.debug("Rule %s stopped evaluation for article %s", rule.name, article.id)
            break
    return matches
