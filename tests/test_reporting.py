from __future__ import annotations

from datetime import datetime, timedelta, timezone

from core.models import Condition, FieldTarget, LogicalOperator, Operator, Rule
from core.reporting import RuleHealth, describe_condition, describe_rule_conditions, format_time_ago, rule_health

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_rule_health_thresholds() -> None:
    def health(days_ago: float) -> RuleHealth:
        return rule_health(Rule(id=1, name="r", last_match_date=NOW - timedelta(days=days_ago)), NOW)

    assert health(0.5) is RuleHealth.ACTIVE
    assert health(3) is RuleHealth.NORMAL
    assert health(20) is RuleHealth.INFREQUENT
    assert health(45) is RuleHealth.STALE
    assert rule_health(Rule(id=1, name="r"), NOW) is RuleHealth.NEVER_MATCHED
    assert rule_health(Rule(id=1, name="r", is_enabled=False), NOW) is RuleHealth.DISABLED


def test_format_time_ago() -> None:
    assert format_time_ago(None, NOW) == "never"
    assert format_time_ago(NOW - timedelta(seconds=10), NOW) == "just now"
    assert format_time_ago(NOW - timedelta(hours=1), NOW) == "1 hour ago"
    assert format_time_ago(NOW - timedelta(days=3), NOW) == "3 days ago"


def test_describe_condition() -> None:
    condition = Condition(field=FieldTarget.TITLE, operator=Operator.NOT_CONTAINS, value="ads", negate=True)
    assert describe_condition(condition) == "NOT title not contains 'ads'"
    regex = Condition(field=FieldTarget.LINK, operator=Operator.REGEX, regex_pattern=r"\.pdf$")
    assert describe_condition(regex) == r"link matches '\.pdf$'"


def test_describe_rule_conditions_groups() -> None:
    rule = Rule(
        id=1,
        name="r",
        group_logic=LogicalOperator.OR,
        conditions=(
            Condition(value="a", order=0, combine_with_next=LogicalOperator.OR),
            Condition(value="b", order=1),
            Condition(field=FieldTarget.AUTHOR, operator=Operator.IS_EMPTY, group_id=1),
        ),
    )
    assert describe_rule_conditions(rule) == (
        "(title contains 'a' OR title contains 'b') OR (author is empty)"
    )
    assert describe_rule_conditions(Rule(id=2, name="all")) == "always matches (no conditions)"
