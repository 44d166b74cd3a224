"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage- or delivery-specific types. Everything the engine
reads is frozen: evaluation never mutates an article or a rule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


class FieldTarget(str, Enum):
    """Article field a condition is evaluated against."""

    TITLE = "title"
    CONTENT = "content"
    SUMMARY = "summary"
    AUTHOR = "author"
    PUBLISHED_DATE = "published_date"
    LINK = "link"
    CATEGORY = "category"
    TAG = "tag"
    ALL_FIELDS = "all_fields"
    ANY_FIELD = "any_field"


class Operator(str, Enum):
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    REGEX = "regex"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"


class ActionType(str, Enum):
    MARK_AS_READ = "mark_as_read"
    MARK_AS_UNREAD = "mark_as_unread"
    MARK_AS_STARRED = "mark_as_starred"
    MOVE_TO_CATEGORY = "move_to_category"
    APPLY_TAGS = "apply_tags"
    NOTIFY = "notify"


class RuleScope(str, Enum):
    ALL_FEEDS = "all_feeds"
    SPECIFIC_FEEDS = "specific_feeds"
    SPECIFIC_CATEGORIES = "specific_categories"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_NOTIFICATION_TEMPLATE = "{Title}\n\n{Source}"


@dataclass(frozen=True)
class Article:
    """Immutable article snapshot consumed by the engine."""

    id: int
    feed_id: Optional[int]
    title: str = ""
    content: Optional[str] = None
    summary: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    link: Optional[str] = None
    category_ids: FrozenSet[int] = frozenset()
    category_names: FrozenSet[str] = frozenset()
    tag_names: FrozenSet[str] = frozenset()
    feed_title: Optional[str] = None
    is_read: bool = False
    is_starred: bool = False


@dataclass(frozen=True)
class Condition:
    """One atomic field/operator/value test."""

    field: FieldTarget = FieldTarget.TITLE
    operator: Operator = Operator.CONTAINS
    value: Optional[str] = None
    value2: Optional[str] = None
    regex_pattern: Optional[str] = None
    case_sensitive: bool = False
    negate: bool = False
    group_id: int = 0
    order: int = 0
    combine_with_next: LogicalOperator = LogicalOperator.AND
    id: Optional[int] = None


@dataclass(frozen=True)
class Rule:
    """Rule definition as read by the engine.

    ``feed_ids`` and ``category_ids`` are kept as the raw JSON list text the
    authoring surface stored; they are parsed at match time so a malformed
    list only disables the rule instead of failing the load.
    """

    id: int
    name: str
    conditions: Tuple[Condition, ...] = ()
    action_type: ActionType = ActionType.NOTIFY
    category_id: Optional[int] = None
    tag_ids: Tuple[int, ...] = ()
    notification_priority: NotificationPriority = NotificationPriority.NORMAL
    notification_template: str = DEFAULT_NOTIFICATION_TEMPLATE
    priority: int = 100
    is_enabled: bool = True
    stop_on_match: bool = False
    scope: RuleScope = RuleScope.ALL_FEEDS
    feed_ids: str = "[]"
    category_ids: str = "[]"
    group_logic: LogicalOperator = LogicalOperator.AND
    match_count: int = 0
    last_match_date: Optional[datetime] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ActionOutcome:
    """Result of executing one rule's action against one article."""

    rule_id: int
    article_id: int
    action_type: ActionType
    success: bool
    match_count: Optional[int] = None
    matched_at: Optional[datetime] = None
    detail: str = ""


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


@dataclass
class RuleTestResult:
    """Dry-run statistics for one rule against sample articles."""

    rule_name: str
    total_tested: int = 0
    matched_count: int = 0
    matched_article_ids: List[int] = field(default_factory=list)
    average_evaluation_ms: float = 0.0


@dataclass
class BatchReport:
    """Aggregate statistics for one rule-application run."""

    articles_evaluated: int = 0
    matches: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    cancelled: bool = False
    outcomes: List[ActionOutcome] = field(default_factory=list)
