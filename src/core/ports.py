"""Ports (interfaces) used by the core engine.

Ports define the minimal contracts for content, persistence, mutation and
notification adapters so that the core can be reused with different
backends. Mutators report success with a boolean; a False return is a
recoverable failure for the rule that requested it.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from core.models import Article, NotificationPriority, Rule


class ContentSource(Protocol):
    """Resolves article identifiers to immutable snapshots."""

    def get_article(self, article_id: int) -> Optional[Article]:
        ...


class RuleStore(Protocol):
    """Rule persistence required by the engine."""

    def load_active_rules(self) -> List[Rule]:
        ...

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        ...

    def increment_match(self, rule_id: int, matched_at: datetime) -> Optional[int]:
        """Atomically bump match_count, set last_match_date, return the new count."""
        ...


class StateMutator(Protocol):
    def set_read_state(self, article_id: int, is_read: bool) -> bool:
        ...

    def set_starred(self, article_id: int, is_starred: bool) -> bool:
        ...

    def toggle_starred(self, article_id: int) -> bool:
        ...


class CategoryMutator(Protocol):
    def move_feed_to_category(self, feed_id: int, category_id: int) -> bool:
        ...


class TagMutator(Protocol):
    def apply_tag(
        self,
        article_id: int,
        tag_id: int,
        applied_by: str,
        rule_id: int,
        confidence: float,
    ) -> bool:
        ...


class NotifierPort(Protocol):
    """Notification delivery required by notify actions."""

    async def notify(self, article: Article, rule: Rule, priority: NotificationPriority) -> bool:
        ...
