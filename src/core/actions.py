"""Rule action execution (core domain).

The executor is the only part of the engine that causes side effects. It
runs a matched rule's action through the mutator ports and, only when the
action completed, asks the rule store to record the match. A failed action
never moves the rule's statistics.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.config import ActionConfig
from core.models import ActionOutcome, ActionType, Article, Rule
from core.ports import CategoryMutator, NotifierPort, RuleStore, StateMutator, TagMutator

LOGGER = logging.getLogger(__name__)

_HandlerResult = Tuple[bool, str]
OutcomeSubscriber = Callable[[ActionOutcome], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ActionExecutor:
    """Performs a rule's action exactly once per call and records the match."""

    def __init__(
        self,
        state: StateMutator,
        categories: CategoryMutator,
        tags: TagMutator,
        notifier: NotifierPort,
        rule_store: RuleStore,
        config: Optional[ActionConfig] = None,
        on_outcome: Optional[OutcomeSubscriber] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        collaborators = {
            "state": state,
            "categories": categories,
            "tags": tags,
            "notifier": notifier,
            "rule_store": rule_store,
        }
        missing = [name for name, collaborator in collaborators.items() if collaborator is None]
        if missing:
            raise ValueError(f"ActionExecutor requires collaborators: {', '.join(missing)}")

        self._state = state
        self._categories = categories
        self._tags = tags
        self._notifier = notifier
        self._rule_store = rule_store
        self._config = config or ActionConfig()
        self._on_outcome = on_outcome
        self._clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}
        self._handlers: Dict[ActionType, Callable[[Rule, Article], Awaitable[_HandlerResult]]] = {
            ActionType.MARK_AS_READ: self._mark_read,
            ActionType.MARK_AS_UNREAD: self._mark_unread,
            ActionType.MARK_AS_STARRED: self._mark_starred,
            ActionType.MOVE_TO_CATEGORY: self._move_to_category,
            ActionType.APPLY_TAGS: self._apply_tags,
            ActionType.NOTIFY: self._notify,
        }

    async def execute(self, rule: Rule, article: Article) -> bool:
        """Run the rule's action; True iff it completed and the match was recorded."""

        outcome = await self.run(rule, article)
        return outcome.success

    async def run(self, rule: Rule, article: Article) -> ActionOutcome:
        """Run the rule's action and return a detailed outcome."""

        handler = self._handlers.get(rule.action_type)
        if handler is None:
            return self._finish(rule, article, False, f"unsupported action {rule.action_type!r}")

        try:
            completed, detail = await handler(rule, article)
        except Exception:
            # A broken collaborator is a per-rule failure, not a batch failure.
            LOGGER.exception(
                "Action %s failed for rule %s on article %s", rule.action_type.value, rule.id, article.id
            )
            completed, detail = False, "collaborator raised an error"

        if not completed:
            return self._finish(rule, article, False, detail)

        # Increments for the same rule are serialized; the store performs the
        # actual increment-and-fetch atomically. Port calls block, so they run
        # on worker threads.
        async with self._lock_for(rule.id):
            matched_at = self._clock()
            try:
                match_count = await asyncio.to_thread(self._rule_store.increment_match, rule.id, matched_at)
            except Exception:
                LOGGER.exception("Failed to record match for rule %s", rule.id)
                match_count = None

        if match_count is None:
            return self._finish(rule, article, False, f"{detail}; match could not be recorded")
        return self._finish(rule, article, True, detail, match_count=match_count, matched_at=matched_at)

    def _lock_for(self, rule_id: int) -> asyncio.Lock:
        lock = self._locks.get(rule_id)
        if lock is None:
            lock = self._locks.setdefault(rule_id, asyncio.Lock())
        return lock

    def _finish(
        self,
        rule: Rule,
        article: Article,
        success: bool,
        detail: str,
        match_count: Optional[int] = None,
        matched_at: Optional[datetime] = None,
    ) -> ActionOutcome:
        outcome = ActionOutcome(
            rule_id=rule.id,
            article_id=article.id,
            action_type=rule.action_type,
            success=success,
            match_count=match_count,
            matched_at=matched_at,
            detail=detail,
        )
        if success:
            LOGGER.info(
                "Rule %s (%s) applied %s to article %s (matches=%s)",
                rule.id,
                rule.name,
                rule.action_type.value,
                article.id,
                match_count,
            )
        else:
            LOGGER.warning(
                "Rule %s (%s) could not apply %s to article %s: %s",
                rule.id,
                rule.name,
                rule.action_type.value,
                article.id,
                detail,
            )
        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception:
                LOGGER.exception("Outcome subscriber failed for rule %s on article %s", rule.id, article.id)
        return outcome

    async def _mark_read(self, rule: Rule, article: Article) -> _HandlerResult:
        return await asyncio.to_thread(self._state.set_read_state, article.id, True), "marked read"

    async def _mark_unread(self, rule: Rule, article: Article) -> _HandlerResult:
        return await asyncio.to_thread(self._state.set_read_state, article.id, False), "marked unread"

    async def _mark_starred(self, rule: Rule, article: Article) -> _HandlerResult:
        return await asyncio.to_thread(self._state.set_starred, article.id, True), "starred"

    async def _move_to_category(self, rule: Rule, article: Article) -> _HandlerResult:
        if rule.category_id is None:
            return False, "no category configured"
        if article.feed_id is None:
            return False, "article has no feed"
        moved = await asyncio.to_thread(self._categories.move_feed_to_category, article.feed_id, rule.category_id)
        return moved, f"feed {article.feed_id} moved to category {rule.category_id}"

    async def _apply_tags(self, rule: Rule, article: Article) -> _HandlerResult:
        if not rule.tag_ids:
            return False, "no tags configured"
        applied: List[int] = []
        failed: List[int] = []
        for tag_id in rule.tag_ids:
            ok = await asyncio.to_thread(
                self._tags.apply_tag,
                article.id,
                tag_id,
                applied_by=self._config.applied_by,
                rule_id=rule.id,
                confidence=self._config.tag_confidence,
            )
            if ok:
                applied.append(tag_id)
            else:
                failed.append(tag_id)

        applied_text = ", ".join(str(tag_id) for tag_id in applied) or "none"
        if failed:
            # Tags applied before a failure are kept; the action still fails.
            LOGGER.warning(
                "Rule %s left article %s partially tagged: applied=[%s], failed=[%s]",
                rule.id,
                article.id,
                applied_text,
                ", ".join(str(tag_id) for tag_id in failed),
            )
            return False, f"tags not applied: {', '.join(str(tag_id) for tag_id in failed)} (applied: {applied_text})"
        return True, f"tags applied: {applied_text}"

    async def _notify(self, rule: Rule, article: Article) -> _HandlerResult:
        delivered = await self._notifier.notify(article, rule, rule.notification_priority)
        return bool(delivered), f"notification sent ({rule.notification_priority.value})"
