"""Core article processing pipeline.

This module is integration-agnostic. It only relies on ports for content,
rules and (through the action executor) side effects, enabling different
storage or notification adapters without changes here.

Per batch the pipeline:
1) Loads the active rule set once (a read-only snapshot)
2) Resolves each article id to a snapshot; unknown ids simply match nothing
3) Matches each article against the snapshot on a bounded worker pool
4) Executes the matched rules' actions in match order (process_batch only)
5) Checks the cancellation signal between articles, never mid-article
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from core.actions import ActionExecutor
from core.config import BatchConfig
from core.models import Article, BatchReport, Rule, RuleTestResult
from core.ports import ContentSource, RuleStore
from core.rules_engine import active_rules, evaluate_rule, match_rules

LOGGER = logging.getLogger(__name__)

BatchResult = Dict[int, Union[List[Rule], bool]]


class ArticleProcessor:
    """Orchestrates batch evaluation, action execution and rule dry-runs."""

    def __init__(
        self,
        content: ContentSource,
        rule_store: RuleStore,
        executor: Optional[ActionExecutor] = None,
        config: Optional[BatchConfig] = None,
    ) -> None:
        if content is None or rule_store is None:
            raise ValueError("ArticleProcessor requires a content source and a rule store")
        self._content = content
        self._rule_store = rule_store
        self._executor = executor
        self._config = config or BatchConfig()

    def _load_article(self, article_id: int) -> Optional[Article]:
        try:
            article = self._content.get_article(article_id)
        except Exception:
            LOGGER.exception("Failed to load article %s; treated as no match", article_id)
            return None
        if article is None:
            LOGGER.warning("Article %s not found; treated as no match", article_id)
        return article

    def _load_rules(self) -> List[Rule]:
        rules = active_rules(self._rule_store.load_active_rules())
        LOGGER.debug("%s active rules loaded for batch", len(rules))
        return rules

    def _match_one(self, article_id: int, rules: List[Rule]) -> Tuple[Optional[Article], List[Rule]]:
        article = self._load_article(article_id)
        if article is None:
            return None, []
        return article, match_rules(article, rules)

    def _evaluate_one(self, article_id: int, rule: Rule) -> bool:
        return evaluate_rule(rule, self._load_article(article_id))

    async def _fan_out(
        self,
        article_ids: List[int],
        work: Callable[[int], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[Dict[int, Any], bool]:
        """Run ``work`` per article on a bounded pool of workers.

        Workers share one iterator, so at most ``max_concurrency`` articles are
        in flight regardless of batch size.
        """

        results: Dict[int, Any] = {}
        cancelled = False
        pending = iter(article_ids)

        async def worker() -> None:
            nonlocal cancelled
            for article_id in pending:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    return
                results[article_id] = await work(article_id)

        worker_count = min(self._config.max_concurrency, len(article_ids))
        if worker_count:
            await asyncio.gather(*(worker() for _ in range(worker_count)))
        return results, cancelled

    async def evaluate_batch(
        self,
        article_ids: Iterable[int],
        rule_id: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Evaluate articles without executing any action.

        Without ``rule_id`` each article maps to its matched rules (in
        evaluation order). With ``rule_id`` each article maps to whether that
        single rule matches it.
        """

        ids = list(dict.fromkeys(article_ids))

        if rule_id is None:
            rules = self._load_rules()

            async def work(article_id: int) -> List[Rule]:
                _, matched = await asyncio.to_thread(self._match_one, article_id, rules)
                return matched

        else:
            rule = self._rule_store.get_rule(rule_id)
            if rule is None:
                LOGGER.warning("Rule %s not found; no article matches it", rule_id)
                return {article_id: False for article_id in ids}

            async def work(article_id: int) -> bool:
                return await asyncio.to_thread(self._evaluate_one, article_id, rule)

        results, cancelled = await self._fan_out(ids, work, cancel_event)
        if cancelled:
            LOGGER.info("Batch evaluation cancelled after %s of %s articles", len(results), len(ids))
        return results

    async def process_batch(
        self,
        article_ids: Iterable[int],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Evaluate articles and execute every matched rule's action once.

        A failed action is counted and logged; it never stops the remaining
        rules or articles. Cancellation leaves executed actions in place.
        """

        if self._executor is None:
            raise RuntimeError("process_batch requires an ActionExecutor")

        ids = list(dict.fromkeys(article_ids))
        rules = self._load_rules()
        report = BatchReport()

        async def work(article_id: int) -> int:
            article, matched = await asyncio.to_thread(self._match_one, article_id, rules)
            report.articles_evaluated += 1
            if article is None:
                return 0
            report.matches += len(matched)
            # Actions for one article run in match (priority) order.
            for rule in matched:
                outcome = await self._executor.run(rule, article)
                report.outcomes.append(outcome)
                if outcome.success:
                    report.actions_succeeded += 1
                else:
                    report.actions_failed += 1
            return len(matched)

        _, report.cancelled = await self._fan_out(ids, work, cancel_event)

        LOGGER.info(
            "Batch complete: articles=%s/%s, matches=%s, actions_ok=%s, actions_failed=%s, cancelled=%s",
            report.articles_evaluated,
            len(ids),
            report.matches,
            report.actions_succeeded,
            report.actions_failed,
            report.cancelled,
        )
        return report

    async def test_rule(self, rule_id: int, sample_article_ids: Iterable[int]) -> Optional[RuleTestResult]:
        """Dry-run one rule against sample articles and time the evaluation."""

        rule = self._rule_store.get_rule(rule_id)
        if rule is None:
            LOGGER.warning("Rule %s not found for testing", rule_id)
            return None

        ids = list(dict.fromkeys(sample_article_ids))
        started = time.perf_counter()
        results = await self.evaluate_batch(ids, rule_id=rule.id)
        elapsed_ms = (time.perf_counter() - started) * 1000

        matched_ids = [article_id for article_id in ids if results.get(article_id)]
        return RuleTestResult(
            rule_name=rule.name,
            total_tested=len(ids),
            matched_count=len(matched_ids),
            matched_article_ids=matched_ids,
            average_evaluation_ms=elapsed_ms / len(ids) if ids else 0.0,
        )
