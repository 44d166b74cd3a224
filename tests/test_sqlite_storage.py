from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.actions import ActionExecutor
from core.models import ActionType, Condition, FieldTarget, LogicalOperator, Operator, Rule, RuleScope
from core.processor import ArticleProcessor

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class NullNotifier:
    async def notify(self, article, rule, priority) -> bool:
        return True


def _storage(tmp_path: Path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "feedsieve.db"))
    storage.init_db()
    return storage


def _seed(storage: SQLiteStorage) -> dict[str, int]:
    tech = storage.add_category("Tech")
    news = storage.add_category("News")
    feed = storage.add_feed("Rust Blog", "https://blog.rust-lang.org/feed.xml", category_id=tech)
    article = storage.add_article(
        feed,
        "Announcing Rust 1.80",
        content="Lazy cells are stable",
        author="The Release Team",
        published_at=NOW,
        category_ids=[news],
    )
    return {"tech": tech, "news": news, "feed": feed, "article": article}


def test_get_article_collects_categories_and_tags(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    ids = _seed(storage)
    tag = storage.add_tag("release")
    assert storage.apply_tag(ids["article"], tag, applied_by="rule", rule_id=1, confidence=0.5) is True

    article = storage.get_article(ids["article"])

    assert article is not None
    assert article.feed_title == "Rust Blog"
    assert article.published_at == NOW
    assert article.category_names == frozenset({"Tech", "News"})
    assert article.category_ids == frozenset({ids["tech"], ids["news"]})
    assert article.tag_names == frozenset({"release"})
    assert storage.get_article(999) is None


def test_apply_tag_records_provenance(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    ids = _seed(storage)
    tag = storage.add_tag("rust")

    assert storage.apply_tag(ids["article"], tag, applied_by="rule", rule_id=3, confidence=0.7) is True
    assert storage.apply_tag(ids["article"], 999, applied_by="rule", rule_id=3, confidence=0.7) is False

    (row,) = storage.get_article_tags(ids["article"])
    assert (row["name"], row["applied_by"], row["rule_id"], row["confidence"]) == ("rust", "rule", 3, 0.7)


def test_state_mutators(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    ids = _seed(storage)

    assert storage.set_read_state(ids["article"], True) is True
    assert storage.toggle_starred(ids["article"]) is True
    article = storage.get_article(ids["article"])
    assert article.is_read and article.is_starred
    assert storage.list_article_ids(only_unread=True) == []
    assert storage.set_read_state(999, True) is False


def test_move_feed_to_missing_category_fails(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    ids = _seed(storage)

    assert storage.move_feed_to_category(ids["feed"], 999) is False
    assert storage.move_feed_to_category(ids["feed"], ids["news"]) is True
    assert storage.get_feed_category(ids["feed"]) == ids["news"]


def test_save_rule_round_trips_and_keeps_statistics(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    rule = Rule(
        id=0,
        name="rust",
        conditions=(
            Condition(field=FieldTarget.TITLE, operator=Operator.CONTAINS, value="rust", combine_with_next=LogicalOperator.OR),
            Condition(field=FieldTarget.TAG, operator=Operator.EQUALS, value="rust", order=1),
        ),
        action_type=ActionType.APPLY_TAGS,
        tag_ids=(1, 2),
        scope=RuleScope.SPECIFIC_FEEDS,
        feed_ids="[1]",
    )

    saved = storage.save_rule(rule)
    assert saved.id > 0
    assert saved.tag_ids == (1, 2)
    assert [condition.combine_with_next for condition in saved.conditions] == [LogicalOperator.OR, LogicalOperator.AND]
    assert storage.increment_match(saved.id, NOW) == 1

    updated = storage.save_rule(Rule(id=0, name="rust", priority=5))
    assert updated.id == saved.id
    assert updated.priority == 5
    assert updated.conditions == ()
    assert updated.match_count == 1
    assert updated.last_match_date == NOW


def test_load_active_rules_orders_by_priority(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    storage.save_rule(Rule(id=0, name="late", priority=50))
    storage.save_rule(Rule(id=0, name="early", priority=1))
    storage.save_rule(Rule(id=0, name="off", priority=0, is_enabled=False))

    assert [rule.name for rule in storage.load_active_rules()] == ["early", "late"]
    assert len(storage.list_rules()) == 3


def test_increment_match_unknown_rule(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    assert storage.increment_match(123, NOW) is None


def test_top_rules_by_match_count(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    quiet = storage.save_rule(Rule(id=0, name="quiet"))
    busy = storage.save_rule(Rule(id=0, name="busy"))
    for _ in range(3):
        storage.increment_match(busy.id, NOW)

    assert [rule.name for rule in storage.top_rules_by_match_count(1)] == ["busy"]
    assert storage.get_rule(quiet.id).match_count == 0


def test_batch_against_sqlite_counts_every_match(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    feed = storage.add_feed("Rust Blog")
    article_ids = [storage.add_article(feed, f"Rust news {index}") for index in range(20)]
    rule = storage.save_rule(
        Rule(
            id=0,
            name="read rust",
            conditions=(Condition(field=FieldTarget.TITLE, operator=Operator.CONTAINS, value="rust"),),
            action_type=ActionType.MARK_AS_READ,
        )
    )
    executor = ActionExecutor(storage, storage, storage, NullNotifier(), storage)
    processor = ArticleProcessor(storage, storage, executor=executor)

    report = asyncio.run(processor.process_batch(article_ids))

    assert report.actions_succeeded == 20
    assert storage.get_rule(rule.id).match_count == 20
    assert storage.list_article_ids(only_unread=True) == []


def test_two_star_rules_leave_the_article_starred(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    feed = storage.add_feed("Rust Blog")
    article_id = storage.add_article(feed, "Rust release")
    for priority in (1, 2):
        storage.save_rule(
            Rule(
                id=0,
                name=f"star {priority}",
                priority=priority,
                conditions=(Condition(field=FieldTarget.TITLE, operator=Operator.CONTAINS, value="release"),),
                action_type=ActionType.MARK_AS_STARRED,
            )
        )
    executor = ActionExecutor(storage, storage, storage, NullNotifier(), storage)
    processor = ArticleProcessor(storage, storage, executor=executor)

    report = asyncio.run(processor.process_batch([article_id]))

    assert report.actions_succeeded == 2
    assert storage.get_article(article_id).is_starred is True


def test_set_starred_is_idempotent(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    ids = _seed(storage)

    assert storage.set_starred(ids["article"], True) is True
    assert storage.set_starred(ids["article"], True) is True
    assert storage.get_article(ids["article"]).is_starred is True
    assert storage.set_starred(ids["article"], False) is True
    assert storage.get_article(ids["article"]).is_starred is False
    assert storage.set_starred(999, True) is False


def test_save_rule_raises_when_the_saved_row_cannot_be_read(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    storage = _storage(tmp_path)
    monkeypatch.setattr(storage, "get_rule", lambda rule_id: None)

    with pytest.raises(RuntimeError, match="not found after saving"):
        storage.save_rule(Rule(id=0, name="ghost"))
