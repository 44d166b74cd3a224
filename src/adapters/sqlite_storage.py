"""SQLite storage adapter.

Implements the core ContentSource, RuleStore and mutator ports using a
simple SQLite database. Every call opens its own short-lived connection, so
the adapter can be used from the batch coordinator's worker threads.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional

from core.models import (
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


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the storage port contracts."""

    def __init__(self, db_path: str, timeout: float = 10.0) -> None:
        self._db_path = db_path
        self._timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - categories / feeds / articles: the content the rules run against
        - article_categories: extra category links per article
        - tags / article_tags: tag catalogue and applied tags with provenance
        - rules / rule_conditions: rule definitions and match statistics
        """

        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS feeds (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    url TEXT,
                    category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL
                )
                """
            )
            # published_at is stored as ISO-8601 text; is_read/is_starred are 0/1.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feed_id INTEGER REFERENCES feeds(id) ON DELETE CASCADE,
                    title TEXT NOT NULL DEFAULT '',
                    content TEXT,
                    summary TEXT,
                    author TEXT,
                    published_at TEXT,
                    link TEXT,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    is_starred INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS article_categories (
                    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
                    category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
                    PRIMARY KEY (article_id, category_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                )
                """
            )
            # applied_by/rule_id/confidence record who applied the tag and how sure it was.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS article_tags (
                    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
                    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
                    applied_by TEXT NOT NULL,
                    rule_id INTEGER,
                    confidence REAL NOT NULL DEFAULT 1.0,
                    applied_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (article_id, tag_id)
                )
                """
            )
            # feed_ids/category_ids/tag_ids are JSON list text, as the authoring
            # surface writes them. match_count/last_match_date are only written
            # by increment_match.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT,
                    action_type TEXT NOT NULL,
                    category_id INTEGER,
                    tag_ids TEXT NOT NULL DEFAULT '[]',
                    notification_priority TEXT NOT NULL,
                    notification_template TEXT NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 100,
                    is_enabled INTEGER NOT NULL DEFAULT 1,
                    stop_on_match INTEGER NOT NULL DEFAULT 0,
                    scope TEXT NOT NULL,
                    feed_ids TEXT NOT NULL DEFAULT '[]',
                    category_ids TEXT NOT NULL DEFAULT '[]',
                    group_logic TEXT NOT NULL DEFAULT 'and',
                    match_count INTEGER NOT NULL DEFAULT 0,
                    last_match_date TIMESTAMP,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rule_conditions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id INTEGER NOT NULL REFERENCES rules(id) ON DELETE CASCADE,
                    field TEXT NOT NULL,
                    operator TEXT NOT NULL,
                    value TEXT,
                    value2 TEXT,
                    regex_pattern TEXT,
                    case_sensitive INTEGER NOT NULL DEFAULT 0,
                    negate INTEGER NOT NULL DEFAULT 0,
                    group_id INTEGER NOT NULL DEFAULT 0,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    combine_with_next TEXT NOT NULL DEFAULT 'and'
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rules_enabled_priority ON rules (is_enabled, priority)"
            )

    # Content -----------------------------------------------------------

    def add_category(self, name: str) -> int:
        with self._connection() as conn:
            conn.execute("INSERT OR IGNORE INTO categories (name) VALUES (?)", (name,))
            row = conn.execute("SELECT id FROM categories WHERE name = ?", (name,)).fetchone()
        return int(row["id"])

    def add_feed(self, title: str, url: Optional[str] = None, category_id: Optional[int] = None) -> int:
        with self._connection() as conn:
            cur = conn.execute(
                "INSERT INTO feeds (title, url, category_id) VALUES (?, ?, ?)",
                (title, url, category_id),
            )
            return int(cur.lastrowid)

    def add_tag(self, name: str) -> int:
        with self._connection() as conn:
            conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
            row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
        return int(row["id"])

    def add_article(
        self,
        feed_id: Optional[int],
        title: str,
        content: Optional[str] = None,
        summary: Optional[str] = None,
        author: Optional[str] = None,
        published_at: Optional[datetime] = None,
        link: Optional[str] = None,
        category_ids: Iterable[int] = (),
    ) -> int:
        with self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO articles (feed_id, title, content, summary, author, published_at, link)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (feed_id, title, content, summary, author, _to_iso(published_at), link),
            )
            article_id = int(cur.lastrowid)
            conn.executemany(
                "INSERT OR IGNORE INTO article_categories (article_id, category_id) VALUES (?, ?)",
                [(article_id, category_id) for category_id in category_ids],
            )
        return article_id

    def list_article_ids(self, only_unread: bool = False, limit: Optional[int] = None) -> List[int]:
        """Return article ids, newest first."""

        query = "SELECT id FROM articles"
        if only_unread:
            query += " WHERE is_read = 0"
        query += " ORDER BY id DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [int(row["id"]) for row in rows]

    def get_article(self, article_id: int) -> Optional[Article]:
        """Return the article snapshot, including category and tag names."""

        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT a.*, f.title AS feed_title, f.category_id AS feed_category_id
                FROM articles a
                LEFT JOIN feeds f ON f.id = a.feed_id
                WHERE a.id = ?
                """,
                (article_id,),
            ).fetchone()
            if row is None:
                return None
            category_rows = conn.execute(
                """
                SELECT c.id, c.name FROM categories c
                WHERE c.id IN (SELECT category_id FROM article_categories WHERE article_id = ?)
                   OR c.id = ?
                """,
                (article_id, row["feed_category_id"]),
            ).fetchall()
            tag_rows = conn.execute(
                """
                SELECT t.name FROM tags t
                JOIN article_tags at ON at.tag_id = t.id
                WHERE at.article_id = ?
                """,
                (article_id,),
            ).fetchall()

        return Article(
            id=int(row["id"]),
            feed_id=row["feed_id"],
            title=row["title"] or "",
            content=row["content"],
            summary=row["summary"],
            author=row["author"],
            published_at=_from_iso(row["published_at"]),
            link=row["link"],
            category_ids=frozenset(int(item["id"]) for item in category_rows),
            category_names=frozenset(item["name"] for item in category_rows),
            tag_names=frozenset(item["name"] for item in tag_rows),
            feed_title=row["feed_title"],
            is_read=bool(row["is_read"]),
            is_starred=bool(row["is_starred"]),
        )

    def get_feed_category(self, feed_id: int) -> Optional[int]:
        with self._connection() as conn:
            row = conn.execute("SELECT category_id FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return row["category_id"] if row else None

    def get_article_tags(self, article_id: int) -> List[sqlite3.Row]:
        with self._connection() as conn:
            return conn.execute(
                """
                SELECT t.name, at.applied_by, at.rule_id, at.confidence
                FROM article_tags at JOIN tags t ON t.id = at.tag_id
                WHERE at.article_id = ?
                ORDER BY t.name
                """,
                (article_id,),
            ).fetchall()

    # Mutators ----------------------------------------------------------

    def set_read_state(self, article_id: int, is_read: bool) -> bool:
        with self._connection() as conn:
            cur = conn.execute("UPDATE articles SET is_read = ? WHERE id = ?", (int(is_read), article_id))
            return cur.rowcount > 0

    def set_starred(self, article_id: int, is_starred: bool) -> bool:
        with self._connection() as conn:
            cur = conn.execute("UPDATE articles SET is_starred = ? WHERE id = ?", (int(is_starred), article_id))
            return cur.rowcount > 0

    def toggle_starred(self, article_id: int) -> bool:
        with self._connection() as conn:
            cur = conn.execute("UPDATE articles SET is_starred = 1 - is_starred WHERE id = ?", (article_id,))
            return cur.rowcount > 0

    def move_feed_to_category(self, feed_id: int, category_id: int) -> bool:
        """Move a feed; returns False when the feed or the category no longer exists."""

        with self._connection() as conn:
            exists = conn.execute("SELECT 1 FROM categories WHERE id = ?", (category_id,)).fetchone()
            if exists is None:
                return False
            cur = conn.execute("UPDATE feeds SET category_id = ? WHERE id = ?", (category_id, feed_id))
            return cur.rowcount > 0

    def apply_tag(
        self,
        article_id: int,
        tag_id: int,
        applied_by: str,
        rule_id: int,
        confidence: float,
    ) -> bool:
        """Attach a tag with provenance; returns False for unknown articles or tags."""

        with self._connection() as conn:
            tag = conn.execute("SELECT 1 FROM tags WHERE id = ?", (tag_id,)).fetchone()
            article = conn.execute("SELECT 1 FROM articles WHERE id = ?", (article_id,)).fetchone()
            if tag is None or article is None:
                return False
            conn.execute(
                """
                INSERT INTO article_tags (article_id, tag_id, applied_by, rule_id, confidence, applied_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(article_id, tag_id) DO UPDATE SET
                    applied_by = excluded.applied_by,
                    rule_id = excluded.rule_id,
                    confidence = excluded.confidence,
                    applied_at = excluded.applied_at
                """,
                (article_id, tag_id, applied_by, rule_id, confidence, datetime.now(timezone.utc).isoformat()),
            )
        return True

    # Rules -------------------------------------------------------------

    def save_rule(self, rule: Rule) -> Rule:
        """Upsert a rule definition by name, keeping its match statistics."""

        now = datetime.now(timezone.utc).isoformat()
        definition = (
            rule.description,
            rule.action_type.value,
            rule.category_id,
            json.dumps(list(rule.tag_ids)),
            rule.notification_priority.value,
            rule.notification_template,
            rule.priority,
            int(rule.is_enabled),
            int(rule.stop_on_match),
            rule.scope.value,
            rule.feed_ids,
            rule.category_ids,
            rule.group_logic.value,
        )
        with self._connection() as conn:
            row = conn.execute("SELECT id FROM rules WHERE name = ?", (rule.name,)).fetchone()
            if row is not None:
                rule_id = int(row["id"])
                conn.execute(
                    """
                    UPDATE rules SET
                        description = ?, action_type = ?, category_id = ?, tag_ids = ?,
                        notification_priority = ?, notification_template = ?, priority = ?,
                        is_enabled = ?, stop_on_match = ?, scope = ?, feed_ids = ?,
                        category_ids = ?, group_logic = ?
                    WHERE id = ?
                    """,
                    definition + (rule_id,),
                )
            else:
                cur = conn.execute(
                    """
                    INSERT INTO rules (
                        description, action_type, category_id, tag_ids,
                        notification_priority, notification_template, priority,
                        is_enabled, stop_on_match, scope, feed_ids, category_ids,
                        group_logic, name, match_count, last_match_date, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    definition + (rule.name, rule.match_count, _to_iso(rule.last_match_date), now),
                )
                rule_id = int(cur.lastrowid)

            conn.execute("DELETE FROM rule_conditions WHERE rule_id = ?", (rule_id,))
            conn.executemany(
                """
                INSERT INTO rule_conditions (
                    rule_id, field, operator, value, value2, regex_pattern,
                    case_sensitive, negate, group_id, sort_order, combine_with_next
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        rule_id,
                        condition.field.value,
                        condition.operator.value,
                        condition.value,
                        condition.value2,
                        condition.regex_pattern,
                        int(condition.case_sensitive),
                        int(condition.negate),
                        condition.group_id,
                        condition.order,
                        condition.combine_with_next.value,
                    )
                    for condition in rule.conditions
                ],
            )

        saved = self.get_rule(rule_id)
        if saved is None:
            raise RuntimeError(f"Rule {rule.name!r} was not found after saving")
        return saved

    def delete_rule(self, rule_id: int) -> bool:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            return cur.rowcount > 0

    def _conditions_by_rule(self, conn: sqlite3.Connection, rule_ids: List[int]) -> Dict[int, List[Condition]]:
        grouped: Dict[int, List[Condition]] = {rule_id: [] for rule_id in rule_ids}
        if not rule_ids:
            return grouped
        placeholders = ", ".join("?" for _ in rule_ids)
        rows = conn.execute(
            f"SELECT * FROM rule_conditions WHERE rule_id IN ({placeholders}) ORDER BY rule_id, group_id, sort_order, id",
            rule_ids,
        ).fetchall()
        for row in rows:
            grouped[int(row["rule_id"])].append(
                Condition(
                    id=int(row["id"]),
                    field=FieldTarget(row["field"]),
                    operator=Operator(row["operator"]),
                    value=row["value"],
                    value2=row["value2"],
                    regex_pattern=row["regex_pattern"],
                    case_sensitive=bool(row["case_sensitive"]),
                    negate=bool(row["negate"]),
                    group_id=int(row["group_id"]),
                    order=int(row["sort_order"]),
                    combine_with_next=LogicalOperator(row["combine_with_next"]),
                )
            )
        return grouped

    def _rules_from_rows(self, conn: sqlite3.Connection, rows: List[sqlite3.Row]) -> List[Rule]:
        conditions = self._conditions_by_rule(conn, [int(row["id"]) for row in rows])
        return [
            Rule(
                id=int(row["id"]),
                name=row["name"],
                conditions=tuple(conditions[int(row["id"])]),
                action_type=ActionType(row["action_type"]),
                category_id=row["category_id"],
                tag_ids=tuple(int(tag_id) for tag_id in json.loads(row["tag_ids"] or "[]")),
                notification_priority=NotificationPriority(row["notification_priority"]),
                notification_template=row["notification_template"],
                priority=int(row["priority"]),
                is_enabled=bool(row["is_enabled"]),
                stop_on_match=bool(row["stop_on_match"]),
                scope=RuleScope(row["scope"]),
                feed_ids=row["feed_ids"],
                category_ids=row["category_ids"],
                group_logic=LogicalOperator(row["group_logic"]),
                match_count=int(row["match_count"]),
                last_match_date=_from_iso(row["last_match_date"]),
                description=row["description"],
                created_at=_from_iso(row["created_at"]),
            )
            for row in rows
        ]

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchall()
            rules = self._rules_from_rows(conn, rows)
        return rules[0] if rules else None

    def list_rules(self) -> List[Rule]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM rules ORDER BY priority, id").fetchall()
            return self._rules_from_rows(conn, rows)

    def load_active_rules(self) -> List[Rule]:
        """Return enabled rules ordered by priority, then id."""

        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM rules WHERE is_enabled = 1 ORDER BY priority, id").fetchall()
            return self._rules_from_rows(conn, rows)

    def top_rules_by_match_count(self, limit: int = 10) -> List[Rule]:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM rules ORDER BY match_count DESC, id LIMIT ?",
                (limit,),
            ).fetchall()
            return self._rules_from_rows(conn, rows)

    def increment_match(self, rule_id: int, matched_at: datetime) -> Optional[int]:
        """Atomically increment match_count and return the new value.

        The increment happens inside a single write transaction, so concurrent
        executors never lose an update.
        """

        with self._connection() as conn:
            cur = conn.execute(
                "UPDATE rules SET match_count = match_count + 1, last_match_date = ? WHERE id = ?",
                (matched_at.isoformat(), rule_id),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT match_count FROM rules WHERE id = ?", (rule_id,)).fetchone()
        return int(row["match_count"])
