"""Application entry point for the feedsieve rule engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.log_notifier import LogNotifier
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from client import build_client
from core.actions import ActionExecutor
from core.models import Rule
from core.processor import ArticleProcessor
from core.reporting import describe_rule_conditions, format_time_ago, rule_health
from core.rules_engine import build_rules
from core.validation import validate_rule

NAME = "FEEDSIEVE"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/feedsieve.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _sync_rules(storage: SQLiteStorage) -> List[Rule]:
    """Upsert config.json rules into the database; invalid rules are skipped."""

    saved: List[Rule] = []
    for rule in build_rules(settings.RULES_CONFIG):
        result = validate_rule(rule)
        if not result.is_valid:
            LOGGER.warning("Skipping invalid rule %r: %s", rule.name, "; ".join(result.errors))
            continue
        saved.append(storage.save_rule(rule))
    LOGGER.info("%s rules are synced from %s", len(saved), settings.CONFIG_PATH)
    return saved


def _build_notifier(client=None):
    """Select the notification adapter based on configuration.

    The saved_messages method needs a started Telethon ``client``.
    """

    snippet_chars = settings.NOTIFICATIONS.snippet_chars
    method = settings.NOTIFICATION_METHOD
    if method == "bot":
        load_dotenv()
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notifications.method=bot")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("notifications.bot_chat_id is required for bot notifications")
        notifier = TelegramBotNotifier(bot_token=bot_token, chat_id=str(settings.BOT_CHAT_ID), snippet_chars=snippet_chars)
    elif method == "saved_messages":
        if client is None:
            raise RuntimeError("saved_messages notifications require a Telegram client")
        notifier = TelegramSavedMessagesNotifier(client, snippet_chars=snippet_chars)
    elif method == "log":
        notifier = LogNotifier(snippet_chars=snippet_chars)
    else:
        raise RuntimeError("notifications.method must be 'saved_messages', 'bot' or 'log'")
    LOGGER.info("Selected notification method - %s", method)
    return notifier


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    # Ctrl+C stops the batch between articles instead of mid-action.
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        LOGGER.debug("Signal handlers are not supported on this platform")


async def _run_batch(article_ids: Optional[List[int]]) -> None:
    storage = _open_storage()
    _sync_rules(storage)

    client = None
    if settings.NOTIFICATION_METHOD == "saved_messages":
        client = build_client()
        await client.start()
    try:
        notifier = _build_notifier(client)
        executor = ActionExecutor(
            state=storage,
            categories=storage,
            tags=storage,
            notifier=notifier,
            rule_store=storage,
            config=settings.ACTIONS,
        )
        processor = ArticleProcessor(storage, storage, executor=executor, config=settings.BATCH)

        ids = article_ids or storage.list_article_ids(only_unread=settings.ONLY_UNREAD)
        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        report = await processor.process_batch(ids, cancel_event=cancel_event)
    finally:
        if client is not None:
            await client.disconnect()
            LOGGER.info("Telegram client disconnected")
    print(
        f"Evaluated {report.articles_evaluated}/{len(ids)} articles: "
        f"{report.matches} matches, {report.actions_succeeded} actions ok, "
        f"{report.actions_failed} failed{' (cancelled)' if report.cancelled else ''}"
    )


async def _evaluate(article_ids: Optional[List[int]], rule_id: Optional[int]) -> None:
    storage = _open_storage()
    _sync_rules(storage)
    processor = ArticleProcessor(storage, storage, config=settings.BATCH)
    ids = article_ids or storage.list_article_ids()
    results = await processor.evaluate_batch(ids, rule_id=rule_id)
    for article_id in ids:
        if article_id not in results:
            continue
        outcome = results[article_id]
        if isinstance(outcome, bool):
            print(f"article {article_id}: {'match' if outcome else 'no match'}")
        else:
            names = ", ".join(rule.name for rule in outcome) or "-"
            print(f"article {article_id}: {names}")


async def _test(rule_id: int, sample_size: int) -> None:
    storage = _open_storage()
    _sync_rules(storage)
    processor = ArticleProcessor(storage, storage, config=settings.BATCH)
    result = await processor.test_rule(rule_id, storage.list_article_ids(limit=sample_size))
    if result is None:
        print(f"Rule {rule_id} not found")
        return
    print(
        f"{result.rule_name}: {result.matched_count}/{result.total_tested} matched "
        f"({result.average_evaluation_ms:.3f} ms/article)"
    )
    if result.matched_article_ids:
        print("Matched articles: " + ", ".join(str(article_id) for article_id in result.matched_article_ids))


def _validate() -> int:
    invalid = 0
    for rule in build_rules(settings.RULES_CONFIG):
        result = validate_rule(rule)
        if result.is_valid:
            print(f"OK   {rule.name}: {describe_rule_conditions(rule)}")
            continue
        invalid += 1
        print(f"FAIL {rule.name or '<unnamed>'}")
        for error in result.errors:
            print(f"     - {error}")
    return 1 if invalid else 0


def _stats(limit: int) -> None:
    storage = _open_storage()
    for rule in storage.top_rules_by_match_count(limit):
        print(
            f"{rule.id:>4} {rule.name:<30} matches={rule.match_count:<6} "
            f"last={format_time_ago(rule.last_match_date)} health={rule_health(rule).value}"
        )


def _parse_ids(raw: Optional[str]) -> Optional[List[int]]:
    if not raw:
        return None
    return [int(part) for part in raw.split(",") if part.strip()]


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="feedsieve")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Apply rules to articles and execute their actions")
    run_parser.add_argument("--articles", help="Comma-separated article ids (default: unread articles)")

    evaluate_parser = subparsers.add_parser("evaluate", help="Show which rules match, without side effects")
    evaluate_parser.add_argument("--articles", help="Comma-separated article ids (default: all articles)")
    evaluate_parser.add_argument("--rule", type=int, help="Evaluate a single rule id")

    subparsers.add_parser("validate", help="Validate the rules in config.json")

    test_parser = subparsers.add_parser("test", help="Dry-run one rule against recent articles")
    test_parser.add_argument("rule", type=int, help="Rule id")
    test_parser.add_argument("--sample", type=int, default=100, help="Number of recent articles")

    stats_parser = subparsers.add_parser("stats", help="Show the most frequently matching rules")
    stats_parser.add_argument("--limit", type=int, default=10)

    args = parser.parse_args(argv)
    _print_banner()
    _configure_logging()

    if args.command == "validate":
        raise SystemExit(_validate())
    if args.command == "evaluate":
        asyncio.run(_evaluate(_parse_ids(args.articles), args.rule))
        return
    if args.command == "test":
        asyncio.run(_test(args.rule, args.sample))
        return
    if args.command == "stats":
        _stats(args.limit)
        return
    asyncio.run(_run_batch(_parse_ids(getattr(args, "articles", None))))


if __name__ == "__main__":
    main()
