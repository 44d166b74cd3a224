"""Static configuration for feedsieve.

All user-editable settings (database, rules, notifications, batch and
logging) live in a single JSON file for quick edits without touching Python.
"""

import json
import os

from core.config import ActionConfig, BatchConfig, NotificationConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# FEEDSIEVE_CONFIG points at an alternative config file, e.g. per environment.
CONFIG_PATH = os.getenv("FEEDSIEVE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
DB_PATH = _resolve_path(_CONFIG.get("database", {}).get("path", "feedsieve.db"))

# Notification settings shared by all notifier adapters.
# - method: "saved_messages", "bot" or "log"
# - bot_chat_id: only required when method=bot
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("method", "log")
BOT_CHAT_ID = _notifications.get("bot_chat_id")
NOTIFICATIONS = NotificationConfig(snippet_chars=int(_notifications.get("snippet_chars", 400)))

# Batch fan-out; omitting max_concurrency uses the CPU-based default.
_batch = _CONFIG.get("batch", {})
BATCH = BatchConfig(max_concurrency=int(_batch["max_concurrency"])) if "max_concurrency" in _batch else BatchConfig()
# Only unread articles are processed by `run` unless this is disabled.
ONLY_UNREAD = bool(_batch.get("only_unread", True))

_actions = _CONFIG.get("actions", {})
ACTIONS = ActionConfig(
    tag_confidence=float(_actions.get("tag_confidence", 1.0)),
    applied_by=str(_actions.get("applied_by", "rule")),
)

# Rules are pulled directly from config.json and synced into the database.
RULES_CONFIG = _CONFIG.get("rules", [])

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
