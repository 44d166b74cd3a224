"""Notifier adapter that writes notifications to the log.

Useful for dry runs and for installations without Telegram credentials.
"""

from __future__ import annotations

import logging

from adapters.notification_formatting import format_notification
from core.models import Article, NotificationPriority, Rule

LOGGER = logging.getLogger(__name__)

_LEVELS = {
    NotificationPriority.LOW: logging.DEBUG,
    NotificationPriority.NORMAL: logging.INFO,
    NotificationPriority.HIGH: logging.WARNING,
    NotificationPriority.CRITICAL: logging.ERROR,
}


class LogNotifier:
    def __init__(self, snippet_chars: int = 400) -> None:
        self._snippet_chars = snippet_chars

    async def notify(self, article: Article, rule: Rule, priority: NotificationPriority) -> bool:
        message = format_notification(article, rule, priority, self._snippet_chars, mode="plain")
        LOGGER.log(_LEVELS[priority], "%s", message)
        return True
