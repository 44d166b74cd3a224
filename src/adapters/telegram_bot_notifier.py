"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so notifications can be routed via a bot chat.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request

from adapters.notification_formatting import format_notification
from core.models import Article, NotificationPriority, Rule

LOGGER = logging.getLogger(__name__)


class TelegramBotNotifier:
    """Notifier adapter that sends messages via the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, snippet_chars: int = 400, timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._snippet_chars = snippet_chars
        self._timeout = timeout

    def _endpoint(self) -> str:
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, payload: dict) -> None:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {body}") from e

    async def notify(self, article: Article, rule: Rule, priority: NotificationPriority) -> bool:
        """Send the formatted notification via the Bot API."""

        message = format_notification(article, rule, priority, self._snippet_chars, mode="html")
        payload = {
            "chat_id": self._chat_id,
            "text": message,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
            # Low priority alerts arrive silently.
            "disable_notification": priority is NotificationPriority.LOW,
        }
        # urllib blocks, so the request runs on a worker thread.
        await asyncio.to_thread(self._post, payload)
        LOGGER.debug("Bot notification sent for article %s (rule %s)", article.id, rule.id)
        return True
