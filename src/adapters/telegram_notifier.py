"""Telegram notification adapter for Saved Messages.

Formats a human-readable Markdown message and sends it to Saved Messages.
"""

from __future__ import annotations

from adapters.notification_formatting import format_notification
from core.models import Article, NotificationPriority, Rule


class TelegramSavedMessagesNotifier:
    """Notifier adapter that sends messages to the user's Saved Messages."""

    def __init__(self, client, snippet_chars: int = 400) -> None:
        self._client = client
        self._snippet_chars = snippet_chars

    async def notify(self, article: Article, rule: Rule, priority: NotificationPriority) -> bool:
        """Send the formatted notification to Saved Messages."""

        message = format_notification(article, rule, priority, self._snippet_chars, mode="markdown")
        if not self._client.is_connected():
            await self._client.connect()
        await self._client.send_message(
            "me",
            message,
            parse_mode="Markdown",
            silent=priority is NotificationPriority.LOW,
        )
        return True
