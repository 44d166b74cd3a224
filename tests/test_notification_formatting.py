from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from adapters.log_notifier import LogNotifier
from adapters.notification_formatting import clip_snippet, format_notification, format_source_label, render_template
from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.models import Article, NotificationPriority, Rule


def _article(**overrides) -> Article:
    values = dict(
        id=1,
        feed_id=3,
        title="Rust *1.80*",
        summary="<p>Lazy   cells &amp; more</p>",
        author="Release Team",
        published_at=datetime(2024, 7, 25, tzinfo=timezone.utc),
        link="https://example.com/rust",
        feed_title="Rust Blog",
    )
    values.update(overrides)
    return Article(**values)


def test_format_source_label_falls_back_to_feed_id() -> None:
    assert format_source_label(_article()) == "Rust Blog"
    assert format_source_label(_article(feed_title=None)) == "feed 3"
    assert format_source_label(_article(feed_title=None, feed_id=None)) == "unknown feed"


def test_clip_snippet_strips_markup_and_clips() -> None:
    assert clip_snippet("<p>Lazy   cells &amp; more</p>", 100) == "Lazy cells & more"
    assert clip_snippet("a" * 20, 10) == "aaaaaaa..."


def test_render_template_replaces_known_placeholders() -> None:
    rule = Rule(id=1, name="rust", notification_template="{Title} by {Author} via {Source} [{Unknown}]")
    assert render_template(rule.notification_template, _article(), rule, 100) == (
        "Rust *1.80* by Release Team via Rust Blog [{Unknown}]"
    )


def test_default_template_uses_title_and_source() -> None:
    text = format_notification(_article(), Rule(id=1, name="rust"), NotificationPriority.NORMAL, 100, mode="plain")
    assert text == "[normal] rust: Rust *1.80*\n\nRust Blog"


def test_markdown_escapes_and_appends_link() -> None:
    text = format_notification(_article(), Rule(id=1, name="rust"), NotificationPriority.HIGH, 100, mode="markdown")
    assert "Rust \\*1.80\\*" in text
    assert text.startswith("[!] **Rule:**")
    assert "https://example.com/rust" in text


def test_html_escapes_values() -> None:
    rule = Rule(id=1, name="a<b", notification_template="{Summary}")
    text = format_notification(_article(), rule, NotificationPriority.NORMAL, 100, mode="html")
    assert "<b>Rule:</b> a&lt;b" in text
    assert "Lazy cells &amp; more" in text


def test_unknown_mode_raises() -> None:
    with pytest.raises(ValueError):
        format_notification(_article(), Rule(id=1, name="r"), NotificationPriority.LOW, 10, mode="xml")


def test_log_notifier_logs_by_priority(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="adapters.log_notifier")
    delivered = asyncio.run(LogNotifier().notify(_article(), Rule(id=1, name="rust"), NotificationPriority.HIGH))
    assert delivered is True
    assert caplog.records[-1].levelno == logging.WARNING
    assert "rust" in caplog.records[-1].getMessage()


def test_bot_notifier_posts_html_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    notifier = TelegramBotNotifier(bot_token="token", chat_id="123")
    payloads: list[dict] = []
    monkeypatch.setattr(notifier, "_post", payloads.append)

    delivered = asyncio.run(notifier.notify(_article(), Rule(id=1, name="rust"), NotificationPriority.LOW))

    assert delivered is True
    assert payloads[0]["chat_id"] == "123"
    assert payloads[0]["parse_mode"] == "HTML"
    assert payloads[0]["disable_notification"] is True
