"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
import re
from typing import Callable

from core.fields import field_as_text
from core.models import Article, NotificationPriority, Rule

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")

_PRIORITY_MARKS = {
    NotificationPriority.LOW: "",
    NotificationPriority.NORMAL: "",
    NotificationPriority.HIGH: "[!] ",
    NotificationPriority.CRITICAL: "[!!!] ",
}


def clip_snippet(text: str, limit: int) -> str:
    """Strip markup, collapse whitespace and clip to ``limit`` characters."""

    plain = _SPACE_RE.sub(" ", _TAG_RE.sub(" ", html.unescape(text or ""))).strip()
    if limit <= 0 or len(plain) <= limit:
        return plain
    return plain[: max(0, limit - 3)].rstrip() + "..."


def format_source_label(article: Article) -> str:
    """Return a human-friendly source label for the article's feed."""

    if article.feed_title:
        return article.feed_title
    if article.feed_id is not None:
        return f"feed {article.feed_id}"
    return "unknown feed"


def render_template(
    template: str,
    article: Article,
    rule: Rule,
    snippet_chars: int,
    escape: Callable[[str], str] = lambda value: value,
) -> str:
    """Substitute ``{Placeholder}`` tokens; unknown tokens are left untouched."""

    summary = article.summary or article.content or ""
    values = {
        "Title": article.title,
        "Summary": clip_snippet(summary, snippet_chars),
        "Content": clip_snippet(article.content or "", snippet_chars),
        "Author": article.author or "",
        "Link": article.link or "",
        "Source": format_source_label(article),
        "Published": field_as_text(article.published_at) or "",
        "Rule": rule.name,
    }
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{" + key + "}", escape(value))
    return rendered


def _format_markdown(article: Article, rule: Rule, priority: NotificationPriority, snippet_chars: int) -> str:
    """Create the Markdown notification body used by Saved Messages."""

    def escape_md(value: str) -> str:
        for ch in r"*[`":
            value = value.replace(ch, f"\\{ch}")
        return value

    divider = "──────────────"
    body = render_template(rule.notification_template, article, rule, snippet_chars, escape_md)
    lines = [
        f"{_PRIORITY_MARKS[priority]}**Rule:**   {escape_md(rule.name)}",
        divider,
        "",
        body,
    ]
    if article.link and "{Link}" not in rule.notification_template:
        lines.extend(["", "**Link:**", article.link])
    lines.append(divider)
    return "\n".join(lines)


def _format_html(article: Article, rule: Rule, priority: NotificationPriority, snippet_chars: int) -> str:
    """Create the HTML notification body used by the Bot API adapter."""

    body = render_template(rule.notification_template, article, rule, snippet_chars, html.escape)
    parts = [
        f"{html.escape(_PRIORITY_MARKS[priority])}<b>Rule:</b> {html.escape(rule.name)}",
        "──────────────",
        "",
        body,
    ]
    if article.link and "{Link}" not in rule.notification_template:
        safe_link = html.escape(article.link)
        parts.extend(["", "<b>Link:</b>", f"<a href=\"{safe_link}\">{safe_link}</a>"])
    parts.append("──────────────")
    return "\n".join(parts)


def _format_plain(article: Article, rule: Rule, priority: NotificationPriority, snippet_chars: int) -> str:
    body = render_template(rule.notification_template, article, rule, snippet_chars)
    return f"{_PRIORITY_MARKS[priority]}[{priority.value}] {rule.name}: {body}"


def format_notification(
    article: Article,
    rule: Rule,
    priority: NotificationPriority,
    snippet_chars: int,
    mode: str,
) -> str:
    """Return the notification formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(article, rule, priority, snippet_chars)
    if mode == "html":
        return _format_html(article, rule, priority, snippet_chars)
    if mode == "plain":
        return _format_plain(article, rule, priority, snippet_chars)
    raise ValueError(f"Unsupported notification format: {mode}")
