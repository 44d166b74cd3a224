"""Field extraction for rule conditions (core domain)."""

from __future__ import annotations

from datetime import datetime
from typing import FrozenSet, Union

from core.models import Article, FieldTarget

FieldValue = Union[str, datetime, FrozenSet[str], None]


def _combined_text(article: Article) -> str:
    parts = [article.title or "", article.content or "", article.summary or ""]
    return " ".join(part for part in parts if part).strip()


_TEXT_GETTERS = {
    FieldTarget.TITLE: lambda article: article.title or "",
    FieldTarget.CONTENT: lambda article: article.content or "",
    FieldTarget.SUMMARY: lambda article: article.summary or "",
    FieldTarget.AUTHOR: lambda article: article.author or "",
    FieldTarget.LINK: lambda article: article.link or "",
    FieldTarget.ALL_FIELDS: _combined_text,
    FieldTarget.ANY_FIELD: _combined_text,
}


def extract_field(article: Article, target: FieldTarget) -> FieldValue:
    """Return the value of ``target`` for an article.

    Text targets yield a string (empty when the field is absent), the
    published date yields a datetime or None, and category/tag targets yield
    a frozenset of names so operators can test membership.
    """

    if target is FieldTarget.PUBLISHED_DATE:
        return article.published_at
    if target is FieldTarget.CATEGORY:
        return frozenset(article.category_names)
    if target is FieldTarget.TAG:
        return frozenset(article.tag_names)
    getter = _TEXT_GETTERS.get(target)
    if getter is None:
        return ""
    return getter(article)


def field_as_text(value: FieldValue) -> str:
    """Render an extracted value as text for display or sample testing."""

    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, frozenset):
        return ", ".join(sorted(value))
    return value


def is_blank(value: FieldValue) -> bool:
    if value is None:
        return True
    if isinstance(value, frozenset):
        return not any(name.strip() for name in value)
    if isinstance(value, datetime):
        return False
    return not value.strip()
