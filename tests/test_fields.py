from __future__ import annotations

from datetime import datetime, timezone

from core.fields import extract_field, field_as_text, is_blank
from core.models import Article, FieldTarget


def _article(**overrides) -> Article:
    values = dict(
        id=1,
        feed_id=10,
        title="Cuba libre",
        content="<p>Rum and cola</p>",
        summary="A classic drink",
        author=None,
        published_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        link="https://example.com/cuba",
        category_names=frozenset({"Drinks", "Recipes"}),
        tag_names=frozenset({"cocktail"}),
    )
    values.update(overrides)
    return Article(**values)


def test_absent_text_field_yields_empty_string() -> None:
    assert extract_field(_article(), FieldTarget.AUTHOR) == ""


def test_published_date_yields_datetime_or_none() -> None:
    assert extract_field(_article(), FieldTarget.PUBLISHED_DATE) == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert extract_field(_article(published_at=None), FieldTarget.PUBLISHED_DATE) is None


def test_category_and_tag_targets_yield_name_sets() -> None:
    article = _article()
    assert extract_field(article, FieldTarget.CATEGORY) == frozenset({"Drinks", "Recipes"})
    assert extract_field(article, FieldTarget.TAG) == frozenset({"cocktail"})


def test_all_fields_joins_title_content_and_summary() -> None:
    text = extract_field(_article(), FieldTarget.ALL_FIELDS)
    assert "Cuba libre" in text
    assert "Rum and cola" in text
    assert "A classic drink" in text


def test_field_as_text_renders_sets_sorted() -> None:
    assert field_as_text(frozenset({"b", "a"})) == "a, b"
    assert field_as_text(None) == ""


def test_is_blank() -> None:
    assert is_blank(None)
    assert is_blank("   ")
    assert is_blank(frozenset())
    assert not is_blank("x")
    assert not is_blank(datetime(2024, 1, 1))
