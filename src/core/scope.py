"""Helpers for working with rule scope id lists.

Rules store their feed and category scope as JSON list text (``"[1, 2]"``),
which is what the authoring surface writes. Parsing happens here so the
matcher can treat a malformed list as "rule does not apply".
"""

from __future__ import annotations

import json
from typing import FrozenSet, Iterable, Optional


def parse_id_list(raw_ids: Optional[str]) -> Optional[FrozenSet[int]]:
    """Parse a JSON list of integer ids.

    Returns an empty set for empty input and None when the text is not a
    JSON list of integers.
    """

    if raw_ids is None or not raw_ids.strip():
        return frozenset()
    try:
        parsed = json.loads(raw_ids)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None

    ids: set[int] = set()
    for item in parsed:
        # bool is an int subclass; "true" in a feed list is an authoring error.
        if isinstance(item, bool):
            return None
        if isinstance(item, int):
            ids.add(item)
        elif isinstance(item, str) and item.strip().lstrip("-").isdigit():
            ids.add(int(item))
        else:
            return None
    return frozenset(ids)


def format_id_list(ids: Iterable[int]) -> str:
    """Return the canonical JSON text for a list of ids."""

    return json.dumps(sorted(set(int(value) for value in ids)))
