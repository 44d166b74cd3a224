"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _default_concurrency() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(frozen=True)
class BatchConfig:
    """Fan-out settings for batch evaluation."""

    max_concurrency: int = field(default_factory=_default_concurrency)

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")


@dataclass(frozen=True)
class ActionConfig:
    """Settings consumed by the action executor."""

    tag_confidence: float = 1.0
    applied_by: str = "rule"

    def __post_init__(self) -> None:
        if not 0.0 <= self.tag_confidence <= 1.0:
            raise ValueError("tag_confidence must be between 0.0 and 1.0")


@dataclass(frozen=True)
class NotificationConfig:
    """Notification formatting settings consumed by notifier adapters."""

    snippet_chars: int = 400
