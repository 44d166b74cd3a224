from __future__ import annotations

import asyncio
import importlib
import json
from pathlib import Path

import pytest


class FakeClient:
    def __init__(self) -> None:
        self.started = False
        self.disconnected = False

    async def start(self) -> None:
        self.started = True

    async def disconnect(self) -> None:
        self.disconnected = True

    def is_connected(self) -> bool:
        return self.started and not self.disconnected


@pytest.fixture()
def app_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "database": {"path": str(tmp_path / "feedsieve.db")},
                "notifications": {"method": "saved_messages"},
                "rules": [{"name": "rust", "field": "title", "operator": "contains", "value": "rust"}],
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("FEEDSIEVE_CONFIG", str(config_path))
    importlib.reload(importlib.import_module("settings"))
    return importlib.reload(importlib.import_module("app"))


def test_run_disconnects_the_telegram_client(app_module, monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeClient()
    monkeypatch.setattr(app_module, "build_client", lambda: client)

    asyncio.run(app_module._run_batch(None))

    assert client.started is True
    assert client.disconnected is True


def test_run_disconnects_the_client_when_the_batch_fails(app_module, monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeClient()
    monkeypatch.setattr(app_module, "build_client", lambda: client)

    async def failing_batch(self, article_ids, cancel_event=None):
        raise RuntimeError("batch failed")

    monkeypatch.setattr(app_module.ArticleProcessor, "process_batch", failing_batch)

    with pytest.raises(RuntimeError, match="batch failed"):
        asyncio.run(app_module._run_batch(None))
    assert client.disconnected is True
