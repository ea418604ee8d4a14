"""Tests for the JSON credential store."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from govee_mqtt.storage import JsonStore


@pytest.mark.asyncio
async def test_save_then_load(tmp_path: Path) -> None:
    """Saved data is wrapped in a versioned envelope with private permissions."""

    store = JsonStore(tmp_path / "nested" / "auth.json")

    assert await store.async_load() is None
    await store.async_save({"token": "abc"})

    assert await store.async_load() == {"token": "abc"}
    envelope = json.loads(store.path.read_text(encoding="utf-8"))
    assert envelope == {"version": 1, "data": {"token": "abc"}}
    assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600


@pytest.mark.asyncio
async def test_unreadable_or_foreign_documents_are_ignored(tmp_path: Path) -> None:
    """Corrupt files and version mismatches load as empty."""

    path = tmp_path / "auth.json"
    path.write_text("{not json", encoding="utf-8")
    assert await JsonStore(path).async_load() is None

    path.write_text(json.dumps({"version": 2, "data": {}}), encoding="utf-8")
    assert await JsonStore(path).async_load() is None


@pytest.mark.asyncio
async def test_remove_is_idempotent(tmp_path: Path) -> None:
    """Removing a missing store is not an error."""

    store = JsonStore(tmp_path / "auth.json")
    await store.async_save({"a": 1})

    await store.async_remove()
    await store.async_remove()

    assert not store.path.exists()
