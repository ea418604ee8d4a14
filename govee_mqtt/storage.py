"""Small JSON file store used to persist account credentials."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger(__name__)


class JsonStore:
    """Persist one JSON document in a versioned envelope."""

    def __init__(self, path: str | os.PathLike[str], version: int = 1) -> None:
        """Bind the store to ``path``."""

        self._path = Path(path)
        self._version = version

    @property
    def path(self) -> Path:
        """Return the file backing this store."""

        return self._path

    async def async_load(self) -> dict[str, Any] | None:
        """Return the stored document, or None if missing or unreadable."""

        return await asyncio.to_thread(self._load)

    async def async_save(self, data: dict[str, Any]) -> None:
        """Atomically replace the stored document."""

        await asyncio.to_thread(self._save, data)

    async def async_remove(self) -> None:
        """Delete the stored document if present."""

        await asyncio.to_thread(self._path.unlink, True)

    def _load(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            envelope = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            _LOGGER.warning("Ignoring unreadable store %s: %s", self._path, err)
            return None
        if not isinstance(envelope, dict) or envelope.get("version") != self._version:
            _LOGGER.warning("Ignoring store %s with unexpected format", self._path)
            return None
        data = envelope.get("data")
        return data if isinstance(data, dict) else None

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps({"version": self._version, "data": data}, indent=2),
            encoding="utf-8",
        )
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self._path)
