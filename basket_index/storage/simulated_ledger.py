"""Local simulated share balances, persisted to a JSON file.

Used only when the real settlement path cannot complete. The file survives
restarts of the client but is never a source of truth: another machine, or
another file, knows nothing about it.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from pathlib import Path
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class SimulatedLedger:
    """Per-user simulated index-share balances keyed by user address."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _user_lock(self, user_address: str) -> AsyncIterator[None]:
        """Per-user lock, dropped once no caller holds or waits for it."""
        lock = self._locks.setdefault(user_address, asyncio.Lock())
        self._pending[user_address] = self._pending.get(user_address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._pending[user_address] -= 1
            if not self._pending[user_address]:
                del self._pending[user_address]
                del self._locks[user_address]

    def _load(self) -> dict[str, float]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Simulated ledger %s unreadable, starting empty: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): float(v) for k, v in raw.items()}

    def _save(self, balances: dict[str, float]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(balances, indent=2, sort_keys=True))
        os.replace(tmp, self.path)

    def get(self, user_address: str) -> float:
        return self._load().get(user_address, 0.0)

    def set(self, user_address: str, value: float) -> float:
        """Store ``value`` clamped to zero; returns what was stored."""
        value = max(0.0, float(value))
        balances = self._load()
        balances[user_address] = value
        self._save(balances)
        return value

    async def adjust(self, user_address: str, delta: float) -> float:
        """Add ``delta`` (may be negative) under the user's lock."""
        async with self._user_lock(user_address):
            current = self.get(user_address)
            new_value = self.set(user_address, current + delta)
        logger.info(
            "Simulated balance for %s: %.4f -> %.4f", user_address, current, new_value
        )
        return new_value
