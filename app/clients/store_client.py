"""
app/clients/store_client.py — Best-effort persistence of generated records
NullStore: no persistence configured; every save returns None.
JsonFileStore: one append-only JSON Lines file per record kind under STORE_DIR.
File I/O runs in a worker thread so the event loop is never blocked.
An unavailable store returns None; it never raises into the orchestrator.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from app.core import logging as app_logging


class NullStore:
    """Valid store for deployments without persistence."""

    async def save(self, record: dict[str, Any]) -> Optional[dict[str, Any]]:
        return None

    async def recent(
        self, kind: str, user_id: Optional[int] = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        return []


class JsonFileStore:
    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _records_path(self, kind: str) -> Path:
        return self._base_dir / f"{kind}_records.jsonl"

    def _append_sync(self, record: dict[str, Any]) -> dict[str, Any]:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        stored = {"record_id": str(uuid.uuid4()), **record}
        line = json.dumps(stored, default=str, ensure_ascii=False)
        with self._records_path(str(record.get("kind", "record"))).open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        return stored

    async def save(self, record: dict[str, Any]) -> Optional[dict[str, Any]]:
        kind = str(record.get("kind", "record"))
        try:
            stored = await asyncio.to_thread(self._append_sync, record)
        except OSError as exc:
            app_logging.log_persistence(kind, False, error=str(exc))
            return None
        app_logging.log_persistence(kind, True)
        return stored

    def read_records(self, kind: str) -> list[dict[str, Any]]:
        path = self._records_path(kind)
        if not path.exists():
            return []
        records = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                records.append(json.loads(line))
        return records

    async def recent(
        self, kind: str, user_id: Optional[int] = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Newest-first records of one kind, optionally for a single user."""
        try:
            records = await asyncio.to_thread(self.read_records, kind)
        except (OSError, json.JSONDecodeError) as exc:
            app_logging.log_persistence(kind, False, error=f"read failed: {exc}")
            return []
        if user_id is not None:
            records = [r for r in records if r.get("user_id") == user_id]
        return records[::-1][:limit]


def build_store(store_dir: str) -> NullStore | JsonFileStore:
    if not store_dir:
        logger.info("STORE_DIR not set. Generated records are kept in cache only.")
        return NullStore()
    return JsonFileStore(store_dir)
