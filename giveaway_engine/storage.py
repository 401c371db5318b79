"""Per-guild SQLite persistence for module-namespaced JSON documents."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import re
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ModuleStorage:
    """Async wrapper around per-guild SQLite databases holding JSON documents.

    Each guild gets its own database file; a document is addressed by
    ``(namespace, file_key)`` so several modules can share one guild file.
    """

    def __init__(self, base_dir: Path) -> None:
        """Initialise the storage helper with the base data directory."""
        self.base_dir = base_dir
        self.guilds_dir = self.base_dir / "guilds"
        self._lock = asyncio.Lock()

    async def load(self, file_key: str, guild_id: int, namespace: str, default: T) -> T:
        """Return the stored document, or a copy of ``default`` when absent."""
        async with self._lock:
            path = self._guild_path(guild_id)
            if not path.exists():
                return copy.deepcopy(default)
            raw = await asyncio.to_thread(self._read_document, path, namespace, file_key)
        if raw is None:
            return copy.deepcopy(default)
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.exception(
                "Corrupt document %s/%s for guild %s; using default.",
                namespace,
                file_key,
                guild_id,
            )
            return copy.deepcopy(default)

    async def save(self, file_key: str, guild_id: int, namespace: str, value: Any) -> None:
        """Persist ``value`` as the document for the given guild and key."""
        payload = json.dumps(value, ensure_ascii=False)
        async with self._lock:
            self.guilds_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(
                self._write_document,
                self._guild_path(guild_id),
                namespace,
                file_key,
                payload,
            )

    async def list_guilds_with_data(self) -> list[int]:
        """Return the ids of every guild that has a database file."""
        async with self._lock:
            if not self.guilds_dir.exists():
                return []
            guild_ids = []
            for db_path in sorted(self.guilds_dir.glob("guild_*.sqlite")):
                guild_id = self._guild_id_from_path(db_path)
                if guild_id is not None:
                    guild_ids.append(guild_id)
            return sorted(guild_ids)

    # --- Internal helpers -------------------------------------------------

    def _guild_path(self, guild_id: int) -> Path:
        return self.guilds_dir / f"guild_{guild_id}.sqlite"

    @staticmethod
    def _guild_id_from_path(path: Path) -> int | None:
        match = re.match(r"guild_(\d+)\.sqlite$", path.name)
        if not match:
            return None
        try:
            return int(match.group(1))
        except ValueError:
            return None

    def _read_document(self, path: Path, namespace: str, file_key: str) -> str | None:
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        try:
            self._ensure_schema(conn)
            row = conn.execute(
                "SELECT payload FROM documents WHERE namespace = ? AND file_key = ?",
                (namespace, file_key),
            ).fetchone()
            return row["payload"] if row else None
        finally:
            conn.close()

    def _write_document(self, path: Path, namespace: str, file_key: str, payload: str) -> None:
        conn = sqlite3.connect(path)
        try:
            self._ensure_schema(conn)
            conn.execute("BEGIN")
            conn.execute(
                """
                INSERT INTO documents(namespace, file_key, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, file_key)
                DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
                """,
                (namespace, file_key, payload, datetime.now(tz=UTC).isoformat()),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                namespace TEXT NOT NULL,
                file_key TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (namespace, file_key)
            )
            """
        )
