"""SQLite implementation of the history and settings stores.

sqlite3 is blocking, so every operation runs in a worker thread via
asyncio.to_thread. A single connection is shared and guarded by a lock.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from promptforge.domain.errors import PersistenceError
from promptforge.domain.interfaces.history_store import HistoryStore, SettingsStore
from promptforge.domain.models.common import DurableId
from promptforge.domain.models.prompt import HistoryQuery, HistoryStats, PromptRecord, ResponseRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS prompts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    prompt TEXT NOT NULL,
    providers TEXT NOT NULL,
    models TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    prompt_id INTEGER NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
    provider_id TEXT NOT NULL,
    model_id TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    duration_ms REAL,
    error TEXT,
    error_code TEXT,
    prompt TEXT
);
CREATE INDEX IF NOT EXISTS idx_prompts_created_at ON prompts(created_at);
CREATE INDEX IF NOT EXISTS idx_prompts_status ON prompts(status);
CREATE INDEX IF NOT EXISTS idx_responses_prompt_id ON responses(prompt_id);
CREATE TABLE IF NOT EXISTS user_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

UPDATABLE_RESPONSE_COLUMNS = ("content", "status", "duration_ms", "error", "error_code", "prompt")


class SQLiteHistoryStore(HistoryStore, SettingsStore):
    """History and settings storage in one SQLite database file."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA foreign_keys = ON")
            if db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
        logger.debug(f"SQLiteHistoryStore opened at {db_path}")

    async def _run(self, func: Callable[[sqlite3.Connection], T]) -> T:
        def locked() -> T:
            with self._lock:
                return func(self._conn)
        try:
            return await asyncio.to_thread(locked)
        except sqlite3.Error as e:
            logger.error(f"SQLite operation failed: {e}")
            raise PersistenceError(str(e)) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- conversions ---

    @staticmethod
    def _prompt_from_row(row: sqlite3.Row) -> PromptRecord:
        return PromptRecord(
            id=DurableId(row["id"]),
            prompt=row["prompt"],
            providers=json.loads(row["providers"]),
            models=json.loads(row["models"]),
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _response_from_row(row: sqlite3.Row) -> ResponseRecord:
        return ResponseRecord(
            id=DurableId(row["id"]),
            prompt_id=DurableId(row["prompt_id"]),
            provider_id=row["provider_id"],
            model_id=row["model_id"],
            content=row["content"],
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            duration_ms=row["duration_ms"],
            error=row["error"],
            error_code=row["error_code"],
            prompt=row["prompt"],
        )

    # --- prompts ---

    async def create_prompt(self, record: PromptRecord) -> DurableId:
        def insert(conn: sqlite3.Connection) -> DurableId:
            with conn:
                cursor = conn.execute(
                    "INSERT INTO prompts (prompt, providers, models, status, created_at) VALUES (?, ?, ?, ?, ?)",
                    (record.prompt, json.dumps(record.providers), json.dumps(record.models),
                     record.status, record.created_at.isoformat()),
                )
            return DurableId(cursor.lastrowid)
        return await self._run(insert)

    async def update_prompt_status(self, prompt_id: DurableId, status: str) -> None:
        def update(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute("UPDATE prompts SET status = ? WHERE id = ?", (status, prompt_id))
        await self._run(update)

    async def get_prompt(self, prompt_id: DurableId) -> Optional[PromptRecord]:
        def select(conn: sqlite3.Connection) -> Optional[PromptRecord]:
            row = conn.execute("SELECT * FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
            return self._prompt_from_row(row) if row else None
        return await self._run(select)

    async def get_prompts(self, query: HistoryQuery) -> List[PromptRecord]:
        clauses: List[str] = []
        params: List[Any] = []
        if query.status:
            clauses.append("status = ?")
            params.append(query.status)
        if query.date_from:
            clauses.append("created_at >= ?")
            params.append(query.date_from.isoformat())
        if query.date_to:
            clauses.append("created_at <= ?")
            params.append(query.date_to.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "ASC" if query.sort_order.lower() == "asc" else "DESC"
        sql = f"SELECT * FROM prompts {where} ORDER BY created_at {order}, id {order}"

        def select(conn: sqlite3.Connection) -> List[PromptRecord]:
            return [self._prompt_from_row(row) for row in conn.execute(sql, params).fetchall()]

        records = await self._run(select)
        # providers/models are JSON lists, filtered here before paging
        if query.providers:
            wanted = set(query.providers)
            records = [r for r in records if wanted.intersection(r.providers)]
        if query.models:
            wanted = set(query.models)
            records = [r for r in records if wanted.intersection(r.models)]
        end = query.offset + query.limit if query.limit is not None else None
        return records[query.offset:end]

    async def delete_prompt(self, prompt_id: DurableId) -> None:
        def delete(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute("DELETE FROM responses WHERE prompt_id = ?", (prompt_id,))
                conn.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,))
        await self._run(delete)
        logger.debug(f"Deleted prompt {prompt_id} and its responses")

    # --- responses ---

    async def create_response(self, record: ResponseRecord) -> DurableId:
        def insert(conn: sqlite3.Connection) -> DurableId:
            with conn:
                cursor = conn.execute(
                    "INSERT INTO responses (prompt_id, provider_id, model_id, content, status, created_at, "
                    "duration_ms, error, error_code, prompt) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (record.prompt_id, record.provider_id, record.model_id, record.content, record.status,
                     record.created_at.isoformat(), record.duration_ms, record.error, record.error_code,
                     record.prompt),
                )
            return DurableId(cursor.lastrowid)
        return await self._run(insert)

    async def update_response(self, response_id: DurableId, updates: Mapping[str, Any]) -> None:
        unknown = set(updates) - set(UPDATABLE_RESPONSE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update response columns: {sorted(unknown)}")
        if not updates:
            return
        columns = list(updates)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = [updates[c] for c in columns] + [response_id]

        def update(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(f"UPDATE responses SET {assignments} WHERE id = ?", values)
        await self._run(update)

    async def get_responses_for_prompt(self, prompt_id: DurableId) -> List[ResponseRecord]:
        def select(conn: sqlite3.Connection) -> List[ResponseRecord]:
            rows = conn.execute(
                "SELECT * FROM responses WHERE prompt_id = ? ORDER BY created_at ASC, id ASC", (prompt_id,)
            ).fetchall()
            return [self._response_from_row(row) for row in rows]
        return await self._run(select)

    # --- maintenance ---

    async def clear_old_data(self, days: int) -> int:
        cutoff = (datetime.now() - timedelta(days=days)).isoformat()

        def purge(conn: sqlite3.Connection) -> int:
            with conn:
                conn.execute(
                    "DELETE FROM responses WHERE prompt_id IN (SELECT id FROM prompts WHERE created_at < ?)",
                    (cutoff,),
                )
                cursor = conn.execute("DELETE FROM prompts WHERE created_at < ?", (cutoff,))
            return cursor.rowcount
        removed = await self._run(purge)
        logger.info(f"Removed {removed} prompts older than {days} days")
        return removed

    async def get_stats(self) -> HistoryStats:
        def collect(conn: sqlite3.Connection) -> HistoryStats:
            total_prompts = conn.execute("SELECT COUNT(*) FROM prompts").fetchone()[0]
            total_responses = conn.execute("SELECT COUNT(*) FROM responses").fetchone()[0]
            successful = conn.execute("SELECT COUNT(*) FROM responses WHERE status = 'success'").fetchone()[0]
            failed = conn.execute("SELECT COUNT(*) FROM responses WHERE status = 'error'").fetchone()[0]
            by_provider: Dict[str, int] = {
                row[0]: row[1]
                for row in conn.execute("SELECT provider_id, COUNT(*) FROM responses GROUP BY provider_id")
            }
            return HistoryStats(
                total_prompts=total_prompts,
                total_responses=total_responses,
                successful_responses=successful,
                failed_responses=failed,
                responses_by_provider=by_provider,
            )
        return await self._run(collect)

    # --- settings ---

    async def get_setting(self, key: str, default: Any = None) -> Any:
        def select(conn: sqlite3.Connection) -> Any:
            row = conn.execute("SELECT value FROM user_settings WHERE key = ?", (key,)).fetchone()
            return json.loads(row["value"]) if row else default
        return await self._run(select)

    async def set_setting(self, key: str, value: Any) -> None:
        payload = json.dumps(value)

        def upsert(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    "INSERT INTO user_settings (key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                    (key, payload, datetime.now().isoformat()),
                )
        await self._run(upsert)

    async def delete_setting(self, key: str) -> None:
        def delete(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute("DELETE FROM user_settings WHERE key = ?", (key,))
        await self._run(delete)
