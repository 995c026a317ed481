"""SQLite storage for pending XML documents, keyed by file name."""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import Callable, Iterable, TypeVar

import config
from egresos.accounting.errors import StoreUnavailable
from egresos.accounting.invoice_models import StoredInvoice

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS xml_files (
    file_name TEXT PRIMARY KEY,
    xml_text TEXT NOT NULL,
    tipo_egreso TEXT,
    created_at INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_xml_files_created ON xml_files(created_at);
"""


def now_millis() -> int:
    return int(time.time() * 1000)


def _row_to_record(row: sqlite3.Row) -> StoredInvoice:
    return StoredInvoice(
        file_name=row["file_name"],
        raw_text=row["xml_text"],
        expense_category=row["tipo_egreso"],
        created_at_millis=row["created_at"] or 0,
    )


class XmlStore:
    """Deduplicating store of raw XML documents and their assigned expense type.

    Every public method is a coroutine; the blocking sqlite call runs in a worker
    thread and a lock keeps mutations strictly one at a time.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path or config.XML_DB_PATH)
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    # -- Connection lifecycle --

    def _open_once(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _delete_files(self):
        for suffix in ("", "-wal", "-shm"):
            path = Path(f"{self.db_path}{suffix}")
            if path.exists():
                os.remove(path)

    def _open(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        try:
            self._conn = self._open_once()
        except (sqlite3.Error, OSError) as first:
            # Corrupted or unreadable database: start over once
            logger.warning(f"XML store at {self.db_path} failed to open ({first}); recreating it")
            try:
                self._delete_files()
                self._conn = self._open_once()
            except (sqlite3.Error, OSError) as second:
                raise StoreUnavailable(
                    f"No se pudo abrir la base de XML ({self.db_path}): {second}"
                ) from second
        logger.info(f"XML store ready at {self.db_path}")
        return self._conn

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        async with self._lock:
            return await asyncio.to_thread(self._call, fn)

    def _call(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        conn = self._open()
        try:
            return fn(conn)
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailable(f"Error en la base de XML: {e}") from e

    async def initialize(self):
        await self._run(lambda conn: None)

    async def close(self):
        async with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # -- Operations --

    async def has(self, file_name: str) -> bool:
        def op(conn):
            row = conn.execute("SELECT 1 FROM xml_files WHERE file_name = ?", (file_name,)).fetchone()
            return row is not None
        return await self._run(op)

    async def get(self, file_name: str) -> StoredInvoice | None:
        def op(conn):
            row = conn.execute(
                "SELECT file_name, xml_text, tipo_egreso, created_at FROM xml_files WHERE file_name = ?",
                (file_name,),
            ).fetchone()
            return _row_to_record(row) if row else None
        return await self._run(op)

    async def put(self, record: StoredInvoice):
        def op(conn):
            conn.execute(
                "INSERT OR REPLACE INTO xml_files (file_name, xml_text, tipo_egreso, created_at) "
                "VALUES (?, ?, ?, ?)",
                (record.file_name, record.raw_text, record.expense_category, record.created_at_millis),
            )
            conn.commit()
        await self._run(op)

    async def update_category(self, file_name: str, category: str | None):
        """Set or clear the expense type; unknown file names are ignored."""
        category = (category or "").strip() or None

        def op(conn):
            cursor = conn.execute(
                "UPDATE xml_files SET tipo_egreso = ? WHERE file_name = ?",
                (category, file_name),
            )
            conn.commit()
            return cursor.rowcount
        updated = await self._run(op)
        if updated:
            logger.info(f"Expense type for {file_name} set to {category or 'none'}")

    async def remove(self, file_name: str):
        def op(conn):
            conn.execute("DELETE FROM xml_files WHERE file_name = ?", (file_name,))
            conn.commit()
        await self._run(op)

    async def remove_many(self, file_names: Iterable[str]) -> list[tuple[str, str]]:
        """Delete one key at a time. Returns (file_name, reason) for every key that failed."""
        failures = []
        for name in file_names:
            try:
                await self.remove(name)
            except StoreUnavailable as e:
                logger.warning(f"Could not delete {name}: {e}")
                failures.append((name, str(e)))
        return failures

    async def list_all(self) -> list[StoredInvoice]:
        """All stored documents, newest first."""
        def op(conn):
            rows = conn.execute(
                "SELECT file_name, xml_text, tipo_egreso, created_at FROM xml_files "
                "ORDER BY created_at DESC, file_name ASC"
            ).fetchall()
            return [_row_to_record(row) for row in rows]
        return await self._run(op)

    async def count(self) -> int:
        return await self._run(lambda conn: conn.execute("SELECT COUNT(*) FROM xml_files").fetchone()[0])

    async def clear(self):
        def op(conn):
            conn.execute("DELETE FROM xml_files")
            conn.commit()
        await self._run(op)
        logger.info("XML store cleared")
