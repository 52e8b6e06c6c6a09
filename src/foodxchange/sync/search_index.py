"""
Search index sink

The marketplace keeps small denormalized projections of projects and vendor
profiles in a search index. ``SearchIndex`` is the contract; the SQLite
implementation stores one JSON document per (index, id) and treats upsert
as idempotent, so replays from an at-least-once synchronizer are harmless.
"""

import json
import sqlite3
from collections.abc import Iterable, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

from foodxchange.kernel.errors import SearchIndexError
from foodxchange.kernel.metrics import index_upserts_total
from foodxchange.kernel.retry import retry_on_transient_error
from foodxchange.kernel.store import DATETIME_FORMAT, encode_document
from foodxchange.kernel.time import RealTimeProvider, TimeProvider

_transient = retry_on_transient_error(exceptions=(sqlite3.OperationalError,))


class SearchIndex(Protocol):
    """Operations the synchronizer needs from a search service"""

    def upsert(self, index: str, doc_id: str, projection: Mapping[str, Any]) -> None: ...

    def bulk_upsert(
        self, index: str, items: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> int: ...

    def delete(self, index: str, doc_id: str) -> None: ...

    def create_index(self, index: str, schema: Mapping[str, Any] | None = None) -> None: ...

    def delete_index(self, index: str) -> None: ...


class SQLiteSearchIndex:
    """
    SQLite-backed search index

    Schema:
    - search_indices: index name and its declared field schema
    - search_documents: (index_name, doc_id) → projection JSON
    """

    def __init__(self, db_path: str | Path, time_provider: TimeProvider | None = None) -> None:
        self.db_path = Path(db_path)
        self.time_provider = time_provider or RealTimeProvider()
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS search_indices (
                    index_name TEXT PRIMARY KEY,
                    schema_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS search_documents (
                    index_name TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    doc_json TEXT NOT NULL,
                    indexed_at TEXT NOT NULL,

                    PRIMARY KEY (index_name, doc_id)
                )
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _now(self) -> str:
        return self.time_provider.now().strftime(DATETIME_FORMAT)

    def _ensure_index(self, conn: sqlite3.Connection, index: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO search_indices (index_name, schema_json, created_at) "
            "VALUES (?, '{}', ?)",
            (index, self._now()),
        )

    @_transient
    def upsert(self, index: str, doc_id: str, projection: Mapping[str, Any]) -> None:
        """Insert or replace one document"""
        if not doc_id:
            raise SearchIndexError(f"Cannot index a document without id into {index}")
        with self._connect() as conn:
            self._ensure_index(conn, index)
            conn.execute(
                """
                INSERT INTO search_documents (index_name, doc_id, doc_json, indexed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(index_name, doc_id) DO UPDATE SET
                    doc_json = excluded.doc_json,
                    indexed_at = excluded.indexed_at
                """,
                (index, doc_id, encode_document(projection), self._now()),
            )
            conn.commit()
        index_upserts_total.labels(index=index).inc()

    @_transient
    def bulk_upsert(
        self, index: str, items: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> int:
        """Upsert many documents in one transaction; returns how many"""
        now = self._now()
        rows = [(index, doc_id, encode_document(doc), now) for doc_id, doc in items]
        if not rows:
            return 0
        with self._connect() as conn:
            self._ensure_index(conn, index)
            conn.executemany(
                """
                INSERT INTO search_documents (index_name, doc_id, doc_json, indexed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(index_name, doc_id) DO UPDATE SET
                    doc_json = excluded.doc_json,
                    indexed_at = excluded.indexed_at
                """,
                rows,
            )
            conn.commit()
        index_upserts_total.labels(index=index).inc(len(rows))
        return len(rows)

    @_transient
    def delete(self, index: str, doc_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM search_documents WHERE index_name = ? AND doc_id = ?",
                (index, doc_id),
            )
            conn.commit()

    def create_index(self, index: str, schema: Mapping[str, Any] | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO search_indices (index_name, schema_json, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(index_name) DO UPDATE SET schema_json = excluded.schema_json
                """,
                (index, json.dumps(dict(schema or {})), self._now()),
            )
            conn.commit()

    def delete_index(self, index: str) -> None:
        """Drop an index and its documents (missing index is fine)"""
        with self._connect() as conn:
            conn.execute("DELETE FROM search_documents WHERE index_name = ?", (index,))
            conn.execute("DELETE FROM search_indices WHERE index_name = ?", (index,))
            conn.commit()

    # Read side, used by the CLI and tests

    def get(self, index: str, doc_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM search_documents WHERE index_name = ? AND doc_id = ?",
                (index, doc_id),
            ).fetchone()
        return json.loads(row["doc_json"]) if row else None

    def documents(self, index: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc_json FROM search_documents WHERE index_name = ? ORDER BY doc_id",
                (index,),
            ).fetchall()
        return [json.loads(row["doc_json"]) for row in rows]

    def count(self, index: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM search_documents WHERE index_name = ?",
                (index,),
            ).fetchone()
        return int(row["n"])

    def list_indices(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT index_name FROM search_indices ORDER BY index_name"
            ).fetchall()
        return [row["index_name"] for row in rows]
