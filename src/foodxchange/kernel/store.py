"""
SQLite Entity Store - document persistence with conditional writes

The entity store owns all mutable marketplace state. Documents (projects,
proposals, products, vendor profiles) are kept as JSON in a single table,
keyed by (collection, id), and every write bumps a revision counter.

It provides:
- find/find_by_id/count with a small dotted-path filter language
- create with per-collection unique keys enforced by a partial unique index
- update_by_id guarded by an expected status and/or revision
- update_many that selects and rewrites matching rows in one transaction

Fun fact: SQLite's json_extract landed in 2015 (3.9.0). Before that, people
stored JSON in SQLite and filtered it in application code, one row at a time.
"""

import json
import sqlite3
from collections.abc import Callable, Iterable, Mapping
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from foodxchange.kernel.errors import (
    ConditionalUpdateFailed,
    EntityNotFound,
    EntityStoreError,
    UniqueConstraintViolation,
    ValidationFailure,
)
from foodxchange.kernel.logging import get_logger
from foodxchange.kernel.metrics import conflicts_total
from foodxchange.kernel.retry import retry_on_sqlite_lock
from foodxchange.kernel.time import RealTimeProvider, TimeProvider, ensure_utc

logger = get_logger(__name__)

# Fixed width so that lexical order equals chronological order
DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

UniqueKeyFn = Callable[[dict[str, Any]], str | None]
Filter = Mapping[str, Any]
Sort = Iterable[tuple[str, int]]

_OPERATORS = {
    "$eq": "=",
    "$ne": "!=",
    "$lt": "<",
    "$lte": "<=",
    "$gt": ">",
    "$gte": ">=",
}

# Fields mirrored into real columns
_COLUMN_FIELDS = {"id": "id", "status": "status"}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).strftime(DATETIME_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_document(doc: Mapping[str, Any]) -> str:
    """Serialize a document to JSON with normalised datetimes"""
    return json.dumps(doc, default=_json_default, sort_keys=True)


def encode_value(value: Any) -> Any:
    """Normalise a single filter/patch value the same way documents are stored"""
    if isinstance(value, datetime):
        return ensure_utc(value).strftime(DATETIME_FORMAT)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset, dict, date)):
        return json.loads(json.dumps(value, default=_json_default))
    return value


def _json_path(field: str) -> str:
    for part in field.split("."):
        if not part.replace("_", "").isalnum():
            raise ValidationFailure(f"Invalid filter field: {field!r}")
    return "$." + field


def _field_expr(field: str) -> tuple[str, list[Any]]:
    if field in _COLUMN_FIELDS:
        return _COLUMN_FIELDS[field], []
    return "json_extract(doc_json, ?)", [_json_path(field)]


def _compile_filter(collection: str, filter: Filter | None) -> tuple[str, list[Any]]:
    """Translate a filter mapping into a SQL WHERE clause and parameters"""
    clauses = ["collection = ?"]
    params: list[Any] = [collection]

    for field, condition in (filter or {}).items():
        expr, expr_params = _field_expr(field)
        if isinstance(condition, Mapping) and condition and all(
            str(k).startswith("$") for k in condition
        ):
            ops = condition.items()
        else:
            ops = [("$eq", condition)]

        for op, raw in ops:
            value = encode_value(raw)
            if op == "$in":
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                placeholders = ", ".join("?" for _ in values)
                clauses.append(f"{expr} IN ({placeholders})")
                params.extend(expr_params + values)
            elif op in _OPERATORS:
                if value is None and op in ("$eq", "$ne"):
                    clauses.append(f"{expr} IS {'NOT ' if op == '$ne' else ''}NULL")
                    params.extend(expr_params)
                else:
                    clauses.append(f"{expr} {_OPERATORS[op]} ?")
                    params.extend(expr_params + [value])
            else:
                raise ValidationFailure(f"Unsupported filter operator: {op!r}")

    return " AND ".join(clauses), params


def _set_path(doc: dict[str, Any], field: str, value: Any) -> None:
    parts = field.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _get_path(doc: Mapping[str, Any], field: str) -> Any:
    target: Any = doc
    for part in field.split("."):
        if not isinstance(target, Mapping):
            return None
        target = target.get(part)
    return target


def apply_changes(
    doc: dict[str, Any],
    patch: Mapping[str, Any] | None = None,
    push: Mapping[str, Iterable[Any]] | None = None,
    increment: Mapping[str, float] | None = None,
    add_to_set: Mapping[str, Iterable[Any]] | None = None,
) -> dict[str, Any]:
    """
    Apply changes to a decoded document and return the new document

    - patch: dotted path -> new value
    - push: dotted path -> items to append
    - increment: dotted path -> amount added to a numeric field (missing = 0)
    - add_to_set: dotted path -> items appended unless already present
    """
    updated = json.loads(encode_document(doc))
    for field, value in (patch or {}).items():
        _set_path(updated, field, encode_value(value))
    for field, items in (push or {}).items():
        current = _get_path(updated, field)
        sequence = list(current) if current else []
        sequence.extend(encode_value(list(items)))
        _set_path(updated, field, sequence)
    for field, amount in (increment or {}).items():
        _set_path(updated, field, (_get_path(updated, field) or 0) + amount)
    for field, items in (add_to_set or {}).items():
        current = _get_path(updated, field)
        members = list(current) if current else []
        for item in encode_value(list(items)):
            if item not in members:
                members.append(item)
        _set_path(updated, field, members)
    return updated


class SQLiteEntityStore:
    """
    SQLite-based document store

    Uses WAL mode for concurrent readers and BEGIN IMMEDIATE for writers, so
    a read-check-write sequence inside one call is serialized against every
    other writer on the same database file.

    Schema:
    - entities table: (collection, id) primary key, status and unique_key
      columns mirrored from the document, monotonically increasing revision
    - partial unique index on (collection, unique_key)
    """

    def __init__(
        self,
        db_path: str | Path,
        time_provider: TimeProvider | None = None,
        unique_keys: Mapping[str, UniqueKeyFn] | None = None,
    ) -> None:
        """
        Initialize entity store with SQLite database

        Args:
            db_path: Path to SQLite database file
            time_provider: Clock for created_at/updated_at columns
            unique_keys: Per-collection functions deriving a unique key from a
                document (None means the document holds no key)
        """
        self.db_path = Path(db_path)
        self.time_provider = time_provider or RealTimeProvider()
        self._unique_keys: dict[str, UniqueKeyFn] = dict(unique_keys or {})
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS entities (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    status TEXT,
                    revision INTEGER NOT NULL,
                    unique_key TEXT,
                    doc_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,

                    PRIMARY KEY (collection, id)
                )
            """)
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_unique_key "
                "ON entities(collection, unique_key) WHERE unique_key IS NOT NULL"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entities_status "
                "ON entities(collection, status)"
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Autocommit mode; writers open their own BEGIN IMMEDIATE transaction.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=5.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def _now(self) -> str:
        return ensure_utc(self.time_provider.now()).strftime(DATETIME_FORMAT)

    def _unique_key(self, collection: str, doc: Mapping[str, Any]) -> str | None:
        key_fn = self._unique_keys.get(collection)
        return key_fn(doc) if key_fn else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(self, collection: str, entity_id: str) -> dict[str, Any]:
        """
        Load one document

        Raises:
            EntityNotFound: If no document has this id
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM entities WHERE collection = ? AND id = ?",
                (collection, entity_id),
            ).fetchone()
        if row is None:
            raise EntityNotFound(collection, entity_id)
        return json.loads(row["doc_json"])

    def find(
        self,
        collection: str,
        filter: Filter | None = None,
        sort: Sort | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query documents

        Args:
            collection: Collection name
            filter: Dotted field path -> value, or -> {"$op": value}
            sort: (field, 1|-1) pairs; insertion order when omitted
            limit: Maximum number of documents
            skip: Number of documents to skip

        Returns:
            Matching documents
        """
        where, params = _compile_filter(collection, filter)
        order_parts: list[str] = []
        for field, direction in sort or ():
            expr, expr_params = _field_expr(field)
            order_parts.append(f"{expr} {'DESC' if direction < 0 else 'ASC'}")
            params.extend(expr_params)
        order_parts.append("rowid ASC")

        sql = f"SELECT doc_json FROM entities WHERE {where} ORDER BY {', '.join(order_parts)}"
        if limit is not None or skip:
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, skip])

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [json.loads(row["doc_json"]) for row in rows]

    def count(self, collection: str, filter: Filter | None = None) -> int:
        """Count documents matching a filter"""
        where, params = _compile_filter(collection, filter)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM entities WHERE {where}", params
            ).fetchone()
        return int(row["n"])

    def count_by_collection(self) -> dict[str, int]:
        """Document counts per collection"""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT collection, COUNT(*) AS n FROM entities GROUP BY collection"
            ).fetchall()
        return {row["collection"]: int(row["n"]) for row in rows}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @retry_on_sqlite_lock()
    def create(self, collection: str, doc: Mapping[str, Any]) -> dict[str, Any]:
        """
        Insert a new document (must carry an "id")

        Returns:
            The stored document, with "revision" set to 1

        Raises:
            UniqueConstraintViolation: If the id or the collection's unique key
                is already taken
        """
        if not doc.get("id"):
            raise ValidationFailure(f"Document for {collection} has no id")

        stored = apply_changes(dict(doc), {"revision": 1})
        unique_key = self._unique_key(collection, stored)
        now = self._now()

        try:
            with self._write_transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO entities
                        (collection, id, status, revision, unique_key, doc_json,
                         created_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                    """,
                    (
                        collection,
                        stored["id"],
                        stored.get("status"),
                        unique_key,
                        encode_document(stored),
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError as e:
            logger.warning(
                "Entity create rejected by unique constraint",
                collection=collection,
                entity_id=stored["id"],
                unique_key=unique_key,
            )
            raise UniqueConstraintViolation(
                collection, unique_key or stored["id"]
            ) from e

        return stored

    @retry_on_sqlite_lock()
    def update_by_id(
        self,
        collection: str,
        entity_id: str,
        patch: Mapping[str, Any] | None = None,
        push: Mapping[str, Iterable[Any]] | None = None,
        expected_status: str | Iterable[str] | None = None,
        expected_revision: int | None = None,
        increment: Mapping[str, float] | None = None,
        add_to_set: Mapping[str, Iterable[Any]] | None = None,
        bump_revision: bool = True,
    ) -> dict[str, Any]:
        """
        Conditionally update one document

        Args:
            collection: Collection name
            entity_id: Document id
            patch: Dotted path -> new value
            push: Dotted path -> items to append to a list field
            expected_status: Status (or statuses) the stored document must have
            expected_revision: Revision the stored document must have
            increment: Dotted path -> amount to add to a numeric field
            add_to_set: Dotted path -> items to append unless already present
            bump_revision: False for bookkeeping writes (counters) that must
                not invalidate a concurrent conditional update

        Returns:
            The updated document

        Raises:
            EntityNotFound: If the document does not exist
            ConditionalUpdateFailed: If the stored state no longer matches
            UniqueConstraintViolation: If the change collides on the unique key
        """
        try:
            with self._write_transaction() as conn:
                row = conn.execute(
                    "SELECT status, revision, doc_json FROM entities "
                    "WHERE collection = ? AND id = ?",
                    (collection, entity_id),
                ).fetchone()
                if row is None:
                    raise EntityNotFound(collection, entity_id)

                self._check_expectations(
                    collection, entity_id, row, expected_status, expected_revision
                )

                updated = apply_changes(
                    json.loads(row["doc_json"]), patch, push, increment, add_to_set
                )
                updated["id"] = entity_id
                updated["revision"] = row["revision"] + (1 if bump_revision else 0)
                self._write_row(conn, collection, updated)
        except sqlite3.IntegrityError as e:
            raise UniqueConstraintViolation(
                collection, str(self._unique_key(collection, updated))
            ) from e

        return updated

    @retry_on_sqlite_lock()
    def update_many(
        self,
        collection: str,
        filter: Filter,
        patch: Mapping[str, Any] | None = None,
        push: Mapping[str, Iterable[Any]] | None = None,
    ) -> list[str]:
        """
        Update every document matching the filter at write time

        Selection and rewrite happen inside one immediate transaction, so a
        document changed by a concurrent writer is only touched if it still
        matches.

        Returns:
            Ids of the updated documents
        """
        where, params = _compile_filter(collection, filter)
        touched: list[str] = []
        with self._write_transaction() as conn:
            rows = conn.execute(
                f"SELECT id, revision, doc_json FROM entities WHERE {where} "
                "ORDER BY rowid",
                params,
            ).fetchall()
            for row in rows:
                updated = apply_changes(json.loads(row["doc_json"]), patch, push)
                updated["id"] = row["id"]
                updated["revision"] = row["revision"] + 1
                self._write_row(conn, collection, updated)
                touched.append(row["id"])
        return touched

    def _check_expectations(
        self,
        collection: str,
        entity_id: str,
        row: sqlite3.Row,
        expected_status: str | Iterable[str] | None,
        expected_revision: int | None,
    ) -> None:
        expected: dict[str, Any] = {}
        actual: dict[str, Any] = {}

        if expected_status is not None:
            statuses = (
                [expected_status]
                if isinstance(expected_status, str)
                else list(expected_status)
            )
            allowed = {encode_value(s) for s in statuses}
            if row["status"] not in allowed:
                expected["status"] = sorted(allowed)
                actual["status"] = row["status"]

        if expected_revision is not None and row["revision"] != expected_revision:
            expected["revision"] = expected_revision
            actual["revision"] = row["revision"]

        if expected:
            conflicts_total.labels(entity_type=collection).inc()
            logger.info(
                "Conditional update lost",
                collection=collection,
                entity_id=entity_id,
                expected=expected,
                actual=actual,
            )
            raise ConditionalUpdateFailed(collection, entity_id, expected, actual)

    def _write_row(
        self, conn: sqlite3.Connection, collection: str, doc: dict[str, Any]
    ) -> None:
        cursor = conn.execute(
            """
            UPDATE entities
            SET status = ?, revision = ?, unique_key = ?, doc_json = ?, updated_at = ?
            WHERE collection = ? AND id = ?
            """,
            (
                doc.get("status"),
                doc["revision"],
                self._unique_key(collection, doc),
                encode_document(doc),
                self._now(),
                collection,
                doc["id"],
            ),
        )
        if cursor.rowcount != 1:
            raise EntityStoreError(f"Failed to write {collection} {doc['id']}")
