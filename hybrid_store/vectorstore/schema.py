"""SQLite connection and schema management for the hybrid store.

One primary table holds documents. Up to two shadow indexes are derived
from it and keyed by the same rowid:

    <table>         rowid, text, metadata (JSON), text_embedding (JSON array)
    vec_<table>     vec0 virtual table (sqlite-vec), one float[N] column
    bm25_<table>    fts5 virtual table, text indexed, metadata stored only

With the trigger strategy, AFTER INSERT / AFTER DELETE triggers on the
primary table keep the shadows in lockstep. With the explicit strategy the
same writes are issued by this module inside the caller's transaction.

Methods other than ``initialize`` and ``close`` assume the caller holds the
store lock. SQL text is only ever built from validated identifiers; every
value is a bound parameter.
"""

import json
import re
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import sqlite_vec

from hybrid_store.config import StoreMode, StoreSettings, SyncStrategy
from hybrid_store.exceptions import ErrorCode, SchemaError
from hybrid_store.logging_config import get_logger
from hybrid_store.vectorstore.models import IndexCounts

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VEC_DIMENSIONS = re.compile(r"float\[\s*(\d+)\s*\]", re.IGNORECASE)

PRIMARY_COLUMNS = frozenset({"rowid", "text", "metadata", "text_embedding"})

# sqlite-vec rejects KNN queries with k above this
MAX_KNN_K = 4096

# Stay well below SQLITE_MAX_VARIABLE_NUMBER when binding id lists
ID_CHUNK_SIZE = 500


def validate_identifier(name: str) -> str:
    """Return ``name`` if it is safe to splice into SQL as an identifier.

    Raises:
        SchemaError: If the name is not letters, digits and underscores
            starting with a letter or underscore.
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise SchemaError(
            f"Invalid SQL identifier: {name!r}",
            code=ErrorCode.INVALID_IDENTIFIER,
            details={"identifier": repr(name)},
        )
    return name


class ConnectionManager:
    """Owns the SQLite handle and the table, index and trigger definitions."""

    def __init__(
        self,
        settings: StoreSettings,
        connection: sqlite3.Connection | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Store configuration.
            connection: Existing connection to use instead of opening
                ``settings.database_path``. It is not closed by ``close``.

        Raises:
            SchemaError: If the table name or dimensionality is invalid.
        """
        self._settings = settings
        self.mode: StoreMode = settings.mode
        self.sync_strategy: SyncStrategy = settings.sync_strategy
        self.dimensions = settings.vector_dimensions

        self.table = validate_identifier(settings.table)
        self.vec_table = f"vec_{self.table}"
        self.fts_table = f"bm25_{self.table}"

        if self.mode.has_vector_index and self.dimensions <= 0:
            raise SchemaError(
                f"Vector dimensions must be positive, got {self.dimensions}",
                code=ErrorCode.INVALID_DIMENSIONS,
                details={"dimensions": self.dimensions},
            )

        self._conn = connection
        self._owns_connection = connection is None
        if connection is not None:
            self._prepare(connection)

    # Connection lifecycle

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection, opened on first use."""
        if self._conn is None:
            self._conn = self._open()
        return self._conn

    def _open(self) -> sqlite3.Connection:
        path = self._settings.database_path
        conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self._settings.busy_timeout_ms)}")
        self._prepare(conn)
        logger.info(
            "Opened SQLite database",
            extra={"path": path, "mode": self.mode.value},
        )
        return conn

    def _prepare(self, conn: sqlite3.Connection) -> None:
        # Transactions are managed explicitly with BEGIN/COMMIT/ROLLBACK
        conn.isolation_level = None
        if self.mode.has_vector_index:
            self._load_sqlite_vec(conn)

    @staticmethod
    def _load_sqlite_vec(conn: sqlite3.Connection) -> None:
        try:
            conn.execute("SELECT vec_version()")
            return
        except sqlite3.OperationalError:
            pass

        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
        except (AttributeError, sqlite3.Error) as e:
            raise SchemaError(
                f"Failed to load sqlite-vec extension: {e}",
                details={"error": str(e)},
            ) from e
        finally:
            if hasattr(conn, "enable_load_extension"):
                conn.enable_load_extension(False)

    def close(self) -> None:
        """Close the connection if this manager opened it."""
        if self._owns_connection and self._conn is not None:
            self._conn.close()
            logger.info("Closed SQLite database")
        self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one write transaction; roll back on any exception."""
        conn = self.connection
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    # Schema

    def initialize(self) -> None:
        """Create the primary table, enabled shadow indexes and triggers.

        Idempotent. Existing objects are verified rather than replaced.

        Raises:
            SchemaError: If existing objects have an incompatible shape or the
                storage engine rejects the definitions.
        """
        try:
            self._verify_existing()
            with self.transaction() as conn:
                for statement in self._ddl():
                    conn.execute(statement)
        except SchemaError:
            raise
        except sqlite3.Error as e:
            raise SchemaError(
                f"Failed to initialize schema: {e}",
                details={"table": self.table, "error": str(e)},
            ) from e

        logger.info(
            f"Schema ready for table {self.table}",
            extra={
                "mode": self.mode.value,
                "sync": self.sync_strategy.value,
                "dimensions": self.dimensions if self.mode.has_vector_index else None,
            },
        )

    def _ddl(self) -> list[str]:
        t, vec, fts = self.table, self.vec_table, self.fts_table
        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {t} (
                rowid INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{{}}',
                text_embedding TEXT
            )
            """
        ]
        triggers = self.sync_strategy == SyncStrategy.TRIGGER

        if self.mode.has_vector_index:
            statements.append(
                f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS {vec} USING vec0(
                    text_embedding float[{int(self.dimensions)}]
                    distance_metric={self._settings.distance_metric.value}
                )
                """
            )
            if triggers:
                statements.append(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS {t}_vec_insert
                    AFTER INSERT ON {t}
                    BEGIN
                        INSERT INTO {vec} (rowid, text_embedding)
                        VALUES (new.rowid, new.text_embedding);
                    END
                    """
                )
                statements.append(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS {t}_vec_delete
                    AFTER DELETE ON {t}
                    BEGIN
                        DELETE FROM {vec} WHERE rowid = old.rowid;
                    END
                    """
                )

        if self.mode.has_lexical_index:
            statements.append(
                f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS {fts} USING fts5(
                    text,
                    metadata UNINDEXED
                )
                """
            )
            if triggers:
                statements.append(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS {t}_bm25_insert
                    AFTER INSERT ON {t}
                    BEGIN
                        INSERT INTO {fts} (rowid, text, metadata)
                        VALUES (new.rowid, new.text, new.metadata);
                    END
                    """
                )
                statements.append(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS {t}_bm25_delete
                    AFTER DELETE ON {t}
                    BEGIN
                        DELETE FROM {fts} WHERE rowid = old.rowid;
                    END
                    """
                )
        return statements

    def _verify_existing(self) -> None:
        """Reject pre-existing tables whose shape this store cannot use."""
        conn = self.connection
        existing = dict(
            conn.execute(
                "SELECT name, sql FROM sqlite_master WHERE type = 'table' AND name IN (?, ?, ?)",
                (self.table, self.vec_table, self.fts_table),
            ).fetchall()
        )

        if self.table in existing:
            columns = {row[1] for row in conn.execute(f"PRAGMA table_info({self.table})")}
            missing = PRIMARY_COLUMNS - columns
            if missing:
                raise SchemaError(
                    f"Existing table {self.table} is missing columns: {sorted(missing)}",
                    code=ErrorCode.SCHEMA_MISMATCH,
                    details={"table": self.table, "missing": sorted(missing)},
                )

        vec_sql = existing.get(self.vec_table)
        if self.mode.has_vector_index and vec_sql:
            match = _VEC_DIMENSIONS.search(vec_sql)
            found = int(match.group(1)) if match else None
            if found != self.dimensions:
                raise SchemaError(
                    f"Existing vector index {self.vec_table} has dimensions {found}, "
                    f"store is configured for {self.dimensions}",
                    code=ErrorCode.SCHEMA_MISMATCH,
                    details={"expected": self.dimensions, "found": found},
                )

    # Writes (caller holds the lock and an open transaction)

    def insert_document(
        self,
        conn: sqlite3.Connection,
        text: str,
        metadata_json: str,
        vector: Sequence[float] | None,
    ) -> int:
        """Insert one row and, for the explicit strategy, its shadow rows."""
        embedding_json = json.dumps(list(vector)) if vector is not None else None
        cursor = conn.execute(
            f"INSERT INTO {self.table} (text, metadata, text_embedding) VALUES (?, ?, ?)",
            (text, metadata_json, embedding_json),
        )
        rowid = cursor.lastrowid
        if rowid is None:
            raise sqlite3.DatabaseError("INSERT did not report a rowid")

        if self.sync_strategy == SyncStrategy.EXPLICIT:
            if self.mode.has_vector_index:
                conn.execute(
                    f"INSERT INTO {self.vec_table} (rowid, text_embedding) VALUES (?, ?)",
                    (rowid, sqlite_vec.serialize_float32(list(vector or []))),
                )
            if self.mode.has_lexical_index:
                conn.execute(
                    f"INSERT INTO {self.fts_table} (rowid, text, metadata) VALUES (?, ?, ?)",
                    (rowid, text, metadata_json),
                )
        return rowid

    def delete_ids(self, conn: sqlite3.Connection, ids: Sequence[int]) -> int:
        """Delete rows by id from the primary table and every shadow index.

        Returns:
            Number of primary rows removed.
        """
        removed = 0
        for start in range(0, len(ids), ID_CHUNK_SIZE):
            chunk = tuple(ids[start : start + ID_CHUNK_SIZE])
            placeholders = ", ".join("?" for _ in chunk)
            cursor = conn.execute(
                f"DELETE FROM {self.table} WHERE rowid IN ({placeholders})", chunk
            )
            removed += max(cursor.rowcount, 0)
            for shadow in self.shadow_tables:
                conn.execute(f"DELETE FROM {shadow} WHERE rowid IN ({placeholders})", chunk)
        return removed

    def delete_where(
        self,
        conn: sqlite3.Connection,
        where_sql: str,
        params: Sequence[Any],
    ) -> int:
        """Delete primary rows matching a compiled filter, then reconcile shadows.

        ``where_sql`` must come from the filter compiler, unqualified.

        Returns:
            Number of primary rows removed.
        """
        cursor = conn.execute(f"DELETE FROM {self.table} WHERE {where_sql}", tuple(params))
        removed = max(cursor.rowcount, 0)
        self.reconcile_shadows(conn)
        return removed

    def reconcile_shadows(self, conn: sqlite3.Connection) -> None:
        """Drop shadow rows whose primary row no longer exists."""
        for shadow in self.shadow_tables:
            conn.execute(
                f"DELETE FROM {shadow} WHERE rowid NOT IN (SELECT rowid FROM {self.table})"
            )

    def delete_all(self, conn: sqlite3.Connection) -> int:
        """Clear the primary table and every shadow index."""
        cursor = conn.execute(f"DELETE FROM {self.table}")
        for shadow in self.shadow_tables:
            conn.execute(f"DELETE FROM {shadow}")
        return max(cursor.rowcount, 0)

    # Reads (caller holds the lock)

    def knn(
        self,
        vector: Sequence[float],
        k: int,
        where_sql: str,
        params: Sequence[Any],
    ) -> list[tuple[int, str, str, float]]:
        """Nearest rows by ascending distance, restricted to rows matching the filter.

        ``where_sql`` must be compiled with the ``e`` qualifier.

        Returns:
            (rowid, text, metadata JSON, distance) tuples.
        """
        prefilter = ""
        if params:
            prefilter = f"AND rowid IN (SELECT e.rowid FROM {self.table} AS e WHERE {where_sql})"

        sql = f"""
            SELECT e.rowid, e.text, e.metadata, v.distance
            FROM (
                SELECT rowid, distance
                FROM {self.vec_table}
                WHERE text_embedding MATCH ?
                  AND k = ?
                  {prefilter}
            ) AS v
            JOIN {self.table} AS e ON e.rowid = v.rowid
            ORDER BY v.distance
        """
        query_blob = sqlite_vec.serialize_float32(list(vector))
        k = max(1, min(k, MAX_KNN_K))
        return self.connection.execute(sql, (query_blob, k, *params)).fetchall()

    def match(
        self,
        match_expression: str,
        limit: int,
        where_sql: str,
        params: Sequence[Any],
    ) -> list[tuple[int, str, str, float]]:
        """BM25-ranked full-text matches, most relevant first.

        ``where_sql`` must be compiled with the ``e`` qualifier. The returned
        statistic is the negated FTS5 ``bm25()``, so larger is better.

        Returns:
            (rowid, text, metadata JSON, raw score) tuples.
        """
        sql = f"""
            SELECT e.rowid, e.text, e.metadata, -bm25({self.fts_table}) AS raw_score
            FROM {self.fts_table}
            JOIN {self.table} AS e ON e.rowid = {self.fts_table}.rowid
            WHERE {self.fts_table} MATCH ?
              AND {where_sql}
            ORDER BY raw_score DESC
            LIMIT ?
        """
        return self.connection.execute(sql, (match_expression, *params, limit)).fetchall()

    # Introspection

    @property
    def shadow_tables(self) -> list[str]:
        tables = []
        if self.mode.has_vector_index:
            tables.append(self.vec_table)
        if self.mode.has_lexical_index:
            tables.append(self.fts_table)
        return tables

    def count_rows(self) -> IndexCounts:
        conn = self.connection

        def count(table: str) -> int:
            return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]

        return IndexCounts(
            documents=count(self.table),
            vector=count(self.vec_table) if self.mode.has_vector_index else None,
            lexical=count(self.fts_table) if self.mode.has_lexical_index else None,
        )

    def rowids(self) -> dict[str, set[int]]:
        """Row ids present in the primary table and each shadow index."""
        conn = self.connection
        return {
            table: {row[0] for row in conn.execute(f"SELECT rowid FROM {table}")}
            for table in (self.table, *self.shadow_tables)
        }
