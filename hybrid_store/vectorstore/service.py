"""Document store interface and SQLite hybrid implementation."""

import asyncio
import json
import re
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from hybrid_store.config import StoreMode, StoreSettings, get_settings
from hybrid_store.embeddings.service import EmbeddingService
from hybrid_store.exceptions import (
    ConfigurationError,
    EmbeddingError,
    EmbeddingMismatchError,
    ErrorCode,
    HybridStoreError,
    StorageError,
    ValidationError,
)
from hybrid_store.llm.keywords import KeywordExtractor
from hybrid_store.logging_config import get_logger
from hybrid_store.observability.metrics import track_search_results, track_store_operation
from hybrid_store.vectorstore.filters import CompiledFilter, compile_filter
from hybrid_store.vectorstore.fusion import (
    bm25_to_score,
    dedup_key,
    deduplicate,
    distance_to_score,
    rank_and_truncate,
    reciprocal_rank_fusion,
)
from hybrid_store.vectorstore.models import (
    Document,
    IndexCounts,
    SearchResult,
    VecStoreOptions,
)
from hybrid_store.vectorstore.schema import ConnectionManager

logger = get_logger(__name__)

T = TypeVar("T")

_WORD = re.compile(r"\w+")

_WRITE_OPERATIONS = frozenset(
    {"initialize", "add", "delete_ids", "delete_metadata", "delete_all"}
)


def build_match_expression(text: str) -> str | None:
    """Turn free text into an FTS5 query that matches any of its words.

    Each word is quoted so FTS5 operators and punctuation in the input are
    treated as plain terms.

    Returns:
        The MATCH expression, or None when the text has no words.
    """
    tokens = _WORD.findall(text)
    if not tokens:
        return None
    return " OR ".join(f'"{token}"' for token in tokens)


class VectorStore(ABC):
    """Abstract base class for document stores.

    Defines the ingest, delete and search operations shared by every store.
    """

    @abstractmethod
    async def add_documents(
        self,
        documents: Sequence[Document],
        options: VecStoreOptions | None = None,
    ) -> list[str]:
        """Embed and store documents atomically.

        Args:
            documents: Documents to store.
            options: Optional embedder override.

        Returns:
            Assigned document IDs, in input order.

        Raises:
            ValidationError: If there is nothing to add.
            EmbeddingError: If embedding fails; nothing is stored.
            StorageError: If the write fails; nothing is stored.
        """
        ...

    @abstractmethod
    async def similarity_search(
        self,
        query: str,
        limit: int,
        options: VecStoreOptions | None = None,
    ) -> list[SearchResult]:
        """Search with the strategy the store is configured for.

        Args:
            query: Natural-language query.
            limit: Maximum results to return.
            options: Optional metadata filter and embedder override.

        Returns:
            Results ordered by descending score.
        """
        ...

    @abstractmethod
    async def delete_documents_by_ids(self, ids: Sequence[str | int]) -> int:
        """Delete documents by ID.

        Args:
            ids: Document IDs. Unknown IDs are ignored.

        Returns:
            Number of documents deleted.
        """
        ...

    @abstractmethod
    async def delete_documents_by_metadata(self, filters: dict[str, Any]) -> int:
        """Delete documents whose metadata matches a predicate.

        Args:
            filters: Metadata predicate. An empty predicate deletes nothing.

        Returns:
            Number of documents deleted.
        """
        ...

    @abstractmethod
    async def delete_all_documents(self) -> int:
        """Delete every document.

        Returns:
            Number of documents deleted.
        """
        ...


class HybridStore(VectorStore):
    """SQLite document store with vector and BM25 shadow indexes.

    The store mode decides which indexes exist and which searches are
    available. All storage work runs in a worker thread under a single lock,
    so one store can be shared by tasks on any event loop or thread.
    Embedding and keyword extraction happen before the lock is taken.
    """

    def __init__(
        self,
        embedder: EmbeddingService | None = None,
        settings: StoreSettings | None = None,
        keyword_extractor: KeywordExtractor | None = None,
        connection: sqlite3.Connection | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            embedder: Default embedding service. Required for vector and hybrid
                modes unless every call passes one through options.
            settings: Store configuration.
            keyword_extractor: Rewrites hybrid queries before lexical search.
            connection: Existing SQLite connection (for testing). It must have
                been opened with ``check_same_thread=False``.
        """
        self._settings = settings or get_settings().store
        self._embedder = embedder
        self._keyword_extractor = keyword_extractor
        self._schema = ConnectionManager(self._settings, connection)
        self._lock = threading.Lock()

    @property
    def mode(self) -> StoreMode:
        return self._settings.mode

    @property
    def connection_manager(self) -> ConnectionManager:
        return self._schema

    async def initialize(self) -> None:
        """Create tables, indexes and triggers if they do not exist.

        Raises:
            SchemaError: If existing objects are incompatible.
        """
        await self._run("initialize", self._schema.initialize)

    async def close(self) -> None:
        """Release the database connection."""
        await self._run("close", self._schema.close)

    async def count_documents(self) -> IndexCounts:
        """Row counts of the primary table and each shadow index."""
        return await self._run("count", self._schema.count_rows)

    # Storage execution

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._locked, operation, func, *args)

    def _locked(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        """Run ``func`` while holding the store lock, mapping engine errors."""
        start = time.perf_counter()
        try:
            with self._lock:
                result = func(*args)
        except HybridStoreError:
            track_store_operation(operation, time.perf_counter() - start, success=False)
            raise
        except sqlite3.Error as e:
            track_store_operation(operation, time.perf_counter() - start, success=False)
            code = (
                ErrorCode.TRANSACTION_FAILED
                if operation in _WRITE_OPERATIONS
                else ErrorCode.STORAGE_ERROR
            )
            logger.error(
                f"Storage operation failed: {e}",
                extra={"operation": operation, "table": self._schema.table},
            )
            raise StorageError(
                f"Storage operation '{operation}' failed: {e}",
                code=code,
                details={"operation": operation, "error": str(e)},
            ) from e

        track_store_operation(operation, time.perf_counter() - start)
        return result

    # Embedding

    def _resolve_embedder(self, options: VecStoreOptions | None) -> EmbeddingService:
        embedder = (options.embedder if options else None) or self._embedder
        if embedder is None:
            raise ConfigurationError(
                "No embedding service configured for a vector-capable store",
                details={"mode": self.mode.value},
            )
        return embedder

    def _check_dimensions(self, vectors: Sequence[Sequence[float]]) -> None:
        expected = self._settings.vector_dimensions
        for position, vector in enumerate(vectors):
            if len(vector) != expected:
                raise EmbeddingError(
                    f"Embedding has {len(vector)} dimensions, expected {expected}",
                    code=ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
                    details={
                        "position": position,
                        "expected": expected,
                        "actual": len(vector),
                    },
                )

    async def _embed_documents(
        self,
        embedder: EmbeddingService,
        texts: list[str],
    ) -> list[list[float]]:
        batch_size = self._settings.batch_size
        vectors: list[list[float]] = []

        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            try:
                embedded = await embedder.embed_documents(batch)
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to embed documents: {e}",
                    details={"batch_start": start, "error": str(e)},
                ) from e

            if len(embedded) != len(batch):
                raise EmbeddingMismatchError(
                    f"Embedder returned {len(embedded)} vectors for {len(batch)} documents",
                    details={"expected": len(batch), "actual": len(embedded)},
                )
            vectors.extend(embedded)

        self._check_dimensions(vectors)
        return vectors

    async def _embed_query(self, embedder: EmbeddingService, query: str) -> list[float]:
        try:
            vector = await embedder.embed_query(query)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Failed to embed query: {e}",
                details={"error": str(e)},
            ) from e

        self._check_dimensions([vector])
        return vector

    # Writes

    async def add_documents(
        self,
        documents: Sequence[Document],
        options: VecStoreOptions | None = None,
    ) -> list[str]:
        if not documents:
            raise ValidationError("No documents to add")

        texts = [doc.page_content for doc in documents]
        try:
            metadata = [
                json.dumps(doc.metadata, ensure_ascii=False, allow_nan=False)
                for doc in documents
            ]
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Document metadata is not JSON serializable: {e}",
                details={"error": str(e)},
            ) from e

        vectors: list[list[float]] | None = None
        if self.mode.has_vector_index:
            embedder = self._resolve_embedder(options)
            vectors = await self._embed_documents(embedder, texts)

        rowids = await self._run("add", self._insert_batch, texts, metadata, vectors)

        logger.info(
            f"Added {len(rowids)} documents",
            extra={"table": self._schema.table, "first_id": rowids[0], "last_id": rowids[-1]},
        )
        return [str(rowid) for rowid in rowids]

    def _insert_batch(
        self,
        texts: list[str],
        metadata: list[str],
        vectors: list[list[float]] | None,
    ) -> list[int]:
        rowids: list[int] = []
        with self._schema.transaction() as conn:
            for position, (text, meta) in enumerate(zip(texts, metadata, strict=True)):
                vector = vectors[position] if vectors is not None else None
                rowids.append(self._schema.insert_document(conn, text, meta, vector))
        return rowids

    async def delete_documents_by_ids(self, ids: Sequence[str | int]) -> int:
        rowids = [_parse_id(value) for value in ids]
        if not rowids:
            return 0

        removed = await self._run("delete_ids", self._delete_ids, rowids)
        logger.info(
            f"Deleted {removed} documents by id",
            extra={"table": self._schema.table, "requested": len(rowids)},
        )
        return removed

    def _delete_ids(self, rowids: list[int]) -> int:
        with self._schema.transaction() as conn:
            return self._schema.delete_ids(conn, rowids)

    async def delete_documents_by_metadata(self, filters: dict[str, Any]) -> int:
        if not filters:
            logger.debug("Empty metadata filter, nothing deleted")
            return 0

        compiled = compile_filter(filters)
        removed = await self._run("delete_metadata", self._delete_where, compiled)
        logger.info(
            f"Deleted {removed} documents by metadata",
            extra={"table": self._schema.table, "filter_keys": sorted(filters)},
        )
        return removed

    def _delete_where(self, compiled: CompiledFilter) -> int:
        with self._schema.transaction() as conn:
            return self._schema.delete_where(conn, compiled.sql, compiled.params)

    async def delete_all_documents(self) -> int:
        removed = await self._run("delete_all", self._delete_all)
        logger.info(f"Deleted all {removed} documents", extra={"table": self._schema.table})
        return removed

    def _delete_all(self) -> int:
        with self._schema.transaction() as conn:
            return self._schema.delete_all(conn)

    # Search

    def _check_search(self, limit: int, enabled: bool, operation: str) -> None:
        if not enabled:
            raise ValidationError(
                f"{operation} is not available in {self.mode.value} mode",
                code=ErrorCode.UNSUPPORTED_OPERATION,
                details={"operation": operation, "mode": self.mode.value},
            )
        if limit < 1:
            raise ValidationError(
                f"limit must be at least 1, got {limit}",
                details={"limit": limit},
            )

    def _candidate_count(self, limit: int) -> int:
        return limit * self._settings.overfetch_factor

    async def similarity_search(
        self,
        query: str,
        limit: int,
        options: VecStoreOptions | None = None,
    ) -> list[SearchResult]:
        if self.mode == StoreMode.VECTOR:
            return await self.vector_search(query, limit, options)
        if self.mode == StoreMode.LEXICAL:
            return await self.keyword_search(query, limit, options)
        return await self.hybrid_search(query, limit, options)

    async def vector_search(
        self,
        query: str,
        limit: int,
        options: VecStoreOptions | None = None,
    ) -> list[SearchResult]:
        """Nearest-neighbour search over the vector index.

        Scores are ``1 / (1 + distance)``.
        """
        self._check_search(limit, self.mode.has_vector_index, "vector_search")
        if not query.strip():
            return []

        vector = await self._embed_query(self._resolve_embedder(options), query)
        compiled = compile_filter(options.filters if options else None, qualifier="e")

        rows = await self._run(
            "vector_search",
            self._schema.knn,
            vector,
            self._candidate_count(limit),
            compiled.sql,
            compiled.params,
        )

        results = [
            SearchResult(
                page_content=text,
                metadata=json.loads(metadata),
                score=distance_to_score(distance),
            )
            for _, text, metadata, distance in rows
        ]
        results = rank_and_truncate(deduplicate(results), limit)
        self._track("vector", results)
        return results

    async def keyword_search(
        self,
        query: str,
        limit: int,
        options: VecStoreOptions | None = None,
    ) -> list[SearchResult]:
        """BM25 full-text search over the lexical index.

        Scores are the logistic transform of the BM25 statistic.
        """
        self._check_search(limit, self.mode.has_lexical_index, "keyword_search")
        expression = build_match_expression(query)
        if expression is None:
            return []

        compiled = compile_filter(options.filters if options else None, qualifier="e")
        rows = await self._run(
            "keyword_search",
            self._schema.match,
            expression,
            self._candidate_count(limit),
            compiled.sql,
            compiled.params,
        )

        results = [
            SearchResult(
                page_content=text,
                metadata=json.loads(metadata),
                score=bm25_to_score(raw),
            )
            for _, text, metadata, raw in rows
        ]
        results = rank_and_truncate(deduplicate(results), limit)
        self._track("keyword", results)
        return results

    async def hybrid_search(
        self,
        query: str,
        limit: int,
        options: VecStoreOptions | None = None,
    ) -> list[SearchResult]:
        """Fuse vector and BM25 rankings with reciprocal rank fusion.

        Each result's metadata is annotated for the paths that returned it.
        ``vec_score`` and ``bm25_score`` are the per-path scores on the same
        scale as ``vector_search`` and ``keyword_search`` (``1/(1+distance)``
        and the logistic of the BM25 statistic). ``vec_distance`` and
        ``bm25_raw`` carry the engine values they were derived from. A path
        that did not return the row contributes no keys. The lexical query is
        rewritten by the keyword extractor when one is configured.
        """
        self._check_search(
            limit,
            self.mode.has_vector_index and self.mode.has_lexical_index,
            "hybrid_search",
        )
        if not query.strip():
            return []

        vector = await self._embed_query(self._resolve_embedder(options), query)

        keywords = query
        if self._keyword_extractor is not None:
            keywords = await self._keyword_extractor.extract(query)
        expression = build_match_expression(keywords) or build_match_expression(query)

        compiled = compile_filter(options.filters if options else None, qualifier="e")
        vector_rows, lexical_rows = await self._run(
            "hybrid_search",
            self._fetch_candidates,
            vector,
            expression,
            self._candidate_count(limit),
            compiled,
        )

        documents: dict[int, tuple[str, str]] = {}
        distances: dict[int, float] = {}
        bm25_raw: dict[int, float] = {}
        for rowid, text, metadata, distance in vector_rows:
            documents[rowid] = (text, metadata)
            distances[rowid] = distance
        for rowid, text, metadata, raw in lexical_rows:
            documents[rowid] = (text, metadata)
            bm25_raw[rowid] = raw

        fused = reciprocal_rank_fusion(
            [row[0] for row in vector_rows],
            [row[0] for row in lexical_rows],
            k=self._settings.rrf_k,
        )

        results: list[SearchResult] = []
        keys: list[str] = []
        for rowid, combined in fused:
            text, raw_metadata = documents[rowid]
            metadata = json.loads(raw_metadata)
            keys.append(dedup_key(text, metadata))
            if rowid in distances:
                metadata["vec_score"] = distance_to_score(distances[rowid])
                metadata["vec_distance"] = distances[rowid]
            if rowid in bm25_raw:
                metadata["bm25_score"] = bm25_to_score(bm25_raw[rowid])
                metadata["bm25_raw"] = bm25_raw[rowid]
            results.append(SearchResult(page_content=text, metadata=metadata, score=combined))

        results = rank_and_truncate(deduplicate(results, keys), limit)
        self._track("hybrid", results)
        return results

    def _fetch_candidates(
        self,
        vector: list[float],
        expression: str | None,
        candidates: int,
        compiled: CompiledFilter,
    ) -> tuple[list[tuple[int, str, str, float]], list[tuple[int, str, str, float]]]:
        vector_rows = self._schema.knn(vector, candidates, compiled.sql, compiled.params)
        lexical_rows = []
        if expression is not None:
            lexical_rows = self._schema.match(
                expression, candidates, compiled.sql, compiled.params
            )
        return vector_rows, lexical_rows

    def _track(self, mode: str, results: list[SearchResult]) -> None:
        top_score = results[0].score if results else 0.0
        track_search_results(mode=mode, results_returned=len(results), top_score=top_score)
        logger.debug(
            f"{mode} search returned {len(results)} results",
            extra={"mode": mode, "top_score": top_score},
        )


def _parse_id(value: str | int) -> int:
    if isinstance(value, bool):
        raise ValidationError("Document IDs must be integers", details={"id": repr(value)})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(
        f"Invalid document ID: {value!r}",
        details={"id": repr(value)},
    )
