"""Score normalization, reciprocal rank fusion and result deduplication."""

import json
import math
from collections.abc import Iterable, Sequence
from typing import Any

from hybrid_store.vectorstore.models import SearchResult

DEFAULT_RRF_K = 60


def distance_to_score(distance: float) -> float:
    """Map a non-negative distance to (0, 1]; smaller distance scores higher."""
    return 1.0 / (1.0 + distance)


def bm25_to_score(raw: float) -> float:
    """Logistic transform of an unbounded BM25 statistic into (0, 1).

    ``raw`` is oriented so that larger means more relevant.
    """
    # Split on sign so exp() never overflows
    if raw >= 0:
        return 1.0 / (1.0 + math.exp(-raw))
    z = math.exp(raw)
    return z / (1.0 + z)


def reciprocal_rank_fusion(
    vector_ranking: Sequence[int],
    lexical_ranking: Sequence[int],
    k: int = DEFAULT_RRF_K,
) -> list[tuple[int, float]]:
    """Fuse two ranked id lists with ``1/(k + rank)`` terms.

    Each list is ordered best first and ranks are 1-based within their own
    list. An id missing from one list gets no term from it (a full outer join).

    Args:
        vector_ranking: Row ids from the vector path, best first.
        lexical_ranking: Row ids from the lexical path, best first.
        k: Smoothing constant.

    Returns:
        (row id, combined score) pairs, highest score first. Ties keep the
        order in which ids were first seen (vector path first).
    """
    if k <= 0:
        raise ValueError("k must be positive")

    combined: dict[int, float] = {}
    for ranking in (vector_ranking, lexical_ranking):
        for rank, rowid in enumerate(ranking, start=1):
            combined[rowid] = combined.get(rowid, 0.0) + 1.0 / (k + rank)

    return sorted(combined.items(), key=lambda item: item[1], reverse=True)


def dedup_key(page_content: str, metadata: dict[str, Any]) -> str:
    """Identity of a logical document: its text plus canonical metadata JSON."""
    canonical = json.dumps(metadata, sort_keys=True, ensure_ascii=False, default=str)
    return f"{page_content}\x00{canonical}"


def deduplicate(
    results: Iterable[SearchResult],
    keys: Iterable[str] | None = None,
) -> list[SearchResult]:
    """Keep the first result for each logical document.

    Args:
        results: Results ordered best first.
        keys: Precomputed identities, parallel to ``results``. Defaults to
            ``dedup_key`` over each result's content and metadata.

    Returns:
        Results with later duplicates removed, order preserved.
    """
    results = list(results)
    if keys is None:
        keys = (dedup_key(r.page_content, r.metadata) for r in results)

    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result, key in zip(results, keys, strict=True):
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


def rank_and_truncate(results: Iterable[SearchResult], limit: int) -> list[SearchResult]:
    """Sort by score descending (stable) and keep the top ``limit``."""
    return sorted(results, key=lambda r: r.score, reverse=True)[:limit]
