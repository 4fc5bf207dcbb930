#!/usr/bin/env python
"""Load a few sample documents and print fused hybrid search results.

Usage:
    python -m scripts.hybrid_demo --query "how can i use langchain rust"

Embeddings come from the service configured by the EMBEDDING_* environment
variables. Set LLM_ENABLED=true to rewrite the query into keywords before
the lexical search.
"""

import argparse
import asyncio
import sys

from hybrid_store.config import StoreMode, get_settings
from hybrid_store.embeddings.service import HTTPEmbeddingService
from hybrid_store.exceptions import HybridStoreError
from hybrid_store.llm.client import OpenAICompatibleClient
from hybrid_store.llm.keywords import KeywordExtractor
from hybrid_store.logging_config import get_logger, setup_logging
from hybrid_store.vectorstore.models import Document
from hybrid_store.vectorstore.service import HybridStore

logger = get_logger(__name__)

SAMPLE_DOCUMENTS = [
    Document(
        page_content=(
            "langchain-rust is a port of the langchain python library to rust "
            "and was written in 2024."
        )
    ),
    Document(
        page_content=(
            "langchaingo is a port of the langchain python library to go language "
            "and was written in 2023."
        )
    ),
    Document(
        page_content=(
            "Capital of United States of America (USA) is Washington D.C. "
            "and the capital of France is Paris."
        )
    ),
    Document(page_content="Capital of France is Paris."),
]


async def run_demo(
    query: str,
    limit: int,
    database_path: str,
    dimensions: int | None = None,
) -> bool:
    """Ingest the sample documents and print hybrid results.

    Args:
        query: Search query.
        limit: Maximum results to print.
        database_path: SQLite file, or :memory:.
        dimensions: Embedding dimensionality override.

    Returns:
        True if the demo completed, False on a store error.
    """
    setup_logging(level="INFO")
    settings = get_settings()

    overrides: dict[str, object] = {
        "database_path": database_path,
        "mode": StoreMode.HYBRID,
    }
    if dimensions is not None:
        overrides["vector_dimensions"] = dimensions
    store_settings = settings.store.model_copy(update=overrides)

    embedder = HTTPEmbeddingService(settings.embedding)
    llm = OpenAICompatibleClient(settings.llm) if settings.llm.enabled else None
    extractor = KeywordExtractor(llm) if llm is not None else None
    store = HybridStore(embedder=embedder, settings=store_settings, keyword_extractor=extractor)

    try:
        await store.initialize()
        ids = await store.add_documents(SAMPLE_DOCUMENTS)
        logger.info(f"Loaded {len(ids)} sample documents")

        results = await store.similarity_search(query, limit)
    except HybridStoreError as e:
        logger.error(f"Demo failed: {e.message}", extra={"error_code": e.code.value})
        return False
    finally:
        await store.close()
        await embedder.close()
        if llm is not None:
            await llm.close()

    print(f"\nQuery> {query}")
    if not results:
        print("No results found.")
        return True

    print("=" * 60)
    for result in results:
        print(f"Document: {result.page_content}")
        print(f"  combined_score: {result.score:.6f}")
        if "vec_score" in result.metadata:
            print(f"  vec_score: {result.metadata['vec_score']:.6f}")
        if "bm25_score" in result.metadata:
            print(f"  bm25_score: {result.metadata['bm25_score']:.6f}")
    print("=" * 60)
    return True


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run hybrid search over sample documents",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--query",
        default="how can i use langchain rust",
        help="Search query",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=4,
        help="Maximum number of results",
    )
    parser.add_argument(
        "--database",
        default=":memory:",
        help="SQLite database path",
    )
    parser.add_argument(
        "--dimensions",
        type=int,
        default=None,
        help="Embedding dimensions (default from STORE_VECTOR_DIMENSIONS)",
    )

    args = parser.parse_args()

    ok = asyncio.run(
        run_demo(
            query=args.query,
            limit=args.limit,
            database_path=args.database,
            dimensions=args.dimensions,
        )
    )

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
