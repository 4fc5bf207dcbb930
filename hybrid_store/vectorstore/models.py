"""Vector store data models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hybrid_store.embeddings.service import EmbeddingService


class Document(BaseModel):
    """A document to ingest.

    Attributes:
        page_content: Text that is embedded and full-text indexed.
        metadata: JSON-compatible attributes used for filtering.
    """

    page_content: str = Field(description="Document text")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Filterable metadata",
    )


class SearchResult(BaseModel):
    """A ranked search hit. Never persisted.

    Attributes:
        page_content: Stored document text.
        metadata: Stored metadata; hybrid search adds ``vec_score`` and
            ``bm25_score`` for the paths that returned the document.
        score: Final relevance score (higher is more relevant).
    """

    page_content: str = Field(description="Document text")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Document metadata and per-path sub-scores",
    )
    score: float = Field(description="Relevance score")


class VecStoreOptions(BaseModel):
    """Per-call options for ingest and search.

    Attributes:
        filters: Metadata predicate; scalars match by equality, lists by membership.
        embedder: Embedding service to use instead of the store's default.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    filters: dict[str, Any] | None = Field(
        default=None,
        description="Metadata filter predicate",
    )
    embedder: EmbeddingService | None = Field(
        default=None,
        description="Embedding service override for this call",
    )


class IndexCounts(BaseModel):
    """Row counts of the primary table and each enabled shadow index."""

    documents: int = Field(description="Rows in the primary table")
    vector: int | None = Field(default=None, description="Rows in the vector index")
    lexical: int | None = Field(default=None, description="Rows in the lexical index")

    @property
    def in_lockstep(self) -> bool:
        """True when every enabled index holds exactly the primary row count."""
        return all(
            count == self.documents
            for count in (self.vector, self.lexical)
            if count is not None
        )
