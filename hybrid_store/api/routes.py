"""API routes for document ingest, search and deletion."""

from enum import Enum
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, model_validator

from hybrid_store.logging_config import get_logger
from hybrid_store.vectorstore.models import Document, SearchResult, VecStoreOptions
from hybrid_store.vectorstore.service import HybridStore

logger = get_logger(__name__)


# Create router
router = APIRouter(prefix="/api/v1", tags=["Documents"])


class SearchMode(str, Enum):
    """Search strategy requested by the client."""

    SIMILARITY = "similarity"
    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class AddDocumentsRequest(BaseModel):
    """Request body for document ingestion."""

    documents: list[Document] = Field(
        min_length=1,
        description="Documents to store in one atomic batch",
    )


class AddDocumentsResponse(BaseModel):
    """Response from document ingestion."""

    ids: list[str] = Field(description="Assigned document IDs, in input order")


class SearchRequest(BaseModel):
    """Request body for search."""

    query: str = Field(description="Search query")
    limit: int = Field(default=5, ge=1, le=100, description="Maximum results")
    mode: SearchMode = Field(
        default=SearchMode.SIMILARITY,
        description="Search strategy; similarity uses the store's configured mode",
    )
    filters: dict[str, Any] | None = Field(
        default=None,
        description="Metadata predicate; scalars match by equality, lists by membership",
    )


class SearchResponse(BaseModel):
    """Response from search."""

    results: list[SearchResult] = Field(description="Results, best first")
    mode: SearchMode = Field(description="Search strategy used")


class DeleteDocumentsRequest(BaseModel):
    """Request body for targeted deletion. Exactly one selector is required."""

    ids: list[str] | None = Field(default=None, description="Document IDs to delete")
    filters: dict[str, Any] | None = Field(
        default=None,
        description="Metadata predicate selecting documents to delete",
    )

    @model_validator(mode="after")
    def _one_selector(self) -> "DeleteDocumentsRequest":
        if (self.ids is None) == (self.filters is None):
            raise ValueError("Provide exactly one of 'ids' or 'filters'")
        return self


class DeleteDocumentsResponse(BaseModel):
    """Response from deletion."""

    deleted: int = Field(description="Number of documents deleted")


def get_store(request: Request) -> HybridStore:
    """Resolve the store created by the application lifespan."""
    store: HybridStore | None = getattr(request.app.state, "store", None)
    if store is None:
        logger.warning("Document store not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "Document store not configured",
                "message": "The store is created when the application starts",
            },
        )
    return store


StoreDep = Annotated[HybridStore, Depends(get_store)]


@router.post("/documents", response_model=AddDocumentsResponse, status_code=201)
async def add_documents_endpoint(
    request: AddDocumentsRequest,
    store: StoreDep,
) -> AddDocumentsResponse:
    """Embed and store a batch of documents."""
    ids = await store.add_documents(request.documents)
    return AddDocumentsResponse(ids=ids)


@router.post("/search", response_model=SearchResponse)
async def search_endpoint(request: SearchRequest, store: StoreDep) -> SearchResponse:
    """Search documents with the requested strategy."""
    options = VecStoreOptions(filters=request.filters)

    if request.mode == SearchMode.VECTOR:
        results = await store.vector_search(request.query, request.limit, options)
    elif request.mode == SearchMode.KEYWORD:
        results = await store.keyword_search(request.query, request.limit, options)
    elif request.mode == SearchMode.HYBRID:
        results = await store.hybrid_search(request.query, request.limit, options)
    else:
        results = await store.similarity_search(request.query, request.limit, options)

    return SearchResponse(results=results, mode=request.mode)


@router.post("/documents/delete", response_model=DeleteDocumentsResponse)
async def delete_documents_endpoint(
    request: DeleteDocumentsRequest,
    store: StoreDep,
) -> DeleteDocumentsResponse:
    """Delete documents by ID or by metadata predicate."""
    if request.ids is not None:
        deleted = await store.delete_documents_by_ids(request.ids)
    else:
        deleted = await store.delete_documents_by_metadata(request.filters or {})
    return DeleteDocumentsResponse(deleted=deleted)


@router.delete("/documents", response_model=DeleteDocumentsResponse)
async def delete_all_documents_endpoint(store: StoreDep) -> DeleteDocumentsResponse:
    """Delete every document."""
    deleted = await store.delete_all_documents()
    return DeleteDocumentsResponse(deleted=deleted)
