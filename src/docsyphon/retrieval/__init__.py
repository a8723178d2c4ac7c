"""Documentation retrieval: vector search contract, query building and deduplication."""

from docsyphon.retrieval.dedup import canonical_path, deduplicate_docs
from docsyphon.retrieval.service import (
    RetrievalService,
    SearchQuery,
    VectorSearch,
    build_search_query,
)

__all__ = [
    "RetrievalService",
    "SearchQuery",
    "VectorSearch",
    "build_search_query",
    "canonical_path",
    "deduplicate_docs",
]
