"""
Retrieval of existing documentation for a conversation.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from docsyphon.exceptions import RetrievalError
from docsyphon.models.pipeline import ConversationGroup, SearchHit
from docsyphon.retrieval.dedup import deduplicate_docs

logger = logging.getLogger(__name__)

# Characters of raw conversation text used when no semantic query exists
FALLBACK_QUERY_CHARS = 500


class VectorSearch(Protocol):
    """Search contract the retrieval service depends on."""

    def search_similar(self, query: str, top_k: int) -> list[SearchHit]: ...


@dataclass
class SearchQuery:
    text: str
    keywords: list[str] = field(default_factory=list)


def build_search_query(conversation: ConversationGroup) -> SearchQuery:
    """
    Build the search query for a conversation.

    Unique semantic queries from the messages' search criteria are joined;
    when there are none, the start of the conversation text is used.
    Keywords are collected for logging and future hybrid search.
    """
    semantic: list[str] = []
    keywords: list[str] = []
    for message in conversation.messages:
        criteria = message.rag_search_criteria
        if criteria is None:
            continue
        if criteria.semantic_query and criteria.semantic_query not in semantic:
            semantic.append(criteria.semantic_query)
        for keyword in criteria.keywords:
            if keyword not in keywords:
                keywords.append(keyword)

    if semantic:
        text = " ".join(semantic)
    else:
        text = " ".join(m.content for m in conversation.messages)[:FALLBACK_QUERY_CHARS]

    return SearchQuery(text=text, keywords=keywords)


class RetrievalService:
    """Searches for related docs and collapses duplicates."""

    def __init__(self, search: VectorSearch, top_k: int = 5):
        self.search = search
        self.top_k = top_k

    def retrieve(self, conversation: ConversationGroup) -> list[SearchHit]:
        """
        Retrieve deduplicated documentation for a conversation.

        Over-fetches twice top_k so that deduplication still leaves top_k
        distinct documents in the common case.

        Raises:
            RetrievalError: If the search backend fails
        """
        query = build_search_query(conversation)
        if not query.text.strip():
            logger.warning(f"Empty search query for conversation {conversation.id}")
            return []

        try:
            hits = self.search.search_similar(query.text, self.top_k * 2)
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(
                f"Vector search failed for conversation {conversation.id}: {e}"
            ) from e

        docs = deduplicate_docs(hits)[: self.top_k]
        logger.info(
            f"Retrieved {len(docs)} docs ({len(hits)} raw) for {conversation.id} "
            f"keywords={query.keywords[:5]}"
        )
        return docs
