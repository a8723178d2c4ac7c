"""
Document index backed by the document_pages table.

Pages are embedded with the OpenAI embeddings API and stored as JSON float
lists. Search ranks pages by cosine similarity in Python, which is fine for
documentation-sized corpora (a few thousand pages).
"""

import hashlib
import logging
import math
import re
from pathlib import Path
from typing import Callable, Optional, Protocol

from openai import OpenAI
from sqlalchemy.orm import Session

from docsyphon.exceptions import RetrievalError
from docsyphon.models.db import DocumentPage
from docsyphon.models.pipeline import SearchHit

logger = logging.getLogger(__name__)

DOC_SUFFIXES = (".md", ".mdx")
EMBED_BATCH_SIZE = 64
# text-embedding-3 models accept 8191 tokens; stay well under
MAX_EMBED_CHARS = 24_000

_FRONTMATTER_TITLE = re.compile(r"^---\s*\n(?:.*\n)*?title:\s*[\"']?(.+?)[\"']?\s*\n", re.MULTILINE)
_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)


class EmbeddingClient(Protocol):
    """Protocol for pluggable embedding clients."""

    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingClient:
    """Embeddings through the OpenAI SDK."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small"):
        if not api_key:
            raise ValueError("OpenAI API key is required for embeddings")
        self.client = OpenAI(api_key=api_key)
        self.model = model

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = self.client.embeddings.create(
            model=self.model,
            input=[text[:MAX_EMBED_CHARS] for text in texts],
        )
        rows = sorted(response.data, key=lambda row: row.index)
        return [list(row.embedding) for row in rows]


def cosine_similarity(left: Optional[list[float]], right: Optional[list[float]]) -> float:
    """Cosine similarity clamped to [0, 1]; 0.0 for missing or mismatched vectors."""
    if not left or not right or len(left) != len(right):
        return 0.0
    left_norm = math.sqrt(sum(v * v for v in left))
    right_norm = math.sqrt(sum(v * v for v in right))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    return max(0.0, min(1.0, dot / (left_norm * right_norm)))


def extract_title(content: str, fallback: str) -> str:
    """Title from frontmatter, then the first H1, then the fallback."""
    match = _FRONTMATTER_TITLE.match(content)
    if match:
        return match.group(1).strip()
    match = _HEADING.search(content)
    if match:
        return match.group(1).strip()
    return fallback


class DocumentIndex:
    """Vector search over indexed documentation pages.

    Searches open their own session from ``session_factory`` so they can run
    from pipeline worker threads.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        embedder: EmbeddingClient,
    ):
        self.session_factory = session_factory
        self.embedder = embedder

    def search_similar(self, query: str, top_k: int) -> list[SearchHit]:
        """
        Find the pages most similar to query.

        Raises:
            RetrievalError: If the query cannot be embedded
        """
        try:
            vectors = self.embedder.embed_texts([query])
        except Exception as e:
            raise RetrievalError(f"Failed to embed search query: {e}") from e
        if not vectors:
            return []
        query_vector = vectors[0]

        session = self.session_factory()
        try:
            pages = (
                session.query(DocumentPage)
                .filter(DocumentPage.embedding.isnot(None))
                .all()
            )
            scored = [
                SearchHit(
                    id=str(page.id),
                    file_path=page.file_path,
                    title=page.title,
                    content=page.content,
                    similarity=cosine_similarity(query_vector, page.embedding),
                )
                for page in pages
            ]
        finally:
            session.close()

        scored.sort(key=lambda hit: hit.similarity, reverse=True)
        return scored[:top_k]

    def index_directory(self, root: Path, session: Session) -> dict[str, int]:
        """
        Embed and upsert every markdown page under root.

        Pages whose content hash is unchanged are skipped. Paths are stored
        relative to root.

        Returns:
            Counts of indexed, unchanged and total files
        """
        pending: list[tuple[str, str, str, str]] = []
        unchanged = 0
        files = sorted(p for p in root.rglob("*") if p.suffix in DOC_SUFFIXES)

        for path in files:
            rel_path = path.relative_to(root).as_posix()
            content = path.read_text(encoding="utf-8")
            content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()
            existing = (
                session.query(DocumentPage)
                .filter(DocumentPage.file_path == rel_path)
                .first()
            )
            if existing is not None and existing.content_hash == content_hash:
                unchanged += 1
                continue
            title = extract_title(content, path.stem)
            pending.append((rel_path, title, content, content_hash))

        for start in range(0, len(pending), EMBED_BATCH_SIZE):
            batch = pending[start : start + EMBED_BATCH_SIZE]
            vectors = self.embedder.embed_texts(
                [f"{title}\n\n{content}" for _, title, content, _ in batch]
            )
            for (rel_path, title, content, content_hash), vector in zip(batch, vectors):
                self.upsert_page(session, rel_path, title, content, vector, content_hash)
            session.flush()
            logger.info(f"Indexed {start + len(batch)}/{len(pending)} changed pages")

        return {"indexed": len(pending), "unchanged": unchanged, "total": len(files)}

    @staticmethod
    def upsert_page(
        session: Session,
        file_path: str,
        title: str,
        content: str,
        embedding: Optional[list[float]],
        content_hash: Optional[str] = None,
    ) -> DocumentPage:
        page = (
            session.query(DocumentPage)
            .filter(DocumentPage.file_path == file_path)
            .first()
        )
        if page is None:
            page = DocumentPage(file_path=file_path)
            session.add(page)
        page.title = title
        page.content = content
        page.embedding = embedding
        page.content_hash = content_hash
        return page
