"""
Context from earlier pages of the same book, for summary prompts.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import ValidationError

from .config import RetrievalOptions
from .models import SimilarityHit
from .text_cleaner import detect_non_content_page

logger = logging.getLogger(__name__)

ELLIPSIS = "..."
# Rows requested from the index per page finally kept, to survive threshold filtering
OVERFETCH = 3


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]:
        ...


class SimilarityIndex(Protocol):
    def similarity_search(
        self, document_id: str, query_embedding: list[float], before_page: int, limit: int
    ) -> list[dict]:
        ...


@dataclass
class RetrievalContextItem:
    page_number: int
    title: str | None
    content_excerpt: str
    similarity: float


@dataclass
class RetrievalResult:
    """Accepted context, most similar page first."""

    items: list[RetrievalContextItem] = field(default_factory=list)
    pages_found: int = 0
    pages_sent: int = 0
    total_chars: int = 0

    @property
    def page_numbers(self) -> list[int]:
        return [item.page_number for item in self.items]

    @property
    def similarities(self) -> list[float]:
        return [item.similarity for item in self.items]


def _validate_hits(rows: list, current_page_number: int) -> list[SimilarityHit]:
    hits = []
    for row in rows:
        try:
            hit = SimilarityHit.model_validate(row)
        except ValidationError as e:
            logger.debug(f"Dropping malformed similarity row: {e.error_count()} errors")
            continue
        # Never look ahead, whatever the index returned
        if hit.page_number >= current_page_number:
            continue
        if not hit.content.strip():
            continue
        hits.append(hit)
    return hits


def budget_excerpts(hits: list[SimilarityHit], max_total_chars: int, min_excerpt_chars: int) -> list[RetrievalContextItem]:
    """Cut page contents so their combined length stays within max_total_chars.

    Pages are taken in order; the first page that does not fit is truncated
    with an ellipsis, and filling stops once less than min_excerpt_chars of
    budget remains.
    """
    items = []
    total = 0
    for hit in hits:
        remaining = max_total_chars - total
        content = hit.content.strip()

        if len(content) <= remaining:
            excerpt = content
        elif remaining >= max(min_excerpt_chars, len(ELLIPSIS) + 1):
            excerpt = content[: remaining - len(ELLIPSIS)].rstrip() + ELLIPSIS
        else:
            break

        items.append(RetrievalContextItem(hit.page_number, hit.title, excerpt, hit.similarity))
        total += len(excerpt)

        if max_total_chars - total < min_excerpt_chars:
            break
    return items


def retrieve(
    embedder: Embedder,
    index: SimilarityIndex,
    document_id: str,
    current_page_number: int,
    query_text: str,
    options: RetrievalOptions | None = None,
) -> RetrievalResult:
    """Find earlier pages similar to the current one.

    Args:
        embedder: Turns the query text into a vector
        index: Similarity search over stored page embeddings
        document_id: Book being processed
        current_page_number: Only pages before this one are eligible
        query_text: Text of the current page
        options: Limits and threshold

    Returns:
        RetrievalResult; empty on any failure so processing can go on
    """
    opts = options or RetrievalOptions()
    if opts.max_pages == 0 or opts.max_total_chars == 0 or not query_text.strip():
        return RetrievalResult()

    try:
        query_embedding = embedder.embed(query_text)
        rows = index.similarity_search(
            document_id, query_embedding, before_page=current_page_number, limit=opts.max_pages * OVERFETCH
        )

        hits = [
            hit for hit in _validate_hits(rows or [], current_page_number)
            if hit.similarity >= opts.similarity_threshold
        ]
        hits.sort(key=lambda h: h.similarity, reverse=True)

        items = budget_excerpts(hits[: opts.max_pages], opts.max_total_chars, opts.min_excerpt_chars)
    except Exception as e:
        logger.warning(f"Context retrieval failed for page {current_page_number}, continuing without: {e}")
        return RetrievalResult()

    result = RetrievalResult(
        items=items,
        pages_found=len(hits),
        pages_sent=len(items),
        total_chars=sum(len(item.content_excerpt) for item in items),
    )
    logger.info(
        f"Retrieved {result.pages_sent}/{result.pages_found} context pages for page "
        f"{current_page_number} ({result.total_chars} chars)"
    )
    return result


def build_augmented_prompt(original_prompt: str, current_page_text: str, items: list[RetrievalContextItem]) -> str:
    """Put earlier-page context and the full current page ahead of a prompt."""
    if not items:
        return original_prompt

    parts = ["Context from previous pages in the book:\n---\n"]
    for item in items:
        title = f" ({item.title})" if item.title else ""
        parts.append(f"Page {item.page_number}{title}:\n{item.content_excerpt}\n\n")
    parts.append("---\n\n")
    parts.append(f"Full text of the current page:\n---\n{current_page_text}\n---\n\n")
    parts.append(original_prompt)
    return "".join(parts)


def should_embed(text: str) -> bool:
    """Only index pages with real content."""
    if not text or len(text.strip()) < 50:
        return False
    return detect_non_content_page(text).is_content
