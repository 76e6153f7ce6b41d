"""
Page record storage: one JSON file per page.

Layout: <store_dir>/<document_id>/page_NNNN.json
"""

import logging
import math
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .errors import InputError
from .models import PageRecord

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between two vectors (0 for mismatched or zero vectors)."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class PageStore:
    """Durable page records with a brute-force similarity index."""

    def __init__(self, store_dir: Path) -> None:
        self.store_dir = Path(store_dir)
        self._lock = threading.Lock()

    def _document_dir(self, document_id: str) -> Path:
        if not document_id or "/" in document_id or "\\" in document_id or document_id in (".", ".."):
            raise InputError(f"Invalid document id: {document_id!r}")
        return self.store_dir / document_id

    def page_path(self, document_id: str, page_number: int) -> Path:
        if page_number < 0:
            raise InputError(f"Page number must be >= 0, got {page_number}")
        return self._document_dir(document_id) / f"page_{page_number:04d}.json"

    def read_page_record(self, document_id: str, page_number: int) -> PageRecord | None:
        """Load a page record, or None if the page was never stored.

        Unreadable files are logged and treated as missing so the page gets
        processed again.
        """
        path = self.page_path(document_id, page_number)
        if not path.exists():
            return None

        try:
            return PageRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Could not read page record {path}: {e}")
            return None

    def write_page_record(self, document_id: str, page_number: int, **fields) -> PageRecord:
        """Create or update a page record, merging the given fields.

        Returns:
            The record as written
        """
        path = self.page_path(document_id, page_number)

        with self._lock:
            existing = self.read_page_record(document_id, page_number)
            data = existing.model_dump() if existing else {"document_id": document_id, "page_number": page_number}
            data.update(fields)
            data["updated_at"] = datetime.now(timezone.utc)
            record = PageRecord.model_validate(data)

            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(record.model_dump_json(indent=2))
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        logger.debug(f"Saved page record {document_id}/{page_number}")
        return record

    def is_page_done(self, document_id: str, page_number: int) -> bool:
        record = self.read_page_record(document_id, page_number)
        return record is not None and record.is_complete

    def list_pages(self, document_id: str) -> list[int]:
        """Page numbers with a stored record, ascending."""
        doc_dir = self._document_dir(document_id)
        if not doc_dir.exists():
            return []
        pages = []
        for path in doc_dir.glob("page_*.json"):
            try:
                pages.append(int(path.stem.split("_", 1)[1]))
            except ValueError:
                continue
        return sorted(pages)

    def similarity_search(
        self, document_id: str, query_embedding: list[float], before_page: int, limit: int
    ) -> list[dict]:
        """Most similar earlier pages that have an embedding.

        Returns:
            Rows of {page_number, similarity, content, title}, best first
        """
        rows = []
        for page_number in self.list_pages(document_id):
            if page_number >= before_page:
                break
            record = self.read_page_record(document_id, page_number)
            if record is None or not record.embedding:
                continue
            rows.append({
                "page_number": page_number,
                "similarity": cosine_similarity(query_embedding, record.embedding),
                "content": record.raw_text or "",
                "title": None,
            })

        rows.sort(key=lambda r: r["similarity"], reverse=True)
        return rows[:limit]
