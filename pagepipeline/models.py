"""
Persisted page records and validated payloads from external services.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import InvalidResponseError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetrievalMetadata(BaseModel):
    """Which prior pages were sent as context for a summary."""

    pages_found: int = 0
    pages_sent: int = 0
    context_chars: int = 0
    pages: list[int] = Field(default_factory=list)
    similarities: list[float] = Field(default_factory=list)


class PageRecord(BaseModel):
    """Durable state of one page, keyed by (document_id, page_number)."""

    document_id: str
    page_number: int = Field(ge=0)
    raw_text: str | None = None
    raw_text_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    summary_text: str | None = None
    summary_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    embedding: list[float] | None = None
    retrieval_metadata: RetrievalMetadata | None = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_complete(self) -> bool:
        """A page is done once both extracted text and summary exist."""
        return bool(self.raw_text and self.raw_text.strip()) and bool(
            self.summary_text and self.summary_text.strip()
        )


class RecognitionPayload(BaseModel):
    """Output of one OCR engine call."""

    text: str = ""
    confidence: float = 0.0

    @field_validator("confidence")
    @classmethod
    def _normalize_confidence(cls, value: float) -> float:
        # Engines report either 0..1 or 0..100
        if value > 1.0:
            value = value / 100.0
        return max(0.0, min(1.0, value))


class SimilarityHit(BaseModel):
    """One row returned by the similarity index."""

    page_number: int = Field(ge=0)
    similarity: float
    content: str = ""
    title: str | None = None


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletion(BaseModel):
    """Subset of an OpenAI-compatible chat completion response."""

    choices: list[ChatChoice]

    @property
    def text(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class EmbeddingItem(BaseModel):
    embedding: list[float]


class EmbeddingResponse(BaseModel):
    """Subset of an OpenAI-compatible embeddings response."""

    data: list[EmbeddingItem]


def parse_payload(model: type[BaseModel], payload: object, source: str):
    """Validate an external payload, raising InvalidResponseError on mismatch."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidResponseError(f"Malformed {source} payload: {e.error_count()} validation errors") from e
