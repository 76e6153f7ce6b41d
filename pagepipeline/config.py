"""
Configuration for the page processing pipeline.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ScoringOptions:
    """Options for the summary confidence scorer.

    Attributes:
        top_k: Number of frequency-ranked keywords compared per text
        enable_synonyms: Give partial credit to domain synonyms
        enable_stemming: Strip common Arabic suffixes before counting
    """

    top_k: int = 20
    enable_synonyms: bool = True
    enable_stemming: bool = False

    def __post_init__(self) -> None:
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")


@dataclass
class OcrOptions:
    """Options for the OCR ensemble.

    Attributes:
        language: Recognition language code ('eng', 'ara', 'ara+eng', ...)
        preferred_segmentation_mode: Mode tried right after the cached winner
        auto_rotate: Detect orientation first (None = only for Arabic)
        preprocess_variants: Build binarized variants (None = only for Arabic)
    """

    language: str = "eng"
    preferred_segmentation_mode: int = 6
    auto_rotate: bool | None = None
    preprocess_variants: bool | None = None

    def __post_init__(self) -> None:
        if not self.language or not self.language.strip():
            raise ValueError("language cannot be empty")
        if not 0 <= self.preferred_segmentation_mode <= 13:
            raise ValueError(
                f"preferred_segmentation_mode must be in [0, 13], got {self.preferred_segmentation_mode}"
            )

    @property
    def is_arabic(self) -> bool:
        return "ara" in self.language

    @property
    def should_rotate(self) -> bool:
        return self.is_arabic if self.auto_rotate is None else self.auto_rotate

    @property
    def should_preprocess(self) -> bool:
        return self.is_arabic if self.preprocess_variants is None else self.preprocess_variants


@dataclass
class GateOptions:
    """Thresholds for the summary quality gate.

    The relaxed ratios apply when a repair call fails for infrastructure
    reasons: the original summary passes if it reaches that fraction of
    min_summary_confidence.
    """

    min_ocr_confidence: float = 0.3
    min_summary_confidence: float = 0.4
    enable_repair: bool = False
    repair_threshold: float = 0.35
    max_repair_attempts: int = 1
    improvement_margin: float = 0.05
    repair_timeout: float = 20.0
    relaxed_timeout_ratio: float = 0.9
    relaxed_network_ratio: float = 0.8

    def __post_init__(self) -> None:
        for name in (
            "min_ocr_confidence",
            "min_summary_confidence",
            "repair_threshold",
            "improvement_margin",
            "relaxed_timeout_ratio",
            "relaxed_network_ratio",
        ):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be in [0, 1], got {value}")

        if self.max_repair_attempts < 0:
            raise ValueError(f"max_repair_attempts must be >= 0, got {self.max_repair_attempts}")

        if self.repair_timeout <= 0:
            raise ValueError(f"repair_timeout must be > 0, got {self.repair_timeout}")


@dataclass
class RetrievalOptions:
    """Options for prior-page context retrieval."""

    enabled: bool = False
    max_pages: int = 3
    similarity_threshold: float = 0.4
    max_total_chars: int = 8000
    min_excerpt_chars: int = 100

    def __post_init__(self) -> None:
        if self.max_pages < 0:
            raise ValueError(f"max_pages must be >= 0, got {self.max_pages}")
        if not -1 <= self.similarity_threshold <= 1:
            raise ValueError(f"similarity_threshold must be in [-1, 1], got {self.similarity_threshold}")
        if self.max_total_chars < 0:
            raise ValueError(f"max_total_chars must be >= 0, got {self.max_total_chars}")
        if self.min_excerpt_chars < 0:
            raise ValueError(f"min_excerpt_chars must be >= 0, got {self.min_excerpt_chars}")


@dataclass
class AutomationOptions:
    """Timing and retry policy for batch runs (seconds)."""

    skip_processed: bool = True
    dry_run: bool = False
    settle_delay: float = 2.0
    pause_poll_interval: float = 1.0
    check_attempts: int = 3
    check_backoff: float = 2.0
    process_attempts: int = 3
    process_backoff: float = 3.0
    validate_attempts: int = 3
    validate_backoff: float = 1.5
    min_delay: float = 0.8
    max_delay: float = 1.5
    stall_after: float = 120.0

    def __post_init__(self) -> None:
        for name in ("check_attempts", "process_attempts", "validate_attempts"):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")

        for name in (
            "settle_delay",
            "pause_poll_interval",
            "check_backoff",
            "process_backoff",
            "validate_backoff",
            "min_delay",
            "max_delay",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

        if self.min_delay > self.max_delay:
            raise ValueError(f"min_delay ({self.min_delay}) cannot exceed max_delay ({self.max_delay})")

        if self.stall_after <= 0:
            raise ValueError(f"stall_after must be > 0, got {self.stall_after}")


@dataclass
class ServiceConfig:
    """Endpoints of the external LLM and embedding services."""

    llm_api_url: str = "http://localhost:8080/v1/chat/completions"
    llm_model: str = "gpt-4o-mini"
    embedding_api_url: str = "http://localhost:8080/v1/embeddings"
    embedding_model: str = "text-embedding-3-small"
    api_key: str | None = None
    request_timeout: float = 120.0

    def __post_init__(self) -> None:
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Build from PAGEPIPELINE_* environment variables."""
        defaults = cls()
        return cls(
            llm_api_url=os.getenv("PAGEPIPELINE_LLM_API_URL", defaults.llm_api_url),
            llm_model=os.getenv("PAGEPIPELINE_LLM_MODEL", defaults.llm_model),
            embedding_api_url=os.getenv("PAGEPIPELINE_EMBEDDING_API_URL", defaults.embedding_api_url),
            embedding_model=os.getenv("PAGEPIPELINE_EMBEDDING_MODEL", defaults.embedding_model),
            api_key=os.getenv("PAGEPIPELINE_API_KEY") or None,
            request_timeout=float(os.getenv("PAGEPIPELINE_REQUEST_TIMEOUT", defaults.request_timeout)),
        )


@dataclass
class PipelineConfig:
    """Configuration for the page processing pipeline.

    Attributes:
        store_dir: Directory holding one JSON record per processed page
        book_title: Title of the book (used in prompts)
        language: Book language code ('en' or 'ar'); 'ar' switches to RTL scoring

        scoring, ocr, gate, retrieval, automation, services:
            Per-component options, see the respective dataclasses
    """

    # Required
    store_dir: Path
    book_title: str

    # Optional metadata
    language: str = "en"

    scoring: ScoringOptions = field(default_factory=ScoringOptions)
    ocr: OcrOptions = field(default_factory=OcrOptions)
    gate: GateOptions = field(default_factory=GateOptions)
    retrieval: RetrievalOptions = field(default_factory=RetrievalOptions)
    automation: AutomationOptions = field(default_factory=AutomationOptions)
    services: ServiceConfig = field(default_factory=ServiceConfig)

    supported_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff")

    def __post_init__(self) -> None:
        """Validate and convert paths."""
        self.store_dir = Path(self.store_dir)

        if not self.book_title or not self.book_title.strip():
            raise ValueError("book_title cannot be empty")

        valid_languages = {"en", "ar"}
        if self.language not in valid_languages:
            raise ValueError(f"Invalid language: {self.language!r}. Valid: {valid_languages}")

    @property
    def is_rtl(self) -> bool:
        return self.language == "ar"

    @property
    def document_id(self) -> str:
        """Stable identifier derived from the book title."""
        safe = "".join(c if c.isalnum() or c in " -_" else "_" for c in self.book_title)
        return safe.strip().replace(" ", "_")[:100]

    @property
    def document_dir(self) -> Path:
        """Directory holding this book's page records."""
        return self.store_dir / self.document_id
