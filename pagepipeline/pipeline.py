"""
Page processing pipeline: OCR -> cleaning -> context -> summary -> gate -> store.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from PIL import Image

from .automation import AutomationController, AutomationHooks
from .clients import EmbeddingClient, LLMClient
from .config import PipelineConfig
from .errors import InputError, PipelineError
from .models import RetrievalMetadata
from .ocr import OcrEnsembleExtractor, OcrResult, RecognitionEngine, TesseractEngine
from .preprocessor import load_image
from .progress import AutomationProgress
from .prompts import build_summary_prompt
from .quality_gate import GateContext, QualityResult, run_gate
from .retrieval import Embedder, RetrievalResult, build_augmented_prompt, retrieve, should_embed
from .store import PageStore
from .text_cleaner import CleaningResult, clean_ocr_text

logger = logging.getLogger(__name__)

@dataclass
class PageProcessingResult:
    """Everything that happened to one page."""

    document_id: str
    page_number: int
    ocr: OcrResult
    cleaning: CleaningResult | None = None
    retrieval: RetrievalResult | None = None
    summary_text: str | None = None
    gate: QualityResult | None = None
    saved: bool = False
    embedded: bool = False
    message: str = ""


class PagePipeline:
    """Processes single pages and builds the hooks for batch runs.

    Usage:
        config = PipelineConfig(store_dir="./store", book_title="Biology 1")
        pipeline = PagePipeline(config)
        result = pipeline.process_page(config.document_id, 12, image)
    """

    def __init__(
        self,
        config: PipelineConfig,
        engine: RecognitionEngine | None = None,
        llm: LLMClient | None = None,
        embedder: Embedder | None = None,
        store: PageStore | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Pipeline configuration
            engine: OCR engine (default: tesseract)
            llm: Summary generator (default: LLMClient from config.services)
            embedder: Embedding source (default: EmbeddingClient when retrieval is enabled)
            store: Page record store (default: PageStore at config.store_dir)
        """
        self.config = config
        self._setup_logging()

        self.extractor = OcrEnsembleExtractor(engine or TesseractEngine(), config.ocr)
        self._owned = []
        if llm is None:
            llm = LLMClient(config.services)
            self._owned.append(llm)
        if embedder is None and config.retrieval.enabled:
            embedder = EmbeddingClient(config.services)
            self._owned.append(embedder)
        self.llm = llm
        self.embedder = embedder
        self.store = store or PageStore(config.store_dir)

    def _setup_logging(self) -> None:
        """Only sets up a basic config if no handlers are configured,
        allowing the CLI to control logging setup.
        """
        if not logging.root.handlers:
            logging.basicConfig(
                level=logging.INFO,
                format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )

    def close(self) -> None:
        """Close the service clients this pipeline created."""
        for client in self._owned:
            client.close()
        self._owned.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _generate_summary(self, prompt: str, page_number: int) -> str:
        # Retried by the batch controller together with the whole page
        metadata = {"page": page_number, "title": self.config.book_title, "lang": self.config.language}
        return self.llm.generate_summary(prompt, metadata, self.config.services.request_timeout)

    def _retrieve_context(self, document_id: str, page_number: int, text: str) -> RetrievalResult | None:
        if not self.config.retrieval.enabled or self.embedder is None:
            return None
        return retrieve(self.embedder, self.store, document_id, page_number, text, self.config.retrieval)

    def _store_embedding(self, document_id: str, page_number: int, text: str) -> bool:
        if self.embedder is None or not should_embed(text):
            return False
        try:
            embedding = self.embedder.embed(text)
        except PipelineError as e:
            logger.warning(f"Embedding failed for page {page_number}, retrieval will skip it: {e}")
            return False
        self.store.write_page_record(document_id, page_number, embedding=embedding)
        return True

    def process_page(self, document_id: str, page_number: int, image: Image.Image | None) -> PageProcessingResult:
        """Run one page through the whole pipeline.

        New raw text replaces any earlier summary and embedding. The summary
        is only stored when the quality gate passes, so a rejected page stays
        incomplete and is picked up again on the next run.

        Args:
            document_id: Book the page belongs to
            page_number: Page number within the book
            image: Scanned page

        Returns:
            PageProcessingResult

        Raises:
            InputError: If the image is missing
            TransientServiceError: If summary generation fails
        """
        ocr = self.extractor.extract(image)
        result = PageProcessingResult(document_id, page_number, ocr)

        if not ocr.success:
            result.message = "No text recognized"
            logger.warning(f"Page {page_number}: no text recognized")
            return result

        cleaning = clean_ocr_text(ocr.text)
        result.cleaning = cleaning
        text = cleaning.cleaned_text
        for improvement in cleaning.improvements:
            logger.debug(f"Page {page_number}: {improvement}")

        self.store.write_page_record(
            document_id,
            page_number,
            raw_text=text,
            raw_text_confidence=ocr.confidence,
            summary_text=None,
            summary_confidence=0.0,
            embedding=None,
            retrieval_metadata=None,
        )

        retrieval = self._retrieve_context(document_id, page_number, text)
        result.retrieval = retrieval

        prompt = build_summary_prompt(text, self.config.book_title, page_number, self.config.language)
        if retrieval and retrieval.items:
            prompt = build_augmented_prompt(prompt, text, retrieval.items)

        summary = self._generate_summary(prompt, page_number)
        result.summary_text = summary

        gate = run_gate(
            text,
            summary,
            ocr.confidence,
            GateContext(
                page_number=page_number,
                book_title=self.config.book_title,
                language=self.config.language,
                generator=self.llm,
            ),
            self.config.gate,
            self.config.scoring,
        )
        result.gate = gate
        for line in gate.logs:
            logger.debug(f"Page {page_number} gate: {line}")

        if not gate.passed:
            result.message = f"Summary rejected ({gate.state.value}, {gate.final_confidence:.1%})"
            logger.warning(f"Page {page_number}: {result.message}")
            return result

        fields = {"summary_text": gate.final_text, "summary_confidence": gate.final_confidence}
        if retrieval is not None:
            fields["retrieval_metadata"] = RetrievalMetadata(
                pages_found=retrieval.pages_found,
                pages_sent=retrieval.pages_sent,
                context_chars=retrieval.total_chars,
                pages=retrieval.page_numbers,
                similarities=retrieval.similarities,
            )
        self.store.write_page_record(document_id, page_number, **fields)
        result.saved = True

        result.embedded = self._store_embedding(document_id, page_number, text)
        result.message = f"Saved ({gate.state.value}, {gate.final_confidence:.1%})"
        logger.info(f"Page {page_number}: {result.message}")
        return result

    def hooks_for(self, document_id: str, images: Mapping[int, Path]) -> AutomationHooks:
        """Controller hooks for a book whose pages are image files.

        Args:
            document_id: Book to process
            images: Page number -> image path

        Returns:
            AutomationHooks; process_page reports False when the summary was not stored
        """
        loaded: dict[int, Image.Image] = {}

        def navigate(doc_id: str, page_number: int) -> None:
            loaded.clear()
            path = images.get(page_number)
            if path is None:
                raise InputError(f"No image for page {page_number}")
            loaded[page_number] = load_image(path)

        def validate_page(doc_id: str, page_number: int) -> bool:
            return page_number in loaded

        def is_page_done(doc_id: str, page_number: int) -> bool:
            return self.store.is_page_done(doc_id, page_number)

        def process_page(doc_id: str, page_number: int) -> bool:
            image = loaded.get(page_number)
            if image is None:
                raise InputError(f"Page {page_number} was not loaded")
            return self.process_page(doc_id, page_number, image).saved

        return AutomationHooks(
            is_page_done=is_page_done,
            process_page=process_page,
            navigate=navigate,
            validate_page=validate_page,
        )

    def create_controller(
        self,
        images: Mapping[int, Path],
        on_progress: Callable[[AutomationProgress], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> AutomationController:
        """Batch controller wired to this pipeline's hooks for config.document_id."""
        return AutomationController(
            self.hooks_for(self.config.document_id, images),
            self.config.automation,
            on_progress=on_progress,
            sleep=sleep,
        )


def number_pages(image_paths: list[Path], first_page: int = 1) -> dict[int, Path]:
    """Assign consecutive page numbers to ordered image paths."""
    return {first_page + i: path for i, path in enumerate(image_paths)}
