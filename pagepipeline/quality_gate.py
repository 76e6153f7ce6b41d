"""
Quality gate for generated summaries, with optional targeted repair.

A summary is scored against its source page. Good summaries pass, pages
with unreadable OCR are rejected outright, and weak summaries can be sent
back to the model once (or a few times) with a prompt naming what is wrong.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .confidence import ConfidenceMeta, analyze_keywords, score
from .config import GateOptions, ScoringOptions
from .diagnostics import Deficiency, diagnose_summary
from .errors import InvalidResponseError, ServiceTimeoutError, TransientServiceError
from .prompts import build_repair_prompt

logger = logging.getLogger(__name__)

MIN_REPAIR_CHARS = 50


class SummaryGenerator(Protocol):
    def generate_summary(self, prompt: str, metadata: dict, timeout: float) -> str:
        ...


class GateOutcome(Enum):
    """Terminal states of a gate run."""

    PASSED = "passed"
    REJECTED_LOW_OCR = "rejected_low_ocr"
    REJECTED_LOW_QUALITY = "rejected_low_quality"
    REPAIR_SUCCEEDED = "repair_succeeded"
    REPAIR_FAILED = "repair_failed"


@dataclass
class GateContext:
    """Page details for the repair prompt and the generator used for repair."""

    page_number: int | None = None
    book_title: str = ""
    language: str = "en"
    generator: SummaryGenerator | None = None

    @property
    def is_rtl(self) -> bool:
        return self.language == "ar"


@dataclass
class QualityResult:
    """Decision of the gate for one summary."""

    passed: bool
    needs_repair: bool
    repair_attempted: bool
    repair_successful: bool
    final_text: str
    final_confidence: float
    state: GateOutcome
    original_confidence: float
    ocr_confidence: float
    meta: ConfidenceMeta
    logs: list[str] = field(default_factory=list)
    deficiencies: list[Deficiency] = field(default_factory=list)
    network_error: bool = False


@dataclass
class _Attempt:
    text: str
    confidence: float
    meta: ConfidenceMeta


def run_gate(
    source_text: str,
    summary_text: str,
    ocr_confidence: float,
    context: GateContext | None = None,
    options: GateOptions | None = None,
    scoring: ScoringOptions | None = None,
) -> QualityResult:
    """Score a summary and decide whether it can be stored.

    Args:
        source_text: OCR text of the page
        summary_text: Generated summary
        ocr_confidence: OCR confidence of the page, 0..1
        context: Page details and repair generator (repair is skipped without one)
        options: Gate thresholds
        scoring: Scorer options

    Returns:
        QualityResult; rejection is reported through passed=False, never raised
    """
    ctx = context or GateContext()
    opts = options or GateOptions()
    sc = scoring or ScoringOptions()

    def rate(text: str) -> tuple[float, ConfidenceMeta]:
        return score(
            source_text,
            text,
            ocr_quality=ocr_confidence,
            is_rtl=ctx.is_rtl,
            top_k=sc.top_k,
            enable_synonyms=sc.enable_synonyms,
            enable_stemming=sc.enable_stemming,
        )

    original, meta = rate(summary_text)
    logs = [
        f"Initial confidence: OCR {ocr_confidence:.1%}, summary {original:.1%}",
        f"Confidence breakdown: {meta.describe()}",
    ]

    def result(state: GateOutcome, passed: bool, **kwargs) -> QualityResult:
        values = dict(
            passed=passed,
            needs_repair=False,
            repair_attempted=False,
            repair_successful=False,
            final_text=summary_text,
            final_confidence=original,
            state=state,
            original_confidence=original,
            ocr_confidence=ocr_confidence,
            meta=meta,
            logs=logs,
        )
        values.update(kwargs)
        gate_result = QualityResult(**values)
        logger.debug(f"Gate page {ctx.page_number}: {state.value} ({gate_result.final_confidence:.1%})")
        return gate_result

    if ocr_confidence < opts.min_ocr_confidence:
        logs.append(f"OCR confidence {ocr_confidence:.1%} below threshold {opts.min_ocr_confidence:.1%}")
        return result(GateOutcome.REJECTED_LOW_OCR, False)

    if original >= opts.min_summary_confidence:
        logs.append(f"Summary quality {original:.1%} meets threshold {opts.min_summary_confidence:.1%}")
        return result(GateOutcome.PASSED, True)

    if not opts.enable_repair or ctx.generator is None or opts.max_repair_attempts == 0:
        logs.append(f"Summary quality {original:.1%} below threshold, repair disabled")
        return result(GateOutcome.REJECTED_LOW_QUALITY, False)

    if original >= opts.repair_threshold:
        logs.append(
            f"Summary quality {original:.1%} below threshold but above repair threshold "
            f"{opts.repair_threshold:.1%}, not repairing"
        )
        return result(GateOutcome.REJECTED_LOW_QUALITY, False)

    keywords = analyze_keywords(
        source_text,
        summary_text,
        rtl=ctx.is_rtl,
        top_k=sc.top_k,
        stem=sc.enable_stemming,
        use_synonyms=sc.enable_synonyms,
    )
    deficiencies = diagnose_summary(source_text, summary_text, meta, keywords)
    prompt = build_repair_prompt(
        source_text,
        summary_text,
        meta,
        deficiencies,
        book_title=ctx.book_title,
        page_number=ctx.page_number,
        language=ctx.language,
    )
    metadata = {"page": ctx.page_number, "title": ctx.book_title, "lang": ctx.language, "is_repair": True}
    logs.append(f"Attempting repair for summary with {original:.1%} confidence ({len(deficiencies)} deficiencies)")

    best: _Attempt | None = None
    infra_failure: TransientServiceError | None = None

    for attempt in range(1, opts.max_repair_attempts + 1):
        try:
            repaired = ctx.generator.generate_summary(prompt, metadata, opts.repair_timeout)
        except ServiceTimeoutError as e:
            logs.append(f"Repair attempt {attempt} timed out: {e}")
            infra_failure = e
            continue
        except TransientServiceError as e:
            logs.append(f"Repair attempt {attempt} network error: {e}")
            infra_failure = e
            continue
        except InvalidResponseError as e:
            logs.append(f"Repair attempt {attempt} returned an invalid response: {e}")
            continue

        repaired = (repaired or "").strip()
        if len(repaired) < MIN_REPAIR_CHARS:
            logs.append(f"Repair attempt {attempt} failed: empty or too short result ({len(repaired)} chars)")
            continue

        repaired_confidence, repaired_meta = rate(repaired)
        logs.append(f"Repair attempt {attempt}: {repaired_confidence:.1%} confidence (was {original:.1%})")
        if best is None or repaired_confidence > best.confidence:
            best = _Attempt(repaired, repaired_confidence, repaired_meta)

    repair_fields = dict(needs_repair=True, repair_attempted=True, deficiencies=deficiencies)

    if best is not None:
        if best.confidence - original >= opts.improvement_margin:
            passed = best.confidence >= opts.min_summary_confidence
            logs.append(
                f"Repair improved confidence by {best.confidence - original:.1%}, "
                f"{'passes' if passed else 'still below'} threshold"
            )
            return result(
                GateOutcome.REPAIR_SUCCEEDED,
                passed,
                repair_successful=True,
                final_text=best.text,
                final_confidence=best.confidence,
                **repair_fields,
            )

        logs.append(
            f"Repair gained only {best.confidence - original:.1%} "
            f"(needs {opts.improvement_margin:.1%}), keeping original summary"
        )
        return result(GateOutcome.REPAIR_FAILED, False, **repair_fields)

    if infra_failure is not None:
        if isinstance(infra_failure, ServiceTimeoutError):
            ratio = opts.relaxed_timeout_ratio
            logs.append("Repair timed out, proceeding with original summary")
        else:
            ratio = opts.relaxed_network_ratio
            logs.append("Network error during repair, proceeding with original summary")

        relaxed = opts.min_summary_confidence * ratio
        passed = original >= relaxed
        logs.append(f"Relaxed threshold {relaxed:.1%}: {'passed' if passed else 'rejected'}")
        return result(GateOutcome.REPAIR_FAILED, passed, network_error=True, **repair_fields)

    logs.append("Repair produced no usable summary, keeping original")
    return result(GateOutcome.REPAIR_FAILED, False, **repair_fields)
