"""
Diagnosis of weak summaries into concrete, fixable deficiencies.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from .confidence import ConfidenceMeta, KeywordAnalysis, count_words

logger = logging.getLogger(__name__)

COVERAGE_LIMIT = 0.6
LENGTH_LIMIT = 0.5
STRUCTURE_LIMIT = 0.5
REPETITION_LIMIT = 0.7
SHORT_SUMMARY_WORDS = 50
MAX_LISTED_KEYWORDS = 8

# "page 12", "figure 3", "الشكل 4" ... references a summary should not invent
REFERENCE_PATTERN = re.compile(
    r'\b(page|figure|fig\.|table|chapter|exercise|صفحة|الصفحة|شكل|الشكل|جدول|الجدول|تمرين)\s*(\d+)',
    re.IGNORECASE,
)


class Severity(Enum):
    """How much a deficiency drags the score down."""

    INFO = "info"  # Cosmetic
    WARNING = "warning"  # Worth fixing in a repair
    ERROR = "error"  # Summary is not usable as is


class DeficiencyType(Enum):
    LOW_COVERAGE = "low_coverage"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    MISSING_STRUCTURE = "missing_structure"
    REPETITION = "repetition"
    OUT_OF_SCOPE = "out_of_scope"


@dataclass
class Deficiency:
    """One problem found in a summary."""

    kind: DeficiencyType
    severity: Severity
    message: str
    details: list[str] = field(default_factory=list)  # e.g. missing keywords

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.kind.value}: {self.message}"


def _references(text: str) -> set[tuple[str, str]]:
    return {(m.group(1).lower(), m.group(2)) for m in REFERENCE_PATTERN.finditer(text)}


def find_out_of_scope_references(source_text: str, summary_text: str) -> list[str]:
    """Page/figure/table references in the summary that the source never mentions."""
    source_refs = _references(source_text)
    source_numbers = {number for _, number in source_refs}
    invented = []
    for kind, number in sorted(_references(summary_text)):
        if (kind, number) not in source_refs and number not in source_numbers:
            invented.append(f"{kind} {number}")
    return invented


def diagnose_summary(
    source_text: str,
    summary_text: str,
    meta: ConfidenceMeta,
    keywords: KeywordAnalysis | None = None,
) -> list[Deficiency]:
    """List what is wrong with a summary, most severe first.

    Args:
        source_text: Page text the summary was generated from
        summary_text: The summary
        meta: Score breakdown for the summary
        keywords: Keyword analysis (supplies the missing keyword list)

    Returns:
        Deficiencies sorted by severity
    """
    found: list[Deficiency] = []

    if meta.coverage < COVERAGE_LIMIT:
        missing = keywords.missing_keywords[:MAX_LISTED_KEYWORDS] if keywords else []
        message = f"Covers {meta.coverage:.0%} of the page's key terms"
        if missing:
            message += f"; missing: {', '.join(missing)}"
        severity = Severity.ERROR if meta.coverage < COVERAGE_LIMIT / 2 else Severity.WARNING
        found.append(Deficiency(DeficiencyType.LOW_COVERAGE, severity, message, missing))

    if meta.length_fit < LENGTH_LIMIT:
        words = count_words(summary_text)
        if words < SHORT_SUMMARY_WORDS:
            found.append(Deficiency(
                DeficiencyType.TOO_SHORT, Severity.WARNING, f"Only {words} words, expand the explanation"
            ))
        else:
            found.append(Deficiency(
                DeficiencyType.TOO_LONG, Severity.WARNING, f"{words} words, condense to the essentials"
            ))

    if meta.structure < STRUCTURE_LIMIT:
        found.append(Deficiency(
            DeficiencyType.MISSING_STRUCTURE, Severity.INFO,
            "Use headings, bullet points and complete sentences",
        ))

    if meta.repetition_penalty < REPETITION_LIMIT:
        found.append(Deficiency(
            DeficiencyType.REPETITION, Severity.WARNING, "Repeats the same phrases, remove duplication"
        ))

    invented = find_out_of_scope_references(source_text, summary_text)
    if invented:
        found.append(Deficiency(
            DeficiencyType.OUT_OF_SCOPE, Severity.ERROR,
            f"Mentions {', '.join(invented)} which the page does not contain",
            invented,
        ))

    order = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}
    found.sort(key=lambda d: order[d.severity])

    if found:
        logger.debug(f"Summary deficiencies: {[d.kind.value for d in found]}")
    return found
