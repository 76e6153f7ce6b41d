"""
Text cleaning for OCR output.

Two levels of cleaning:
- clean_recognized_text: normalization applied to every OCR winner
  (whitespace, noise glyphs, digits, bidi marks, repeated punctuation)
- clean_ocr_text: heavier cleanup before summarization (headers/footers,
  hyphenation, fragmented lines, repetition hallucinations)
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Arabic-Indic and Extended (Persian) Arabic-Indic digits -> ASCII
DIGIT_TRANSLATION = str.maketrans(
    '٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹',
    '01234567890123456789',
)

# LRM, RLM, ALM, embeddings/overrides, isolates, zero-width no-break space
BIDI_MARKS = re.compile('[\u200e\u200f\u061c\u202a-\u202e\u2066-\u2069\ufeff]')

# Glyphs OCR engines emit for specks, borders and bullets they cannot read
NOISE_CHARS = re.compile(r'[□■◊◆●○►▼▲★☆♦♣♠♥※¤¦|~`^_\\{}<>]')

REPEATED_DOTS = re.compile(r'\.{4,}')
REPEATED_PUNCT = re.compile(r'([!?,;:،؛؟\-])\1+')
SPACES = re.compile(r'[ \t ]+')
BLANK_LINES = re.compile(r'\n\s*\n(\s*\n)+')

HEADER_FOOTER_PATTERNS = [
    re.compile(r'^(الفصل|Chapter)\s*\d+.*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^(صفحة|Page)\s*\d+.*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^\d+\s*$', re.MULTILINE),  # standalone page numbers
    re.compile(r'^.*(وزارة التعليم|Ministry of Education).*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^.*(الطبعة|Edition).*\d+.*$', re.IGNORECASE | re.MULTILINE),
]

HYPHEN_BREAK = re.compile(r'([^\W\d_])-[ \t]*\n[ \t]*([^\W\d_])', re.UNICODE)
FRAGMENT_BREAK = re.compile(r'([^\W\d_,.!?؟;:])[ \t]*\n[ \t]*([^\W\d_])', re.UNICODE)


def normalize_digits(text: str) -> str:
    """Convert Arabic-Indic digits to ASCII digits."""
    return text.translate(DIGIT_TRANSLATION)


def strip_bidi_marks(text: str) -> str:
    """Remove directional control characters."""
    return BIDI_MARKS.sub('', text)


def collapse_whitespace(text: str) -> str:
    """Collapse runs of spaces and blank lines, trim every line."""
    text = SPACES.sub(' ', text)
    text = '\n'.join(line.strip() for line in text.split('\n'))
    text = BLANK_LINES.sub('\n\n', text)
    return text.strip()


def collapse_repeated_punctuation(text: str) -> str:
    """'!!!' -> '!', '.....' -> '...'."""
    text = REPEATED_DOTS.sub('...', text)
    return REPEATED_PUNCT.sub(r'\1', text)


def clean_recognized_text(text: str) -> str:
    """Normalize a raw OCR result.

    Args:
        text: Text returned by the recognition engine

    Returns:
        Text with noise glyphs, bidi marks and repeated punctuation removed,
        digits normalized and whitespace collapsed
    """
    if not text:
        return ""

    text = strip_bidi_marks(text)
    text = NOISE_CHARS.sub(' ', text)
    text = normalize_digits(text)
    text = collapse_repeated_punctuation(text)
    return collapse_whitespace(text)


def detect_repetition_hallucination(text: str, min_repeats: int = 10, min_phrase_len: int = 15) -> tuple[str, str] | None:
    """Detect OCR output where the same phrase loops many times.

    Checks a bounded number of sample positions per phrase length instead of
    every offset, so long pages stay cheap.

    Args:
        text: Text to check
        min_repeats: Consecutive repeats needed to flag
        min_phrase_len: Shortest phrase considered

    Returns:
        Tuple of (raw phrase, stripped phrase) if found, None otherwise
    """
    if not text or len(text) < min_phrase_len * min_repeats:
        return None

    text_len = len(text)
    max_phrase_len = min(100, text_len // min_repeats)
    sample_count = min(50, text_len // min_phrase_len)

    for phrase_len in range(min_phrase_len, max_phrase_len):
        step = max(1, (text_len - phrase_len * min_repeats) // sample_count)

        for sample_idx in range(sample_count):
            start = sample_idx * step
            if start + phrase_len * min_repeats > text_len:
                break

            phrase = text[start:start + phrase_len]
            if len(phrase.strip()) < min_phrase_len // 2:
                continue

            count = 1
            pos = start + phrase_len
            while pos + phrase_len <= text_len and text[pos:pos + phrase_len] == phrase:
                count += 1
                pos += phrase_len

            if count >= min_repeats:
                return phrase, phrase.strip()

    return None


def clean_repetition_hallucination(text: str, min_repeats: int = 10) -> tuple[str, bool]:
    """Collapse a looping phrase to a single occurrence.

    Returns:
        Tuple of (cleaned text, whether a loop was found)
    """
    found = detect_repetition_hallucination(text, min_repeats=min_repeats)
    if found is None:
        return text, False

    raw_phrase, display_phrase = found
    logger.warning(f"Detected OCR hallucination: '{display_phrase[:50]}...' repeated {min_repeats}+ times")

    pattern = re.escape(raw_phrase)
    return re.sub(f'({pattern}){{2,}}', lambda _: raw_phrase, text), True


@dataclass
class CleaningOptions:
    """Which cleanup steps clean_ocr_text applies."""

    strip_headers_footers: bool = True
    fix_hyphenation: bool = True
    merge_fragmented_lines: bool = True
    normalize_numerals: bool = True
    remove_hallucinations: bool = True
    remove_excess_whitespace: bool = True


@dataclass
class CleaningResult:
    """Outcome of clean_ocr_text."""

    cleaned_text: str
    original_length: int
    improvements: list[str] = field(default_factory=list)
    page_type: str = "content"

    @property
    def cleaned_length(self) -> int:
        return len(self.cleaned_text)


@dataclass
class PageClassification:
    """Whether a page carries teachable content."""

    is_content: bool
    page_type: str
    confidence: float
    reason: str


TOC_PATTERNS = [
    re.compile(r'فهرس|المحتويات|table of contents|\bcontents\b', re.IGNORECASE),
    re.compile(r'(الفصل|الوحدة|chapter|unit)\s*\d+.*\d+', re.IGNORECASE),
]
COVER_PATTERNS = [
    re.compile(r'وزارة التعليم|ministry of education', re.IGNORECASE),
    re.compile(r'المملكة العربية السعودية|kingdom of saudi arabia', re.IGNORECASE),
    re.compile(r'(الطبعة|edition).*\d+', re.IGNORECASE),
    re.compile(r'\d{4}\s*(هـ|AD)'),
]
INDEX_PATTERNS = [
    re.compile(r'فهرس الموضوعات|فهرس المصطلحات|\bindex\b|\bglossary\b', re.IGNORECASE),
    re.compile(r'^[^\W\d_]{1,3}\s*-\s*.*\d+\s*$', re.MULTILINE),
]


def detect_non_content_page(text: str) -> PageClassification:
    """Classify a page as content or front/back matter.

    Args:
        text: Cleaned OCR text of the page

    Returns:
        PageClassification with the detected type and a reason
    """
    lines = [line for line in text.split('\n') if line.strip()]

    if len(text.strip()) < 50:
        return PageClassification(False, "empty", 0.9, "Text too short (< 50 characters)")

    toc_matches = sum(len(p.findall(text)) for p in TOC_PATTERNS)
    if toc_matches > 2 or (toc_matches > 0 and len(lines) < 15):
        return PageClassification(
            False, "toc", min(1.0, 0.8 + toc_matches * 0.05), f"{toc_matches} table-of-contents matches"
        )

    cover_matches = sum(1 for p in COVER_PATTERNS if p.search(text))
    if cover_matches >= 2 and len(lines) < 10:
        return PageClassification(
            False, "cover", min(1.0, 0.7 + cover_matches * 0.1), f"{cover_matches} cover page indicators"
        )

    index_matches = sum(len(p.findall(text)) for p in INDEX_PATTERNS)
    if index_matches > 3:
        return PageClassification(False, "index", 0.75, f"{index_matches} index entries")

    lower = text.lower()
    if ('مراجع' in lower or 'references' in lower) and len(re.findall(r'\d{4}', text)) > 3:
        return PageClassification(False, "references", 0.7, "References section detected")

    return PageClassification(True, "content", 0.6, "No front/back matter indicators")


def clean_ocr_text(text: str, options: CleaningOptions | None = None) -> CleaningResult:
    """Prepare OCR text for summarization.

    Non-content pages (table of contents, cover, index) are returned almost
    untouched since their line structure is the content.

    Args:
        text: OCR text (already passed through clean_recognized_text)
        options: Which steps to apply (default: all)

    Returns:
        CleaningResult listing the improvements applied
    """
    opts = options or CleaningOptions()
    result = CleaningResult(cleaned_text=text or "", original_length=len(text or ""))

    if not text or not text.strip():
        result.page_type = "empty"
        return result

    classification = detect_non_content_page(text)
    if not classification.is_content:
        result.page_type = classification.page_type
        result.improvements.append(f"Detected {classification.page_type} page, minimal cleaning applied")
        return result

    cleaned = text

    if opts.remove_hallucinations:
        cleaned, had_loop = clean_repetition_hallucination(cleaned)
        if had_loop:
            result.improvements.append("Collapsed repeated OCR phrase")

    if opts.strip_headers_footers:
        before = len(cleaned)
        for pattern in HEADER_FOOTER_PATTERNS:
            cleaned = pattern.sub('', cleaned)
        if len(cleaned) < before:
            result.improvements.append(f"Removed {before - len(cleaned)} chars of headers/footers")

    if opts.fix_hyphenation:
        cleaned, count = HYPHEN_BREAK.subn(r'\1\2', cleaned)
        if count:
            result.improvements.append(f"Fixed {count} hyphenation breaks")

    if opts.merge_fragmented_lines:
        cleaned, count = FRAGMENT_BREAK.subn(r'\1 \2', cleaned)
        if count:
            result.improvements.append(f"Merged {count} fragmented lines")

    if opts.normalize_numerals:
        normalized = normalize_digits(cleaned)
        if normalized != cleaned:
            result.improvements.append("Normalized Arabic-Indic numerals")
        cleaned = normalized

    if opts.remove_excess_whitespace:
        collapsed = collapse_whitespace(cleaned)
        if len(collapsed) < len(cleaned):
            result.improvements.append(f"Cleaned {len(cleaned) - len(collapsed)} excess whitespace chars")
        cleaned = collapsed

    result.cleaned_text = cleaned
    return result
