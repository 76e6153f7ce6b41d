"""
Confidence scoring for generated summaries.

Rates a summary against the OCR text it was generated from. The score blends
keyword coverage, length fit, markdown structure, a repetition penalty and the
OCR quality of the source. Everything here is pure and deterministic.
"""

import re
import unicodedata
from collections import Counter
from dataclasses import asdict, dataclass, field

IDEAL_MIN_WORDS = 120
IDEAL_MAX_WORDS = 350
# Fewer words than this earn no sentence segmentation credit
MIN_SEGMENTED_WORDS = 5
DEFAULT_OCR_QUALITY = 0.7

# Blend weights (sum to 1.0)
WEIGHT_COVERAGE = 0.40
WEIGHT_LENGTH = 0.15
WEIGHT_STRUCTURE = 0.15
WEIGHT_REPETITION = 0.10
WEIGHT_OCR = 0.20

# Partial credit for non-exact keyword matches
SYNONYM_MATCH_WEIGHT = 0.7
SUBSTRING_MATCH_WEIGHT = 0.5
MIN_SUBSTRING_LEN = 3

STOPWORDS_EN = frozenset("""
the a an and or but if then else for to of in on at by with as is are was were be been being
from that this these those it its into about over under after before between through will
would could should may might can must shall do does did has have had one two three first
second third also just only each every some any all most many much more less than very quite
rather too so such well now here there where when why how what which who whom whose not no
""".split())

STOPWORDS_AR = frozenset("""
ال و في من على إلى عن أن إن كان كانت هو هي هم هن كما ما لا لم لن قد ثم أو بل كل هذه هذا ذلك
تلك التي الذي اللذان اللتان الذين اللذين اللواتي اللاتي عند عندما كيف أين متى لماذا ماذا أي
بعض جميع كثير قليل أكثر أقل جدا فقط أيضا كذلك هكذا هناك هنا الآن بعد قبل خلال أثناء حول نحو
ضد مع بدون سوف ربما لعل كأن لكن غير سوى إلا
""".split())

# Domain vocabulary: base term -> morphological variants and near-synonyms
DOMAIN_SYNONYMS: dict[str, tuple[str, ...]] = {
    'حمض': ('أحماض', 'حمضي', 'حامض', 'حوامض'),
    'قاعدة': ('قواعد', 'قاعدي', 'قلوي', 'قلويات'),
    'محلول': ('محاليل', 'مذاب', 'إذابة', 'ذوبان'),
    'تفاعل': ('تفاعلات', 'يتفاعل', 'متفاعل', 'تفاعلي'),
    'جزيء': ('جزيئات', 'جزيئي', 'جزيئية'),
    'ذرة': ('ذرات', 'ذري', 'ذرية'),
    'عنصر': ('عناصر', 'عنصري'),
    'مركب': ('مركبات', 'تركيب'),
    'غاز': ('غازات', 'غازي', 'غازية'),
    'تركيز': ('تراكيز', 'مركز', 'مركزة'),
    'معادلة': ('معادلات', 'معادل'),
    'acid': ('acids', 'acidic', 'acidity'),
    'base': ('bases', 'basic', 'alkali', 'alkaline'),
    'solution': ('solutions', 'solute', 'solvent', 'dissolve', 'dissolved'),
    'reaction': ('reactions', 'react', 'reacts', 'reactant', 'reactants'),
    'molecule': ('molecules', 'molecular'),
    'atom': ('atoms', 'atomic'),
    'element': ('elements', 'elemental'),
    'compound': ('compounds',),
    'gas': ('gases', 'gaseous'),
    'concentration': ('concentrated', 'concentrations'),
    'equation': ('equations',),
}

_SYNONYM_GROUP: dict[str, str] = {}
for _base, _variants in DOMAIN_SYNONYMS.items():
    _SYNONYM_GROUP[_base] = _base
    for _variant in _variants:
        _SYNONYM_GROUP[_variant] = _base

ARABIC_SUFFIXES = ('ات', 'ان', 'ين', 'ون', 'ها', 'هم', 'هن', 'كم', 'ني', 'ية', 'تم')

SENTENCE_BREAK = re.compile(r'[.!؟?؛]+\s|\n')
SENTENCE_END = re.compile(r'[.!؟?؛]')
SENTENCE_SPLIT = re.compile(r'\n|\.')
HEADING = re.compile(r'^[ \t]*#+\s', re.MULTILINE)
BULLET = re.compile(r'^[ \t]*[-*•]\s', re.MULTILINE)
WORD = re.compile(r'\w', re.UNICODE)


@dataclass
class ConfidenceMeta:
    """Diagnostic breakdown of a confidence score (all values 0..1)."""

    coverage: float
    length_fit: float
    structure: float
    repetition_penalty: float  # 1.0 = no repetition
    ocr_quality: float
    final: float

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    def describe(self) -> str:
        return (
            f"coverage {self.coverage:.1%}, length {self.length_fit:.1%}, "
            f"structure {self.structure:.1%}, repetition {self.repetition_penalty:.1%}, "
            f"ocr {self.ocr_quality:.1%} -> {self.final:.1%}"
        )


@dataclass
class KeywordAnalysis:
    """Keyword comparison between a source text and its summary."""

    source_keywords: list[str]
    summary_keywords: list[str]
    common_keywords: list[str] = field(default_factory=list)
    missing_keywords: list[str] = field(default_factory=list)
    coverage: float = 0.0


def _strip_symbols(text: str) -> str:
    return ''.join(' ' if unicodedata.category(c)[0] in 'PS' else c for c in text)


def _stem_arabic(word: str) -> str:
    for suffix in ARABIC_SUFFIXES:
        if word.endswith(suffix) and len(word) - len(suffix) > 1:
            return word[: -len(suffix)]
    return word


def tokenize(text: str, rtl: bool = False, stem: bool = False) -> list[str]:
    """Lowercase, strip punctuation, drop stopwords and 1-char tokens."""
    if not text:
        return []

    words = _strip_symbols(text.lower()).split()
    stopwords = STOPWORDS_AR if rtl else STOPWORDS_EN
    tokens = [w for w in words if len(w) > 1 and w not in stopwords]

    if stem and rtl:
        tokens = [_stem_arabic(w) for w in tokens]
        tokens = [w for w in tokens if len(w) > 1]

    return tokens


def top_keywords(tokens: list[str], k: int = 20, expand_synonyms: bool = False) -> list[str]:
    """Top-k tokens by frequency, ties broken by first appearance."""
    freq: dict[str, float] = {}
    first_seen: dict[str, int] = {}

    for idx, token in enumerate(tokens):
        freq[token] = freq.get(token, 0) + 1
        first_seen.setdefault(token, idx)

        if expand_synonyms:
            base = _SYNONYM_GROUP.get(token)
            if base is not None and base != token:
                freq[base] = freq.get(base, 0) + 0.5  # synonyms count at half weight
                first_seen.setdefault(base, idx)

    ranked = sorted(freq, key=lambda w: (-freq[w], first_seen[w]))
    return ranked[:k]


def _partial_weight(source_word: str, summary_word: str, use_synonyms: bool) -> float:
    if use_synonyms:
        group = _SYNONYM_GROUP.get(source_word)
        if group is not None and group == _SYNONYM_GROUP.get(summary_word):
            return SYNONYM_MATCH_WEIGHT

    if min(len(source_word), len(summary_word)) >= MIN_SUBSTRING_LEN and (
        source_word in summary_word or summary_word in source_word
    ):
        return SUBSTRING_MATCH_WEIGHT

    return 0.0


def keyword_coverage(
    source_keywords: list[str],
    summary_keywords: list[str],
    use_synonyms: bool = False,
) -> float:
    """Jaccard-style overlap that gives partial credit to near matches.

    Each summary keyword can satisfy at most one source keyword, so the
    weighted intersection never exceeds either set and the result stays in
    [0, 1]. Identical sets score 1.0; an empty source scores 1.0.
    """
    if not source_keywords:
        return 1.0
    if not summary_keywords:
        return 0.0

    available = list(dict.fromkeys(summary_keywords))
    available_set = set(available)
    intersection = 0.0
    unmatched: list[str] = []

    for word in dict.fromkeys(source_keywords):
        if word in available_set:
            intersection += 1.0
            available_set.discard(word)
        else:
            unmatched.append(word)

    available = [w for w in available if w in available_set]

    for word in unmatched:
        best_weight = 0.0
        best_match = None
        for candidate in available:
            weight = _partial_weight(word, candidate, use_synonyms)
            if weight > best_weight:
                best_weight, best_match = weight, candidate
        if best_match is not None:
            intersection += best_weight
            available.remove(best_match)

    union = len(set(source_keywords)) + len(set(summary_keywords)) - intersection
    if union <= 0:
        return 1.0
    return max(0.0, min(1.0, intersection / union))


def analyze_keywords(
    source_text: str,
    summary_text: str,
    rtl: bool = False,
    top_k: int = 20,
    stem: bool = False,
    use_synonyms: bool = False,
) -> KeywordAnalysis:
    """Compare the top keywords of a source text and its summary."""
    source_kw = top_keywords(tokenize(source_text, rtl, stem), top_k, use_synonyms)
    summary_kw = top_keywords(tokenize(summary_text, rtl, stem), top_k, use_synonyms)
    summary_set = set(summary_kw)

    return KeywordAnalysis(
        source_keywords=source_kw,
        summary_keywords=summary_kw,
        common_keywords=[w for w in source_kw if w in summary_set],
        missing_keywords=[w for w in source_kw if w not in summary_set],
        coverage=keyword_coverage(source_kw, summary_kw, use_synonyms),
    )


def count_words(text: str) -> int:
    """Count whitespace-separated words that contain a letter or digit."""
    if not text:
        return 0
    return sum(1 for w in text.split() if WORD.search(w))


def length_fit(word_count: int) -> float:
    """1.0 inside the ideal band, linear decay below, gentle decay above."""
    if word_count <= 0:
        return 0.0
    if IDEAL_MIN_WORDS <= word_count <= IDEAL_MAX_WORDS:
        return 1.0
    if word_count < IDEAL_MIN_WORDS:
        return word_count / IDEAL_MIN_WORDS
    over = word_count - IDEAL_MAX_WORDS
    return max(0.0, 1.0 - over / IDEAL_MAX_WORDS)


def structure_score(text: str) -> float:
    """Reward sentence segmentation, headings and bullet lists (capped at 1).

    Unpunctuated or very short text earns no segmentation credit.
    """
    if not text or not text.strip():
        return 0.0

    punctuation_ok = 0.0
    segmented = SENTENCE_END.search(text) or "\n" in text.strip()
    if segmented and count_words(text) >= MIN_SEGMENTED_WORDS:
        sentences = len(SENTENCE_BREAK.findall(text)) + 1
        segments = max(1, len(SENTENCE_SPLIT.split(text)))
        punctuation_ok = min(1.0, sentences / segments + 0.1)

    bonus = 0.0
    if HEADING.search(text):
        bonus += 0.2
    if BULLET.search(text):
        bonus += 0.2

    return min(1.0, punctuation_ok + min(1.0, bonus))


def repetition_penalty(text: str, rtl: bool = False) -> float:
    """1.0 for no repetition, dropping as bigrams repeat more than twice."""
    words = tokenize(text, rtl)
    if len(words) < 6:
        return 1.0

    bigrams = Counter(zip(words, words[1:]))
    repeats = sum(1 for count in bigrams.values() if count > 2)
    ratio = repeats / max(1, len(bigrams))
    return max(0.0, 1.0 - ratio * 2)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def score(
    source_text: str,
    candidate_text: str,
    ocr_quality: float | None = None,
    is_rtl: bool = False,
    top_k: int = 20,
    enable_synonyms: bool = True,
    enable_stemming: bool = False,
) -> tuple[float, ConfidenceMeta]:
    """Score a generated summary against its source text.

    Args:
        source_text: OCR text of the page
        candidate_text: Generated summary (markdown)
        ocr_quality: OCR confidence of the source, 0..1 (None = 0.7)
        is_rtl: Use Arabic stopwords
        top_k: Keywords compared per text
        enable_synonyms: Partial credit for domain synonyms
        enable_stemming: Strip Arabic suffixes before comparing

    Returns:
        Tuple of (score in [0, 1], breakdown)
    """
    ocr_q = _clamp(DEFAULT_OCR_QUALITY if ocr_quality is None else ocr_quality)

    keywords = analyze_keywords(
        source_text or "",
        candidate_text or "",
        rtl=is_rtl,
        top_k=top_k,
        stem=enable_stemming,
        use_synonyms=enable_synonyms,
    )

    if not candidate_text or not candidate_text.strip():
        meta = ConfidenceMeta(
            coverage=keywords.coverage,
            length_fit=0.0,
            structure=0.0,
            repetition_penalty=1.0,
            ocr_quality=ocr_q,
            final=0.0,
        )
        return 0.0, meta

    cov = keywords.coverage
    len_fit = length_fit(count_words(candidate_text))
    struct = structure_score(candidate_text)
    rep = repetition_penalty(candidate_text, is_rtl)

    final = _clamp(
        WEIGHT_COVERAGE * cov
        + WEIGHT_LENGTH * len_fit
        + WEIGHT_STRUCTURE * struct
        + WEIGHT_REPETITION * rep
        + WEIGHT_OCR * ocr_q
    )

    meta = ConfidenceMeta(
        coverage=cov,
        length_fit=len_fit,
        structure=struct,
        repetition_penalty=rep,
        ocr_quality=ocr_q,
        final=final,
    )
    return final, meta
