"""
Prompt templates for page summaries and summary repair (English and Arabic).
"""

from .confidence import ConfidenceMeta
from .diagnostics import Deficiency, DeficiencyType

SUMMARY_PROMPT_EN = """You are an expert educational content editor. Summarize one page of a textbook.

Book: {book_title}
Page: {page_number}

Page text:
---
{page_text}
---

Write a summary of 150-300 words that:
1. Covers every key concept on the page
2. Uses the page's own terminology
3. Explains examples and exercises clearly
4. Lists all numbered questions in a separate section

Output format:
- Use headings (##) for main topics
- Use bullet points (-) for details
- Use **bold text** for important terms
- Do not mention pages, figures or tables that are not on this page

Summary:"""

SUMMARY_PROMPT_AR = """أنت محرر خبير للمحتوى التعليمي. المهمة: تلخيص صفحة من كتاب مدرسي.

الكتاب: {book_title}
رقم الصفحة: {page_number}

نص الصفحة:
---
{page_text}
---

اكتب ملخصاً من 150 إلى 300 كلمة:
1. يغطي جميع المفاهيم الرئيسية في الصفحة
2. يستخدم مصطلحات الصفحة نفسها
3. يشرح الأمثلة والتمارين بوضوح
4. يستخرج جميع الأسئلة المرقمة في قسم منفصل

تنسيق الإخراج:
- استخدم العناوين (##) للمواضيع الرئيسية
- استخدم النقاط (-) للتفاصيل
- استخدم **النص العريض** للمصطلحات المهمة
- لا تذكر صفحات أو أشكالاً أو جداول غير موجودة في هذه الصفحة

الملخص:"""

REPAIR_PROMPT_EN = """You are an expert educational content editor. Task: Improve a textbook page summary.

Page information:
- Book: {book_title}
- Page: {page_number}
- Original text quality: {ocr_quality:.1%}
- Coverage assessment: {coverage:.1%}

Problems in the current summary:
{issues}

Original extracted text:
{source_text}

Current summary (needs improvement):
{summary_text}

Produce an improved summary that fixes every problem above:
1. Comprehensive coverage of key concepts from the original text
2. Appropriate length (150-300 words)
3. Clear formatting with subheadings and bullet points
4. No repetition
5. Nothing that is not on this page

Improved summary:"""

REPAIR_PROMPT_AR = """أنت محرر خبير للمحتوى التعليمي. المهمة: تحسين ملخص صفحة من كتاب مدرسي.

معلومات الصفحة:
- الكتاب: {book_title}
- رقم الصفحة: {page_number}
- جودة النص الأصلي: {ocr_quality:.1%}
- تقييم التغطية: {coverage:.1%}

المشاكل المحددة في الملخص الحالي:
{issues}

النص الأصلي المستخرج:
{source_text}

الملخص الحالي (يحتاج تحسين):
{summary_text}

المطلوب: إنتاج ملخص محسّن يعالج جميع المشاكل أعلاه:
1. تغطية شاملة للمفاهيم الرئيسية من النص الأصلي
2. طول مناسب (150-300 كلمة)
3. تنسيق واضح مع عناوين فرعية ونقاط
4. تجنب التكرار
5. عدم ذكر ما ليس في هذه الصفحة

الملخص المحسّن:"""

ARABIC_ISSUES = {
    DeficiencyType.LOW_COVERAGE: "المحتوى المستخرج لا يغطي النص الأصلي بشكل كافٍ",
    DeficiencyType.TOO_SHORT: "الملخص قصير جداً ولا يشمل التفاصيل المهمة",
    DeficiencyType.TOO_LONG: "الملخص طويل جداً ويحتاج إلى تركيز أكثر",
    DeficiencyType.MISSING_STRUCTURE: "تنسيق الملخص يحتاج إلى تحسين (عناوين، نقاط، ترقيم)",
    DeficiencyType.REPETITION: "يوجد تكرار مفرط في المحتوى",
    DeficiencyType.OUT_OF_SCOPE: "الملخص يذكر مراجع غير موجودة في الصفحة",
}


def build_summary_prompt(page_text: str, book_title: str, page_number: int, language: str = "en") -> str:
    template = SUMMARY_PROMPT_AR if language == "ar" else SUMMARY_PROMPT_EN
    return template.format(book_title=book_title, page_number=page_number, page_text=page_text)


def _issue_lines(deficiencies: list[Deficiency], language: str) -> str:
    if not deficiencies:
        return "- (none detected)" if language != "ar" else "- (لا توجد)"

    lines = []
    for d in deficiencies:
        if language == "ar":
            line = ARABIC_ISSUES[d.kind]
            if d.details:
                line += f": {'، '.join(d.details)}"
        else:
            line = d.message
        lines.append(f"- {line}")
    return "\n".join(lines)


def build_repair_prompt(
    source_text: str,
    summary_text: str,
    meta: ConfidenceMeta,
    deficiencies: list[Deficiency],
    book_title: str = "",
    page_number: int | None = None,
    language: str = "en",
) -> str:
    """Prompt asking the model to rewrite a summary, naming what to fix.

    Args:
        source_text: Page text the summary was generated from
        summary_text: The summary being repaired
        meta: Score breakdown of the summary
        deficiencies: Output of diagnose_summary
        book_title: Book title shown to the model
        page_number: Page number shown to the model
        language: 'en' or 'ar'

    Returns:
        Prompt text
    """
    template = REPAIR_PROMPT_AR if language == "ar" else REPAIR_PROMPT_EN
    return template.format(
        book_title=book_title or "-",
        page_number=page_number if page_number is not None else "-",
        ocr_quality=meta.ocr_quality,
        coverage=meta.coverage,
        issues=_issue_lines(deficiencies, language),
        source_text=source_text,
        summary_text=summary_text,
    )
