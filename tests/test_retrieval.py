"""Tests for prior-page context retrieval."""

from pagepipeline.config import RetrievalOptions
from pagepipeline.errors import TransientServiceError
from pagepipeline.models import SimilarityHit
from pagepipeline.retrieval import (
    RetrievalContextItem,
    budget_excerpts,
    build_augmented_prompt,
    retrieve,
    should_embed,
)
from pagepipeline.store import PageStore

from conftest import SOURCE_TEXT, FakeEmbedder


class FakeIndex:
    """Similarity index returning canned rows."""

    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    def similarity_search(self, document_id, query_embedding, before_page, limit):
        self.calls.append({"document_id": document_id, "before_page": before_page, "limit": limit})
        if self.error is not None:
            raise self.error
        return self.rows


def row(page, similarity, content="Earlier page content about cells and energy."):
    return {"page_number": page, "similarity": similarity, "content": content, "title": None}


def hit(page, content, similarity=0.9):
    return SimilarityHit(page_number=page, similarity=similarity, content=content)


class TestRetrieve:
    """Tests for retrieve()."""

    def test_only_earlier_pages(self):
        """Pages at or after the current page are never used."""
        index = FakeIndex([row(3, 0.9), row(5, 0.95), row(7, 0.99)])
        result = retrieve(FakeEmbedder(), index, "book", 5, SOURCE_TEXT, RetrievalOptions(enabled=True))
        assert result.page_numbers == [3]

    def test_threshold_and_order(self):
        """Hits below the threshold are dropped, the rest sorted by similarity."""
        index = FakeIndex([row(1, 0.5), row(2, 0.9), row(3, 0.3), row(4, 0.7)])
        options = RetrievalOptions(enabled=True, max_pages=5, similarity_threshold=0.4)
        result = retrieve(FakeEmbedder(), index, "book", 10, SOURCE_TEXT, options)

        assert result.page_numbers == [2, 4, 1]
        assert result.similarities == [0.9, 0.7, 0.5]
        assert result.pages_found == 3

    def test_max_pages(self):
        """At most max_pages pages are sent, over-fetching from the index."""
        index = FakeIndex([row(1, 0.5), row(2, 0.9), row(4, 0.7)])
        options = RetrievalOptions(enabled=True, max_pages=2)
        result = retrieve(FakeEmbedder(), index, "book", 10, SOURCE_TEXT, options)

        assert result.page_numbers == [2, 4]
        assert result.pages_found == 3
        assert result.pages_sent == 2
        assert index.calls == [{"document_id": "book", "before_page": 10, "limit": 6}]

    def test_malformed_and_blank_rows_dropped(self):
        """Rows that fail validation or have no content are skipped."""
        index = FakeIndex([
            {"page_number": "first", "similarity": 0.9},
            {"similarity": 0.9, "content": "no page"},
            row(2, 0.8, content="   "),
            row(3, 0.8),
        ])
        result = retrieve(FakeEmbedder(), index, "book", 10, SOURCE_TEXT)
        assert result.page_numbers == [3]

    def test_total_chars(self):
        index = FakeIndex([row(1, 0.9, "a" * 300), row(2, 0.8, "b" * 200)])
        result = retrieve(FakeEmbedder(), index, "book", 10, SOURCE_TEXT)
        assert result.total_chars == 500

    def test_embedder_failure_fails_open(self):
        """Embedding errors give an empty result instead of raising."""
        embedder = FakeEmbedder(error=TransientServiceError("503"))
        result = retrieve(embedder, FakeIndex([row(1, 0.9)]), "book", 10, SOURCE_TEXT)
        assert result.items == []
        assert result.pages_sent == 0

    def test_index_failure_fails_open(self):
        index = FakeIndex(error=OSError("disk gone"))
        result = retrieve(FakeEmbedder(), index, "book", 10, SOURCE_TEXT)
        assert result.items == []

    def test_disabled_by_limits(self):
        """Zero pages or zero budget skips the lookup entirely."""
        embedder = FakeEmbedder()
        index = FakeIndex([row(1, 0.9)])
        assert retrieve(embedder, index, "book", 10, SOURCE_TEXT, RetrievalOptions(max_pages=0)).items == []
        assert retrieve(embedder, index, "book", 10, SOURCE_TEXT, RetrievalOptions(max_total_chars=0)).items == []
        assert retrieve(embedder, index, "book", 10, "   ").items == []
        assert embedder.calls == []
        assert index.calls == []

    def test_with_page_store(self, tmp_path):
        """Retrieval should work against stored page embeddings."""
        embedder = FakeEmbedder()
        store = PageStore(tmp_path)
        texts = {
            1: "Photosynthesis makes glucose from light energy in the leaf.",
            2: "The cell membrane controls what enters the cell.",
            3: "Photosynthesis and glucose again, later in the book.",
        }
        for page, text in texts.items():
            store.write_page_record("book", page, raw_text=text, embedding=embedder.embed(text))

        options = RetrievalOptions(enabled=True, max_pages=1, similarity_threshold=0.5)
        result = retrieve(embedder, store, "book", 3, "Photosynthesis turns light into glucose.", options)

        assert result.page_numbers == [1]
        assert result.items[0].content_excerpt == texts[1]


class TestBudgetExcerpts:
    """Tests for the character budget."""

    def test_fits(self):
        items = budget_excerpts([hit(1, "a" * 100), hit(2, "b" * 100)], 1000, 100)
        assert [len(i.content_excerpt) for i in items] == [100, 100]

    def test_last_page_truncated(self):
        """The first page that overflows is cut with an ellipsis."""
        hits = [hit(1, "a" * 500), hit(2, "b" * 500), hit(3, "c" * 500)]
        items = budget_excerpts(hits, 1200, 100)

        assert [len(i.content_excerpt) for i in items] == [500, 500, 200]
        assert items[2].content_excerpt.endswith("...")
        assert sum(len(i.content_excerpt) for i in items) <= 1200

    def test_stops_when_remainder_too_small(self):
        """Less than min_excerpt_chars of budget left ends the list."""
        hits = [hit(1, "a" * 500), hit(2, "b" * 500), hit(3, "c" * 500)]
        items = budget_excerpts(hits, 1050, 100)
        assert [i.page_number for i in items] == [1, 2]

    def test_single_long_page(self):
        items = budget_excerpts([hit(1, "a" * 5000)], 300, 100)
        assert len(items[0].content_excerpt) == 300

    def test_never_exceeds_budget(self):
        """The combined length never exceeds the budget."""
        hits = [hit(n, "word " * (n * 40)) for n in range(1, 8)]
        for budget in (0, 50, 99, 101, 333, 1000, 4000):
            items = budget_excerpts(hits, budget, 100)
            assert sum(len(i.content_excerpt) for i in items) <= budget


class TestAugmentedPrompt:
    """Tests for prompt augmentation."""

    def test_no_context(self):
        assert build_augmented_prompt("Summarize.", SOURCE_TEXT, []) == "Summarize."

    def test_with_context(self):
        """Context pages precede the current page and the original prompt."""
        items = [
            RetrievalContextItem(3, "Intro", "Cells are units of life.", 0.9),
            RetrievalContextItem(1, None, "Plants need light.", 0.8),
        ]
        prompt = build_augmented_prompt("Summarize.", "Current page text.", items)

        assert prompt.startswith("Context from previous pages in the book:")
        assert "Page 3 (Intro):\nCells are units of life." in prompt
        assert "Page 1:\nPlants need light." in prompt
        assert "Full text of the current page:\n---\nCurrent page text.\n---" in prompt
        assert prompt.endswith("Summarize.")
        assert prompt.index("Page 3") < prompt.index("Page 1")


class TestShouldEmbed:
    """Tests for the indexing filter."""

    def test_content_page(self):
        assert should_embed(SOURCE_TEXT)

    def test_short_text(self):
        assert not should_embed("Too short to index.")

    def test_table_of_contents(self):
        """Non-content pages are not indexed."""
        toc = "Table of Contents\nChapter 1 Cells 5\nChapter 2 Energy 17\nChapter 3 Plants 30"
        assert not should_embed(toc)
