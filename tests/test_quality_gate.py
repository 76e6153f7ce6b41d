"""Tests for the summary quality gate."""

import pytest

from pagepipeline.confidence import score
from pagepipeline.config import GateOptions
from pagepipeline.errors import InvalidResponseError, ServiceTimeoutError, TransientServiceError
from pagepipeline.quality_gate import GateContext, GateOutcome, run_gate

from conftest import GOOD_SUMMARY, SOURCE_TEXT, FakeLLM

WEAK_SUMMARY = "ok"
WEAK_OCR = 0.35
MEDIOCRE_REPAIR = "This page talks about plants and how they live in many different places."

WEAK_SCORE, _ = score(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR)


def repair_options(**overrides):
    """Options that put the weak summary at 95% of both thresholds."""
    bar = round(WEAK_SCORE / 0.95, 4)
    values = dict(
        enable_repair=True,
        min_summary_confidence=bar,
        repair_threshold=bar,
    )
    values.update(overrides)
    return GateOptions(**values)


def context(llm=None):
    return GateContext(page_number=7, book_title="Biology", language="en", generator=llm)


class TestGateWithoutRepair:
    """Tests for decisions made from the initial score alone."""

    def test_good_summary_passes(self):
        """A strong summary passes untouched."""
        llm = FakeLLM()
        result = run_gate(SOURCE_TEXT, GOOD_SUMMARY, 0.9, context(llm), GateOptions(enable_repair=True))

        assert result.state == GateOutcome.PASSED
        assert result.passed
        assert result.final_text == GOOD_SUMMARY
        assert result.final_confidence == result.original_confidence
        assert not result.repair_attempted
        assert llm.calls == []

    def test_low_ocr_rejected(self):
        """Unreadable pages are rejected even with a good summary."""
        result = run_gate(SOURCE_TEXT, GOOD_SUMMARY, 0.2, context(FakeLLM()), GateOptions(enable_repair=True))

        assert result.state == GateOutcome.REJECTED_LOW_OCR
        assert not result.passed
        assert not result.repair_attempted

    def test_repair_disabled(self):
        """A weak summary is rejected when repair is off."""
        llm = FakeLLM()
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), GateOptions())

        assert result.state == GateOutcome.REJECTED_LOW_QUALITY
        assert not result.passed
        assert result.final_text == WEAK_SUMMARY
        assert llm.calls == []

    def test_no_generator(self):
        """Repair needs a generator."""
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(None), repair_options())
        assert result.state == GateOutcome.REJECTED_LOW_QUALITY

    def test_zero_attempts(self):
        llm = FakeLLM()
        result = run_gate(
            SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options(max_repair_attempts=0)
        )
        assert result.state == GateOutcome.REJECTED_LOW_QUALITY
        assert llm.calls == []

    def test_above_repair_threshold_not_repaired(self):
        """Scores between the repair threshold and the minimum are rejected without repair."""
        llm = FakeLLM()
        options = repair_options(repair_threshold=round(WEAK_SCORE - 0.01, 4))
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), options)

        assert result.state == GateOutcome.REJECTED_LOW_QUALITY
        assert llm.calls == []

    @pytest.mark.parametrize("summary", ["x", "ok", "Photosynthesis."])
    def test_near_empty_summary_rejected(self, summary):
        """A token-sized summary fails at default thresholds even from clean OCR."""
        result = run_gate(SOURCE_TEXT, summary, 0.9, context(FakeLLM()), GateOptions())

        assert result.state == GateOutcome.REJECTED_LOW_QUALITY
        assert not result.passed
        assert result.original_confidence < GateOptions().min_summary_confidence

    def test_logs_breakdown(self):
        """The gate should log the initial confidence breakdown."""
        result = run_gate(SOURCE_TEXT, GOOD_SUMMARY, 0.9)
        assert result.logs[0].startswith("Initial confidence")
        assert "coverage" in result.logs[1]


class TestRepair:
    """Tests for the repair path."""

    def test_repair_succeeds(self):
        """A better repaired summary replaces the original."""
        llm = FakeLLM()
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options())

        assert result.state == GateOutcome.REPAIR_SUCCEEDED
        assert result.passed
        assert result.repair_attempted
        assert result.repair_successful
        assert result.needs_repair
        assert result.final_text == GOOD_SUMMARY.strip()
        assert result.final_confidence > result.original_confidence
        assert result.original_confidence == pytest.approx(WEAK_SCORE)
        assert result.deficiencies

    def test_repair_call_details(self):
        """The repair call carries page metadata and the repair timeout."""
        llm = FakeLLM()
        run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options(repair_timeout=5.0))

        assert len(llm.calls) == 1
        call = llm.calls[0]
        assert call["timeout"] == 5.0
        assert call["metadata"] == {"page": 7, "title": "Biology", "lang": "en", "is_repair": True}
        assert SOURCE_TEXT in call["prompt"]

    def test_improved_but_below_minimum(self):
        """An improvement is kept even if it still misses the minimum."""
        options = repair_options(min_summary_confidence=0.95)
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(FakeLLM()), options)

        assert result.state == GateOutcome.REPAIR_SUCCEEDED
        assert not result.passed
        assert result.final_text == GOOD_SUMMARY.strip()

    def test_improvement_below_margin(self):
        """A repair that does not gain enough keeps the original."""
        options = repair_options(improvement_margin=1.0)
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(FakeLLM()), options)

        assert result.state == GateOutcome.REPAIR_FAILED
        assert not result.passed
        assert result.final_text == WEAK_SUMMARY
        assert result.final_confidence == result.original_confidence
        assert not result.network_error

    def test_best_attempt_kept(self):
        """With several attempts the highest-scoring one wins."""
        llm = FakeLLM([MEDIOCRE_REPAIR, GOOD_SUMMARY, MEDIOCRE_REPAIR])
        result = run_gate(
            SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options(max_repair_attempts=3)
        )

        assert len(llm.calls) == 3
        assert result.state == GateOutcome.REPAIR_SUCCEEDED
        assert result.final_text == GOOD_SUMMARY.strip()

    def test_short_repair_ignored(self):
        """Repairs under 50 characters do not count."""
        result = run_gate(
            SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(FakeLLM(["too short"])), repair_options()
        )

        assert result.state == GateOutcome.REPAIR_FAILED
        assert not result.passed
        assert not result.network_error
        assert any("too short" in line for line in result.logs)

    def test_invalid_response_not_relaxed(self):
        """A malformed response is a content failure, not an outage."""
        llm = FakeLLM([InvalidResponseError("no choices")])
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options())

        assert result.state == GateOutcome.REPAIR_FAILED
        assert not result.passed
        assert not result.network_error


class TestInfrastructureFailures:
    """Tests for relaxed acceptance when repair cannot reach the service."""

    def test_timeout_relaxed_pass(self):
        """After a timeout the original passes at 90% of the minimum."""
        llm = FakeLLM([ServiceTimeoutError("no answer in 20s")])
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options())

        assert result.state == GateOutcome.REPAIR_FAILED
        assert result.passed
        assert result.network_error
        assert result.final_text == WEAK_SUMMARY
        assert not result.repair_successful

    def test_timeout_relaxed_reject(self):
        """The relaxed bar still rejects summaries below it."""
        llm = FakeLLM([ServiceTimeoutError("no answer in 20s")])
        options = repair_options(relaxed_timeout_ratio=0.99)
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), options)

        assert not result.passed
        assert result.network_error

    def test_network_error_uses_network_ratio(self):
        """Network errors use their own ratio."""
        llm = FakeLLM([TransientServiceError("connection refused")])
        passing = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), repair_options())
        assert passing.passed
        assert passing.network_error

        llm = FakeLLM([TransientServiceError("connection refused")])
        options = repair_options(relaxed_network_ratio=1.0, relaxed_timeout_ratio=0.5)
        failing = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), options)
        assert not failing.passed
        assert failing.network_error

    def test_usable_attempt_overrides_outage(self):
        """A usable repair after an outage is judged on its own merit."""
        llm = FakeLLM([ServiceTimeoutError("slow"), MEDIOCRE_REPAIR])
        options = repair_options(max_repair_attempts=2, improvement_margin=1.0)
        result = run_gate(SOURCE_TEXT, WEAK_SUMMARY, WEAK_OCR, context(llm), options)

        assert result.state == GateOutcome.REPAIR_FAILED
        assert not result.passed
        assert not result.network_error
