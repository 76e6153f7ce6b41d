"""Tests for progress reporting module."""

import io
import time

import pytest
from pagepipeline.progress import (
    AutomationProgress,
    OutcomeStatus,
    PageOutcome,
    ProgressReporter,
    RunState,
    format_time,
    summarize_outcomes,
)


class TestFormatTime:
    """Tests for time formatting."""

    def test_format_seconds(self):
        """Seconds should format as Xs."""
        assert format_time(5) == "5s"
        assert format_time(45) == "45s"

    def test_format_minutes(self):
        """Minutes should format as Xm Ys."""
        assert format_time(90) == "1m 30s"
        assert format_time(125) == "2m 5s"

    def test_format_hours(self):
        """Hours should format as Xh Ym."""
        assert format_time(3661) == "1h 1m"
        assert format_time(7200) == "2h 0m"

    def test_format_none(self):
        """None should return --:--."""
        assert format_time(None) == "--:--"


class TestAutomationProgress:
    """Tests for run progress state."""

    def test_counts(self):
        """Completed pages and percent come from the counters."""
        progress = AutomationProgress(
            state=RunState.RUNNING, start_page=5, end_page=9,
            processed_count=2, skipped_count=1, error_count=1,
        )
        assert progress.total_pages == 5
        assert progress.completed_pages == 4
        assert progress.percent == pytest.approx(80.0)

    def test_empty_range(self):
        """An empty range counts as complete."""
        progress = AutomationProgress(start_page=3, end_page=2)
        assert progress.total_pages == 0
        assert progress.percent == 100.0

    def test_running_flags(self):
        """Paused runs are still running."""
        assert AutomationProgress(state=RunState.PAUSED).running
        assert AutomationProgress(state=RunState.PAUSED).paused
        assert not AutomationProgress(state=RunState.STOPPED).running
        assert RunState.FAILED.is_terminal
        assert not RunState.PAUSED.is_terminal

    def test_stalled(self):
        """Only a running, unpaused run can stall."""
        progress = AutomationProgress(state=RunState.RUNNING, last_activity=100.0)
        assert progress.is_stalled(now=300.0, window=120.0)
        assert not progress.is_stalled(now=200.0, window=120.0)

        progress.state = RunState.PAUSED
        assert not progress.is_stalled(now=300.0, window=120.0)

    def test_snapshot_independent(self):
        """Snapshots do not share the outcome list."""
        progress = AutomationProgress()
        snapshot = progress.snapshot()
        progress.outcomes.append(PageOutcome(1, OutcomeStatus.PROCESSED))
        assert snapshot.outcomes == []

    def test_as_dict(self):
        progress = AutomationProgress(state=RunState.RUNNING, current_page=4)
        progress.outcomes.append(PageOutcome(4, OutcomeStatus.ERROR, "timeout"))
        data = progress.as_dict()

        assert data["state"] == "running"
        assert data["running"] is True
        assert data["current_page"] == 4
        assert data["outcomes"] == [{"page_number": 4, "status": "error", "reason": "timeout"}]


class TestSummarizeOutcomes:
    """Tests for the end-of-run report."""

    def test_summary(self):
        """The report lists counts and failed pages."""
        progress = AutomationProgress(state=RunState.COMPLETED, start_page=1, end_page=3)
        progress.outcomes.extend([
            PageOutcome(1, OutcomeStatus.PROCESSED),
            PageOutcome(2, OutcomeStatus.ERROR, "model crashed"),
            PageOutcome(3, OutcomeStatus.SKIPPED, "already processed"),
        ])
        report = summarize_outcomes(progress)

        assert "State: completed" in report
        assert "Processed: 1" in report
        assert "Skipped: 1" in report
        assert "Errors: 1" in report
        assert "Page    2  model crashed" in report

    def test_fatal_error(self):
        progress = AutomationProgress(state=RunState.FAILED, error_message="Run aborted: disk full")
        assert "Fatal error: Run aborted: disk full" in summarize_outcomes(progress)


class TestProgressReporter:
    """Tests for progress reporter."""

    def test_context_manager(self):
        """Progress reporter should work as context manager and print a summary."""
        output = io.StringIO()
        with ProgressReporter(total=10, desc="Test", output=output) as reporter:
            assert reporter.total == 10
        assert "✓ Test complete: 0 pages" in output.getvalue()

    def test_on_progress_updates_counts(self):
        """Controller snapshots should drive the counters."""
        output = io.StringIO()
        reporter = ProgressReporter(total=10, desc="Pages", output=output)
        reporter.on_progress(AutomationProgress(current_page=1, processed_count=1))
        reporter.on_progress(AutomationProgress(current_page=2, processed_count=1, skipped_count=1))

        assert reporter.current == 2
        assert reporter.percent == 20.0
        text = output.getvalue()
        assert "2/10" in text
        assert "| page 2" in text

    def test_unchanged_counts_not_rendered(self):
        """Snapshots that do not move the counters print nothing."""
        output = io.StringIO()
        reporter = ProgressReporter(total=10, desc="Pages", output=output)
        reporter.on_progress(AutomationProgress(current_page=1))
        assert output.getvalue() == ""

    def test_failures_in_summary(self):
        """Failed pages should appear in the final line."""
        output = io.StringIO()
        with ProgressReporter(total=3, desc="Pages", output=output) as reporter:
            reporter.on_progress(AutomationProgress(processed_count=2, error_count=1))
        assert "2/3 succeeded, 1 failed" in output.getvalue()

    def test_eta(self):
        """ETA should estimate remaining time from the rate so far."""
        reporter = ProgressReporter(total=10, output=io.StringIO())
        reporter.processed = 5
        reporter.start_time = time.time() - 5  # 5 seconds ago, rate = 1/s
        assert reporter.eta == pytest.approx(5.0, rel=0.05)

    def test_eta_unknown(self):
        reporter = ProgressReporter(total=10, output=io.StringIO())
        assert reporter.eta is None
