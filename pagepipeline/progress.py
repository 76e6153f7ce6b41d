"""
Progress state of batch runs and its terminal rendering.

AutomationProgress is the value the controller updates and publishes after
every step; ProgressReporter turns those snapshots into an updating
terminal line.
"""

import sys
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum


class RunState(Enum):
    """Lifecycle of a batch run."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.STOPPED, RunState.FAILED)


class OutcomeStatus(Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class PageOutcome:
    """What happened to one page of a run."""

    page_number: int
    status: OutcomeStatus
    reason: str = ""


@dataclass
class AutomationProgress:
    """Session-local state of a batch run."""

    state: RunState = RunState.IDLE
    current_page: int | None = None
    start_page: int = 0
    end_page: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    last_activity: float = field(default_factory=time.time)
    started_at: float | None = None
    error_message: str | None = None
    outcomes: list[PageOutcome] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return self.state in (RunState.RUNNING, RunState.PAUSED)

    @property
    def paused(self) -> bool:
        return self.state is RunState.PAUSED

    @property
    def total_pages(self) -> int:
        if self.end_page < self.start_page:
            return 0
        return self.end_page - self.start_page + 1

    @property
    def completed_pages(self) -> int:
        return self.processed_count + self.skipped_count + self.error_count

    @property
    def percent(self) -> float:
        if self.total_pages == 0:
            return 100.0
        return (self.completed_pages / self.total_pages) * 100

    def is_stalled(self, now: float, window: float) -> bool:
        """True if a running (not paused) run has shown no activity for window seconds."""
        return self.state is RunState.RUNNING and now - self.last_activity > window

    def snapshot(self) -> "AutomationProgress":
        """Independent copy safe to hand to other threads."""
        return replace(self, outcomes=list(self.outcomes))

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "running": self.running,
            "paused": self.paused,
            "current_page": self.current_page,
            "start_page": self.start_page,
            "end_page": self.end_page,
            "processed_count": self.processed_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "last_activity": self.last_activity,
            "error_message": self.error_message,
            "outcomes": [
                {"page_number": o.page_number, "status": o.status.value, "reason": o.reason}
                for o in self.outcomes
            ],
        }


def format_time(seconds: float | None) -> str:
    """Format seconds as human-readable time."""
    if seconds is None:
        return "--:--"

    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    else:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def summarize_outcomes(progress: AutomationProgress) -> str:
    """Human-readable end-of-run report."""
    counts = Counter(o.status for o in progress.outcomes)
    lines = [
        "Run summary",
        "===========",
        f"State: {progress.state.value}",
        f"Pages: {progress.start_page}-{progress.end_page} ({progress.total_pages})",
        f"Processed: {counts[OutcomeStatus.PROCESSED]}",
        f"Skipped: {counts[OutcomeStatus.SKIPPED]}",
        f"Errors: {counts[OutcomeStatus.ERROR]}",
    ]
    if progress.error_message:
        lines.append(f"Fatal error: {progress.error_message}")

    errors = [o for o in progress.outcomes if o.status is OutcomeStatus.ERROR]
    if errors:
        lines.append("")
        lines.append("Failed pages:")
        lines.append("-" * 40)
        for outcome in errors:
            lines.append(f"Page {outcome.page_number:4d}  {outcome.reason}")

    return "\n".join(lines)


class ProgressReporter:
    """Renders run progress as an updating terminal line.

    Usage:
        with ProgressReporter(total=100, desc="Pages") as reporter:
            controller = AutomationController(..., on_progress=reporter.on_progress)
            controller.run(...)
    """

    def __init__(self, total: int, desc: str = "Progress", unit: str = "pages", output=None):
        """Initialize progress reporter.

        Args:
            total: Number of pages in the run
            desc: Description prefix for the progress line
            unit: Unit name for items
            output: Stream to write to (default: stderr if it is a TTY, else stdout)
        """
        self.total = total
        self.desc = desc
        self.unit = unit
        self.start_time = time.time()
        self.processed = 0
        self.skipped = 0
        self.failed = 0
        self._item_name: str | None = None
        if output is None:
            self._is_tty = sys.stderr.isatty() or sys.stdout.isatty()
            self._output = sys.stderr if sys.stderr.isatty() else sys.stdout
        else:
            self._is_tty = output.isatty()
            self._output = output
        self._last_line_len = 0
        self._last_count = 0

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()

    @property
    def current(self) -> int:
        return self.processed + self.skipped + self.failed

    @property
    def elapsed(self) -> float:
        return time.time() - self.start_time

    @property
    def eta(self) -> float | None:
        if self.current == 0 or self.elapsed == 0:
            return None
        rate = self.current / self.elapsed
        return (self.total - self.current) / rate

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return (self.current / self.total) * 100

    def on_progress(self, progress: AutomationProgress) -> None:
        """Controller callback: re-render when the counters moved."""
        self.processed = progress.processed_count
        self.skipped = progress.skipped_count
        self.failed = progress.error_count
        if progress.current_page is not None:
            self._item_name = f"page {progress.current_page}"
        if self.current != self._last_count:
            self._last_count = self.current
            self._render()

    def _render(self) -> None:
        bar_width = 20
        filled = int(bar_width * min(100.0, self.percent) / 100)
        bar = "█" * filled + "░" * (bar_width - filled)

        parts = [
            f"{self.desc}: [{bar}]",
            f"{self.current}/{self.total}",
            f"({self.percent:.0f}%)",
            f"[{format_time(self.elapsed)}<{format_time(self.eta)}]",
            f"done {self.processed}, skipped {self.skipped}, errors {self.failed}",
        ]
        if self._item_name:
            parts.append(f"| {self._item_name}")

        line = " ".join(parts)

        if self._is_tty:
            clear = " " * max(0, self._last_line_len - len(line))
            self._output.write(f"\r{line}{clear}")
            self._output.flush()
            self._last_line_len = len(line)
        elif self.current == 1 or self.current == self.total or self.current % max(1, self.total // 10) == 0:
            # Non-TTY: every 10%
            self._output.write(line + "\n")
            self._output.flush()

    def finish(self) -> None:
        if self._is_tty:
            self._output.write("\n")

        elapsed_str = format_time(self.elapsed)
        if self.failed > 0:
            summary = (
                f"✓ {self.desc} complete: {self.processed + self.skipped}/{self.total} "
                f"succeeded, {self.failed} failed ({elapsed_str})"
            )
        else:
            summary = f"✓ {self.desc} complete: {self.current} {self.unit} ({elapsed_str})"

        self._output.write(summary + "\n")
        self._output.flush()
