"""
Batch automation: drive a page range end-to-end, resumably.

The controller knows nothing about OCR or summaries. It calls four hooks
per page (navigate, optional validate, is_page_done, process_page), retries
them with backoff, skips pages that are already done, and publishes a
progress snapshot after every step. Pages run one at a time, in order, on
the calling thread; stop and pause are flags other threads may flip.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .config import AutomationOptions
from .errors import FatalRunError, InputError, PipelineError
from .progress import AutomationProgress, OutcomeStatus, PageOutcome, RunState
from .retry import retry_call

logger = logging.getLogger(__name__)


@dataclass
class AutomationHooks:
    """Per-page callbacks, all taking (document_id, page_number).

    process_page may return False to report a failure without raising.
    """

    is_page_done: Callable[[str, int], bool]
    process_page: Callable[[str, int], object]
    navigate: Callable[[str, int], None]
    validate_page: Callable[[str, int], bool] | None = None


class PageValidationError(PipelineError):
    """The host did not show the expected page after navigation."""


class AutomationController:
    """Runs pages [start, end] through the hooks with skip, retry and jitter."""

    def __init__(
        self,
        hooks: AutomationHooks,
        options: AutomationOptions | None = None,
        on_progress: Callable[[AutomationProgress], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.hooks = hooks
        self.options = options or AutomationOptions()
        self.on_progress = on_progress
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._pause = threading.Event()
        self._host_inactive = threading.Event()
        self._progress = AutomationProgress(last_activity=clock())

    # Control surface (safe to call from other threads)

    def snapshot(self) -> AutomationProgress:
        with self._lock:
            return self._progress.snapshot()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._progress.running

    @property
    def is_stalled(self) -> bool:
        """A running, unpaused run has shown no activity for options.stall_after seconds."""
        return self.snapshot().is_stalled(self._clock(), self.options.stall_after)

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> bool:
        """Ask the run to stop at the next checkpoint. Returns False if nothing is running."""
        if not self.is_running:
            return False
        logger.info("Stop requested")
        self._stop.set()
        return True

    def pause(self) -> bool:
        """Pause before the next page. Returns False if nothing is running."""
        if not self.is_running:
            return False
        logger.info("Pause requested")
        self._pause.set()
        self._update(state=RunState.PAUSED)
        return True

    def resume(self) -> bool:
        """Leave an explicit pause. Returns False if the run was not paused."""
        if not self._pause.is_set():
            return False
        logger.info("Resume requested")
        self._pause.clear()
        if not self._host_inactive.is_set() and self.is_running:
            self._update(state=RunState.RUNNING)
        return True

    def set_host_active(self, active: bool) -> None:
        """The hosting UI became visible (True) or hidden (False)."""
        if active:
            self._host_inactive.clear()
            if not self._pause.is_set() and self.is_running:
                self._update(state=RunState.RUNNING)
        else:
            self._host_inactive.set()
            if self.is_running:
                self._update(state=RunState.PAUSED)

    # Progress bookkeeping

    def _update(self, **changes) -> None:
        with self._lock:
            for name, value in changes.items():
                setattr(self._progress, name, value)
            self._progress.last_activity = self._clock()
            snapshot = self._progress.snapshot()
        self._emit(snapshot)

    def _record(self, page_number: int, status: OutcomeStatus, reason: str = "") -> None:
        with self._lock:
            if status is OutcomeStatus.PROCESSED:
                self._progress.processed_count += 1
            elif status is OutcomeStatus.SKIPPED:
                self._progress.skipped_count += 1
            else:
                self._progress.error_count += 1
            self._progress.outcomes.append(PageOutcome(page_number, status, reason))
            self._progress.last_activity = self._clock()
            snapshot = self._progress.snapshot()

        log = logger.warning if status is OutcomeStatus.ERROR else logger.info
        log(f"Page {page_number}: {status.value}{f' ({reason})' if reason else ''}")
        self._emit(snapshot)

    def _emit(self, snapshot: AutomationProgress) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(snapshot)
        except Exception:
            logger.exception("Progress callback failed")

    # Run loop

    def _wait_while_paused(self) -> None:
        if not (self._pause.is_set() or self._host_inactive.is_set()):
            return

        self._update(state=RunState.PAUSED)
        logger.info("Run paused")
        while (self._pause.is_set() or self._host_inactive.is_set()) and not self._stop.is_set():
            self._sleep(self.options.pause_poll_interval)

        if not self._stop.is_set():
            logger.info("Run resumed")
            self._update(state=RunState.RUNNING)

    def _validate(self, document_id: str, page_number: int) -> bool:
        def check() -> None:
            if not self.hooks.validate_page(document_id, page_number):
                raise PageValidationError(f"Page {page_number} not shown after navigation")

        try:
            retry_call(
                check,
                attempts=self.options.validate_attempts,
                base_delay=self.options.validate_backoff,
                should_continue=lambda: not self._stop.is_set(),
                sleep=self._sleep,
                description=f"Validate page {page_number}",
            )
        except Exception:
            return False
        return True

    def _check_done(self, document_id: str, page_number: int) -> bool:
        try:
            return bool(retry_call(
                lambda: self.hooks.is_page_done(document_id, page_number),
                attempts=self.options.check_attempts,
                base_delay=self.options.check_backoff,
                backoff="fixed",
                should_continue=lambda: not self._stop.is_set(),
                sleep=self._sleep,
                description=f"Status check for page {page_number}",
            ))
        except Exception as e:
            logger.warning(f"Could not determine status of page {page_number}, treating as not done: {e}")
            return False

    def _run_page(self, document_id: str, page_number: int) -> None:
        self._update(current_page=page_number)

        try:
            self.hooks.navigate(document_id, page_number)
        except Exception as e:
            self._record(page_number, OutcomeStatus.ERROR, f"navigation failed: {e}")
            return
        self._sleep(self.options.settle_delay)

        if self.hooks.validate_page is not None and not self._validate(document_id, page_number):
            if not self._stop.is_set():
                self._record(page_number, OutcomeStatus.ERROR, "page validation failed")
            return

        done = self._check_done(document_id, page_number)
        if self._stop.is_set():
            return
        if done and self.options.skip_processed:
            self._record(page_number, OutcomeStatus.SKIPPED, "already processed")
            return

        if self.options.dry_run:
            self._record(page_number, OutcomeStatus.PROCESSED, "dry run")
            return

        try:
            result = retry_call(
                lambda: self.hooks.process_page(document_id, page_number),
                attempts=self.options.process_attempts,
                base_delay=self.options.process_backoff,
                backoff="linear",
                should_continue=lambda: not self._stop.is_set(),
                sleep=self._sleep,
                description=f"Processing page {page_number}",
            )
        except Exception as e:
            if self._stop.is_set():
                logger.info(f"Discarding failure of page {page_number} after stop")
                return
            self._record(page_number, OutcomeStatus.ERROR, str(e) or type(e).__name__)
            return

        if self._stop.is_set():
            logger.info(f"Discarding result of page {page_number} after stop")
            return

        if result is False:
            self._record(page_number, OutcomeStatus.ERROR, "processing reported failure")
        else:
            self._record(page_number, OutcomeStatus.PROCESSED)

    def run(self, document_id: str, start_page: int, end_page: int) -> AutomationProgress:
        """Process pages start_page..end_page (inclusive) in ascending order.

        Args:
            document_id: Book to process
            start_page: First page
            end_page: Last page

        Returns:
            Final progress snapshot

        Raises:
            InputError: If the range is invalid
            PipelineError: If a run is already in progress
        """
        if start_page < 0 or end_page < start_page:
            raise InputError(f"Invalid page range: {start_page}-{end_page}")

        with self._lock:
            if self._progress.running:
                raise PipelineError("A run is already in progress")
            now = self._clock()
            self._stop.clear()
            self._pause.clear()
            self._progress = AutomationProgress(
                state=RunState.RUNNING,
                start_page=start_page,
                end_page=end_page,
                last_activity=now,
                started_at=now,
            )

        logger.info(f"Starting run for {document_id}: pages {start_page}-{end_page}")
        self._update()

        try:
            for page_number in range(start_page, end_page + 1):
                if self._stop.is_set():
                    break
                self._wait_while_paused()
                if self._stop.is_set():
                    break

                self._run_page(document_id, page_number)

                if self._stop.is_set():
                    break
                if page_number < end_page:
                    self._sleep(self._rng.uniform(self.options.min_delay, self.options.max_delay))

            final_state = RunState.STOPPED if self._stop.is_set() else RunState.COMPLETED
            self._update(state=final_state)
        except Exception as e:
            error = FatalRunError(f"Run aborted: {e}")
            logger.exception(str(error))
            self._update(state=RunState.FAILED, error_message=str(error))

        final = self.snapshot()
        logger.info(
            f"Run {final.state.value}: {final.processed_count} processed, "
            f"{final.skipped_count} skipped, {final.error_count} errors"
        )
        return final


def watch_run(controller: AutomationController, worker: threading.Thread, poll_interval: float = 1.0) -> None:
    """Wait for the thread executing controller.run, warning when the run stalls.

    Each period of inactivity is reported once.
    """
    reported = None
    while worker.is_alive():
        worker.join(poll_interval)
        if not controller.is_stalled:
            continue
        progress = controller.snapshot()
        if progress.last_activity != reported:
            reported = progress.last_activity
            logger.warning(
                f"No progress for {controller.options.stall_after:.0f}s "
                f"(page {progress.current_page}), the run may be stuck"
            )
