"""
Analysis orchestrator: runs one progress-tracked analysis job at a time.

Job lifecycle:
1. begin() checks that no job is running and creates the progress record
   (both under one lock, so two concurrent starts cannot both succeed)
2. run() executes in the background:
   fetch → per-item loop (progress + cancellation) → engine → result → completed
3. stop() flips the running record to "paused"; the job notices on its next
   check (or within cancel_poll_seconds while awaiting Graph or the LLM) and
   exits without writing anything else

Every failure inside run() ends as status "error" with the failure text; it
is logged, never raised into the event loop.

When Graph or the LLM is not configured, run() takes the demonstration path:
same progress contract, synthetic totals, seeded document.

Usage:
    orchestrator = AnalysisOrchestrator(progress_store, result_store, message_store, factory)
    record = orchestrator.begin(filters)
    background_tasks.add_task(orchestrator.run, record.id, filters)
"""

import asyncio
import logging
import threading
import time
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar

from culturescope.analysis.demo import DemoDataService
from culturescope.analysis.engine import LLM_ANALYSIS_CONFIDENCE, AnalysisEngine
from culturescope.analysis.schemas import (
    AnalysisFilters,
    CultureAnalysis,
    ProgressRecord,
    ProgressStatus,
    compute_progress,
)
from culturescope.collaborators import CollaboratorFactory, Collaborators
from culturescope.config import settings
from culturescope.logging.audit import audit
from culturescope.logging.config import job_id_var
from culturescope.storage.database import StoreError
from culturescope.storage.stores import MessageStore, ProgressStore, ResultStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Give other tasks (progress polls) a turn every N items
YIELD_EVERY = 10
DEMO_STEPS = 20


class AlreadyRunningError(Exception):
    """Raised when a start is requested while a job is running."""
    pass


class NotRunningError(Exception):
    """Raised when a stop is requested while no job is running."""
    pass


class EmptyResultSetError(Exception):
    """Raised when the fetch returned nothing to analyze."""
    pass


class _JobCancelled(Exception):
    """The job's record is no longer running; unwind quietly."""
    pass


class AnalysisOrchestrator:
    """Owns the analysis state machine: idle → running → completed | error | paused."""

    def __init__(
        self,
        progress_store: ProgressStore,
        result_store: ResultStore,
        message_store: MessageStore,
        collaborators: CollaboratorFactory,
        demo: Optional[DemoDataService] = None,
        progress_update_interval: Optional[int] = None,
        cancel_poll_seconds: Optional[float] = None,
        demo_step_seconds: Optional[float] = None,
        lookback_days: Optional[int] = None,
    ):
        self._progress = progress_store
        self._results = result_store
        self._messages = message_store
        self._collaborators = collaborators
        self._demo = demo or DemoDataService()

        self._update_interval = progress_update_interval or settings.progress_update_interval
        self._cancel_poll = cancel_poll_seconds or settings.cancel_poll_seconds
        self._demo_step = settings.demo_step_seconds if demo_step_seconds is None else demo_step_seconds
        self._lookback_days = lookback_days or settings.default_lookback_days

        self._start_lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # CONTROL
    # =========================================================================

    def begin(self, filters: AnalysisFilters) -> ProgressRecord:
        """
        Create the running progress record for a new job.

        The caller schedules run(record.id, filters).

        Raises:
            AlreadyRunningError: If the latest record is running.
        """
        with self._start_lock:
            latest = self._progress.get_latest()
            if latest is not None and latest.status == ProgressStatus.RUNNING:
                raise AlreadyRunningError("Analysis already running")
            record = self._progress.create(status=ProgressStatus.RUNNING)

        audit.info(
            "analysis.job.started",
            progress_id=record.id,
            departments=filters.departments or [],
            countries=filters.countries or [],
        )
        return record

    async def start(self, filters: AnalysisFilters) -> ProgressRecord:
        """begin() plus scheduling run() on the current event loop."""
        record = self.begin(filters)
        task = asyncio.create_task(self.run(record.id, filters))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return record

    def stop(self) -> ProgressRecord:
        """
        Pause the running job. Paused jobs are not resumed.

        Raises:
            NotRunningError: If no job is running.
        """
        latest = self._progress.get_latest()
        if latest is None or latest.status != ProgressStatus.RUNNING:
            raise NotRunningError("No analysis running")

        updated = self._progress.update(
            latest.id, require_status=ProgressStatus.RUNNING, status=ProgressStatus.PAUSED
        )
        if updated is None:
            # Finished between the read and the update
            raise NotRunningError("No analysis running")

        audit.info(
            "analysis.job.paused",
            progress_id=updated.id,
            emails_processed=updated.emails_processed,
            total_emails=updated.total_emails,
        )
        return updated

    # =========================================================================
    # JOB BODY
    # =========================================================================

    async def run(self, progress_id: str, filters: AnalysisFilters) -> None:
        """Execute the job for `progress_id`. Never raises."""
        token = job_id_var.set(progress_id)
        started = time.monotonic()
        try:
            date_from, date_to = filters.resolve_range(lookback_days=self._lookback_days)
            async with self._collaborators.use() as collaborators:
                if collaborators.demo_mode:
                    await self._run_demo(progress_id, filters, date_from, date_to)
                else:
                    await self._run_live(progress_id, filters, date_from, date_to, collaborators)

        except _JobCancelled:
            logger.info(
                "analysis.job.cancelled",
                extra={
                    "action": "analysis.job.cancelled",
                    "progress_id": progress_id,
                    "latency_ms": int((time.monotonic() - started) * 1000),
                },
            )

        except Exception as e:
            logger.exception(
                "analysis.job.failed",
                extra={
                    "action": "analysis.job.failed",
                    "progress_id": progress_id,
                    "error_type": type(e).__name__,
                    "latency_ms": int((time.monotonic() - started) * 1000),
                },
            )
            self._fail(progress_id, str(e) or type(e).__name__)

        finally:
            job_id_var.reset(token)

    async def _run_live(
        self,
        progress_id: str,
        filters: AnalysisFilters,
        date_from: datetime,
        date_to: datetime,
        collaborators: Collaborators,
    ) -> None:
        engine = AnalysisEngine(llm_client=collaborators.llm)

        communications = await self._await_cancellable(
            progress_id,
            collaborators.graph.fetch_communications(
                date_from, date_to,
                departments=filters.departments,
                countries=filters.countries,
            ),
        )
        total = len(communications)
        self._push(progress_id, progress=0, emails_processed=0, total_emails=total)

        batch = []
        for processed, comm in enumerate(communications, start=1):
            self._check_cancelled(progress_id)

            self._messages.mark_seen(comm)
            batch.append(comm)

            if processed % self._update_interval == 0 or processed == total:
                self._push(
                    progress_id,
                    emails_processed=processed,
                    progress=compute_progress(processed, total),
                )
            if processed % YIELD_EVERY == 0:
                await asyncio.sleep(0)

        if not batch:
            raise EmptyResultSetError("No communications found for analysis")

        self._push(progress_id, progress=100, emails_processed=total)

        analysis = await self._await_cancellable(progress_id, engine.analyze(batch))

        self._finish(
            progress_id, filters, date_from, date_to,
            total=total, analysis=analysis, confidence=LLM_ANALYSIS_CONFIDENCE, mode="live",
        )

    async def _run_demo(
        self,
        progress_id: str,
        filters: AnalysisFilters,
        date_from: datetime,
        date_to: datetime,
    ) -> None:
        seed = self._demo.seed_for(filters, timestamp=time.time())
        total = self._demo.estimate_total(filters, date_from, date_to, seed)
        self._push(progress_id, progress=0, emails_processed=0, total_emails=total)

        for step in range(1, DEMO_STEPS + 1):
            self._check_cancelled(progress_id)
            await asyncio.sleep(self._demo_step)

            # round(step / DEMO_STEPS * total), half up
            processed = (2 * step * total + DEMO_STEPS) // (2 * DEMO_STEPS)
            self._push(
                progress_id,
                emails_processed=processed,
                progress=compute_progress(processed, total),
            )

        analysis = self._demo.generate_demo_analysis(filters, seed)
        self._finish(
            progress_id, filters, date_from, date_to,
            total=total, analysis=analysis, confidence=self._demo.demo_confidence(seed), mode="demo",
        )

    def _finish(
        self,
        progress_id: str,
        filters: AnalysisFilters,
        date_from: datetime,
        date_to: datetime,
        total: int,
        analysis: CultureAnalysis,
        confidence: int,
        mode: str,
    ) -> None:
        self._check_cancelled(progress_id)

        result = self._results.create(
            total_emails_analyzed=total,
            analysis_result=analysis.model_dump(),
            confidence=confidence,
            departments=filters.departments,
            countries=filters.countries,
            date_from=date_from,
            date_to=date_to,
        )
        self._push(progress_id, status=ProgressStatus.COMPLETED, progress=100, emails_processed=total)

        audit.info(
            "analysis.job.completed",
            progress_id=progress_id,
            result_id=result.id,
            mode=mode,
            total_emails=total,
            confidence=confidence,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _is_running(self, progress_id: str) -> bool:
        record = self._progress.get(progress_id)
        return record is not None and record.status == ProgressStatus.RUNNING

    def _check_cancelled(self, progress_id: str) -> None:
        if not self._is_running(progress_id):
            raise _JobCancelled()

    def _push(self, progress_id: str, **fields: Any) -> ProgressRecord:
        """Update the record only while it is still running."""
        record = self._progress.update(progress_id, require_status=ProgressStatus.RUNNING, **fields)
        if record is None:
            raise _JobCancelled()
        return record

    async def _await_cancellable(self, progress_id: str, aw: Awaitable[T]) -> T:
        """
        Await `aw`, re-checking the job's status every cancel_poll seconds.

        If the job stops running meanwhile, the in-flight task is cancelled
        (aborting its HTTP request) and the job unwinds.
        """
        task = asyncio.ensure_future(aw)
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self._cancel_poll)
                if done:
                    return task.result()
                if not self._is_running(progress_id):
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
                    raise _JobCancelled()
        finally:
            if not task.done():
                task.cancel()

    def _fail(self, progress_id: str, message: str) -> None:
        try:
            self._progress.update(
                progress_id,
                require_status=ProgressStatus.RUNNING,
                status=ProgressStatus.ERROR,
                error_message=message,
            )
        except StoreError:
            logger.exception(
                "analysis.job.error_update_failed",
                extra={"action": "analysis.job.error_update_failed", "progress_id": progress_id},
            )
