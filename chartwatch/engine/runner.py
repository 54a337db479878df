"""Automation runner: processes due schedules with bounded parallelism.

A schedule never has two jobs in flight. Within this process a per-schedule
asyncio.Lock guards it; across processes the claim in ``claim_schedule`` pushes
``next_run_at`` one interval ahead before any external call. When the job ends
``record_outcome`` appends the JobLog row and sets the real next run.
"""

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from chartwatch.config import Settings, settings as default_settings
from chartwatch.database import engine
from chartwatch.engine import recorder
from chartwatch.engine.adapters import Adapters, build_adapters
from chartwatch.engine.due import claim_schedule, select_due
from chartwatch.engine.errors import (
    AnalysisProviderError,
    CaptureError,
    DispatchError,
    MissingCredentialsError,
    PersistenceError,
    ScheduleBusyError,
    ScheduleNotFoundError,
)
from chartwatch.engine.gate import DecisionReason, decide
from chartwatch.engine.job import JobContext, JobOutcome, JobStatus
from chartwatch.engine.job_builder import build_job
from chartwatch.engine.stages import analysis_stage, capture_stage, dispatch_stage, enrichment_stage
from chartwatch.models.schedule import Schedule
from chartwatch.services.telegram_bot import format_error_alert, format_trading_alert
from chartwatch.utils.logging import bind_job_logger
from chartwatch.utils.timeutils import utcnow

logger = logging.getLogger(__name__)
job_logger = logging.getLogger("chartwatch.jobs")


class AutomationRunner:
    def __init__(self, adapters: Adapters | None = None, settings: Settings | None = None):
        self.settings = settings or default_settings
        self.adapters = adapters or build_adapters(self.settings)
        self._capture_slots = asyncio.Semaphore(self.settings.max_concurrent_captures)
        self._locks: dict[int, asyncio.Lock] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._closing = False

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _lock_for(self, schedule_id: int) -> asyncio.Lock:
        lock = self._locks.get(schedule_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[schedule_id] = lock
        return lock

    def is_running(self, schedule_id: int) -> bool:
        lock = self._locks.get(schedule_id)
        return lock is not None and lock.locked()

    async def run_tick(self, now=None) -> list[JobOutcome]:
        """Run every due schedule once. Failures of one job never affect the others."""
        if self._closing:
            return []
        now = now or utcnow()
        try:
            with Session(engine) as session:
                due_ids = [s.id for s in select_due(session, now)]
        except SQLAlchemyError as e:
            logger.error(f"Tick skipped, could not read schedules: {e}")
            return []

        if not due_ids:
            logger.debug("Tick: nothing due")
            return []
        logger.info(f"Tick: {len(due_ids)} schedule(s) due")

        tasks = [self._spawn(schedule_id, "tick", require_due=True, now=now) for schedule_id in due_ids]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = []
        for schedule_id, result in zip(due_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Schedule {schedule_id} job failed: {result!r}")
            elif result is not None:
                outcomes.append(result)
        return outcomes

    async def run_schedule(self, schedule_id: int, triggered_by: str = "manual") -> JobOutcome:
        """Run one schedule now, whether or not it is due.

        Raises ScheduleNotFoundError, or ScheduleBusyError when a job for the
        schedule is already in flight.
        """
        try:
            with Session(engine) as session:
                exists = session.get(Schedule, schedule_id) is not None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read schedule {schedule_id}: {e}") from e
        if not exists:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        if self.is_running(schedule_id):
            raise ScheduleBusyError(f"Schedule {schedule_id} is already running")

        outcome = await self._spawn(schedule_id, triggered_by, require_due=False, now=utcnow())
        if outcome is None:
            raise ScheduleBusyError(f"Schedule {schedule_id} is already running")
        return outcome

    def _spawn(self, schedule_id: int, triggered_by: str, require_due: bool, now) -> asyncio.Task:
        task = asyncio.create_task(
            self._run_exclusive(schedule_id, triggered_by, require_due, now),
            name=f"schedule-{schedule_id}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_exclusive(self, schedule_id, triggered_by, require_due, now) -> JobOutcome | None:
        lock = self._lock_for(schedule_id)
        if lock.locked():
            logger.info(f"Schedule {schedule_id} skipped, previous run still in progress")
            return None

        try:
            async with lock:
                try:
                    with Session(engine) as session:
                        schedule = claim_schedule(session, schedule_id, now, require_due)
                except SQLAlchemyError as e:
                    raise PersistenceError(f"Could not claim schedule {schedule_id}: {e}") from e
                if schedule is None:
                    return None
                return await self._run_job(schedule, triggered_by)
        finally:
            # locks are only ever tried, never waited on
            if not lock.locked() and self._locks.get(schedule_id) is lock:
                self._locks.pop(schedule_id, None)

    async def _run_job(self, schedule: Schedule, triggered_by: str) -> JobOutcome:
        outcome = JobOutcome(schedule_id=schedule.id, started_at=utcnow(), triggered_by=triggered_by)
        log = bind_job_logger(job_logger, schedule.id, schedule.user_id)
        try:
            await self._pipeline(schedule, outcome)
        except asyncio.CancelledError:
            outcome.status = JobStatus.INCOMPLETE
            outcome.error_kind = "cancelled"
            outcome.message = "Abandoned at shutdown"
            try:
                self._record(outcome, log)
            except PersistenceError as e:
                log.error(f"Abandoned without a log entry: {e.message}")
            raise
        except PersistenceError as e:
            log.error(f"Aborted: {e.message}")
            outcome.fail(JobStatus.INCOMPLETE, e)
            try:
                self._record(outcome, log)
            except PersistenceError as record_error:
                log.error(f"Aborted without a log entry: {record_error.message}")
                raise e
            return outcome

        self._record(outcome, log)
        return outcome

    def _record(self, outcome: JobOutcome, log: logging.LoggerAdapter) -> None:
        outcome.finished_at = utcnow()
        recorder.record_outcome(outcome, log)
        log.info(
            f"Finished: {outcome.status.value}"
            f" ({outcome.decision_reason or outcome.error_kind or '-'})"
        )

    async def _pipeline(self, schedule: Schedule, outcome: JobOutcome) -> None:
        cfg = self.settings
        ad = self.adapters

        try:
            with Session(engine) as session:
                job = build_job(session, schedule, outcome.triggered_by)
        except MissingCredentialsError as e:
            logger.warning(f"Schedule {schedule.id} cannot run: {e.message}")
            outcome.fail(JobStatus.CAPTURE_FAILED, e)
            return
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not build job for schedule {schedule.id}: {e}") from e

        log = job.log
        outcome.previous_signal = job.filters.last_signal
        log.info(f"Job started ({job.triggered_by}) for {job.display_name}")

        try:
            image = await capture_stage(job, ad.capture, self._capture_slots, cfg.capture_timeout_seconds)
        except CaptureError as e:
            log.warning(f"Capture failed: {e.message}")
            outcome.fail(JobStatus.CAPTURE_FAILED, e)
            await self._send_error_alert(job, e.message)
            return
        captured_at = utcnow()
        snapshot_id = recorder.save_snapshot(job, image, captured_at)

        try:
            result = await analysis_stage(job, ad.analyzer, image, cfg.analysis_timeout_seconds)
        except AnalysisProviderError as e:
            log.warning(f"Analysis failed: {e.message}")
            outcome.fail(JobStatus.ANALYSIS_FAILED, e)
            await self._send_error_alert(job, e.message)
            return

        signal_id = recorder.save_signal(job, snapshot_id, result)
        outcome.signal_id = signal_id
        outcome.action = result.action
        outcome.confidence = result.confidence

        enrichment = await enrichment_stage(
            job, ad.feed, ad.summarizer, result, captured_at, cfg.enrichment_timeout_seconds
        )
        if enrichment is not None:
            try:
                recorder.save_economic_context(signal_id, enrichment)
            except PersistenceError as e:
                log.warning(f"Economic context not saved, continuing without it: {e.message}")
                enrichment = None

        decision = decide(result, job.filters)
        outcome.decision_reason = decision.reason.value
        if not decision.send:
            log.info(f"Notification suppressed: {decision.reason.value}")
            outcome.status = JobStatus.SUPPRESSED
            return
        if not job.target.chat_id:
            log.info("Notification suppressed: user has no Telegram chat")
            outcome.status = JobStatus.SUPPRESSED
            outcome.decision_reason = DecisionReason.NO_TARGET.value
            return

        economic = enrichment.summary if enrichment and job.target.include_economic else None
        text = format_trading_alert(
            job.display_name,
            result,
            captured_at,
            economic=economic,
            link=f"{cfg.app_url.rstrip('/')}/analysis/{signal_id}",
        )
        try:
            await dispatch_stage(
                job, ad.notifier, text, image if job.target.include_chart else None, cfg.dispatch_timeout_seconds
            )
        except DispatchError as e:
            log.warning(f"Dispatch failed: {e.message}")
            outcome.fail(JobStatus.DISPATCH_FAILED, e)
            return

        outcome.status = JobStatus.SUCCESS
        outcome.notification_sent = True

    async def _send_error_alert(self, job: JobContext, error: str) -> None:
        if not job.filters.send_to_telegram or not job.target.chat_id:
            return
        text = format_error_alert(job.display_name, error, utcnow())
        try:
            await asyncio.wait_for(
                self.adapters.notifier.send_error_alert(job.target.chat_id, text),
                timeout=self.settings.dispatch_timeout_seconds,
            )
        except (DispatchError, asyncio.TimeoutError) as e:
            job.log.warning(f"Error alert not delivered: {e}")

    async def shutdown(self, grace: float | None = None) -> None:
        """Stop accepting work, wait ``grace`` seconds, then abandon what is left.

        Abandoned jobs are recorded as incomplete.
        """
        self._closing = True
        pending = set(self._in_flight)
        if not pending:
            return
        grace = self.settings.shutdown_grace_seconds if grace is None else grace
        logger.info(f"Waiting up to {grace:.0f}s for {len(pending)} job(s)")
        _, still_running = await asyncio.wait(pending, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Abandoned {len(still_running)} job(s) at shutdown")
            await asyncio.gather(*still_running, return_exceptions=True)
