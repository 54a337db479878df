"""Persistence for job artifacts and outcomes.

``record_outcome`` writes the JobLog row and the schedule's runtime state
(last_signal, next_run_at, last_run_at) in a single commit.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from chartwatch.database import engine
from chartwatch.engine.due import next_run_after
from chartwatch.engine.errors import PersistenceError
from chartwatch.engine.job import ImageRef, JobContext, JobOutcome
from chartwatch.engine.stages import Enrichment
from chartwatch.models.economic_context import EconomicContext
from chartwatch.models.job_log import JobLog
from chartwatch.models.schedule import Schedule
from chartwatch.models.signal import Signal
from chartwatch.models.snapshot import Snapshot
from chartwatch.schemas.analysis import SignalResult
from chartwatch.utils.constants import SNAPSHOT_TTL
from chartwatch.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def save_snapshot(job: JobContext, image: ImageRef, captured_at: datetime) -> int:
    try:
        with Session(engine) as session:
            snapshot = Snapshot(
                layout_id=job.layout_id,
                schedule_id=job.schedule_id,
                url=image.source_url or "",
                image_data=image.data_url,
                captured_at=captured_at,
                expires_at=captured_at + SNAPSHOT_TTL,
            )
            session.add(snapshot)
            session.commit()
            session.refresh(snapshot)
            return snapshot.id
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not save snapshot: {e}") from e


def save_signal(job: JobContext, snapshot_id: int, result: SignalResult) -> int:
    """Upsert the signal for a snapshot. One capture never yields two signals."""
    trade_setup = result.trade_setup.model_dump(by_alias=True) if result.trade_setup else None
    try:
        with Session(engine) as session:
            signal = session.exec(select(Signal).where(Signal.snapshot_id == snapshot_id)).first()
            if signal is None:
                signal = Signal(snapshot_id=snapshot_id, user_id=job.user_id, layout_id=job.layout_id,
                                action=result.action, confidence=result.confidence,
                                timeframe=result.timeframe)
            signal.action = result.action
            signal.confidence = result.confidence
            signal.timeframe = result.timeframe
            signal.reasons = list(result.reasons)
            signal.trade_setup = trade_setup
            signal.model = job.model
            signal.updated_at = utcnow()
            session.add(signal)
            session.commit()
            session.refresh(signal)
            return signal.id
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not save signal: {e}") from e


def save_economic_context(signal_id: int, enrichment: Enrichment) -> int:
    """Upsert the economic context attached to a signal."""
    summary = enrichment.summary
    try:
        with Session(engine) as session:
            ctx = session.exec(select(EconomicContext).where(EconomicContext.signal_id == signal_id)).first()
            if ctx is None:
                ctx = EconomicContext(signal_id=signal_id, symbol=enrichment.symbol,
                                      immediate_risk=summary.immediate_risk,
                                      weekly_outlook=summary.weekly_outlook)
            ctx.symbol = enrichment.symbol
            ctx.immediate_risk = summary.immediate_risk
            ctx.weekly_outlook = summary.weekly_outlook
            ctx.impact_summary = summary.impact_summary
            ctx.warnings = list(summary.warnings)
            ctx.opportunities = list(summary.opportunities)
            ctx.recommendation = summary.recommendation
            ctx.upcoming_events = [e.model_dump(mode="json") for e in enrichment.upcoming]
            ctx.weekly_events = [e.model_dump(mode="json") for e in enrichment.weekly]
            ctx.updated_at = utcnow()
            session.add(ctx)
            session.commit()
            session.refresh(ctx)
            return ctx.id
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not save economic context: {e}") from e


def record_outcome(outcome: JobOutcome, log: logging.LoggerAdapter | None = None) -> JobLog | None:
    """Append the JobLog row and advance the schedule, atomically.

    ``log`` is the job's bound logger; the module logger is used without one.

    Returns None when the schedule was deleted while its job ran.
    """
    log = log or logger
    finished_at = outcome.finished_at or utcnow()
    outcome.finished_at = finished_at
    try:
        with Session(engine) as session:
            schedule = session.get(Schedule, outcome.schedule_id)
            if schedule is None:
                log.warning(f"Schedule {outcome.schedule_id} was deleted while its job ran")
                return None

            entry = JobLog(
                schedule_id=outcome.schedule_id,
                triggered_by=outcome.triggered_by,
                started_at=outcome.started_at,
                finished_at=finished_at,
                duration_ms=int((finished_at - outcome.started_at).total_seconds() * 1000),
                status=outcome.status.value,
                decision_reason=outcome.decision_reason,
                error_kind=outcome.error_kind,
                message=outcome.message,
                signal_id=outcome.signal_id,
                action=outcome.action,
                confidence=outcome.confidence,
                previous_signal=outcome.previous_signal,
                notification_sent=outcome.notification_sent,
            )
            session.add(entry)

            evaluated = outcome.evaluated_action
            if evaluated is not None:
                schedule.last_signal = evaluated
            schedule.next_run_at = next_run_after(finished_at, schedule.frequency)
            schedule.last_run_at = finished_at
            session.add(schedule)

            session.commit()
            session.refresh(entry)
            log.debug(f"Recorded job log {entry.id} ({entry.status})")
            return entry
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not record job outcome: {e}") from e
