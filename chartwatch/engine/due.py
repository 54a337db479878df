"""Due selection and next-run arithmetic for automation schedules."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlmodel import Session, select

from chartwatch.models.schedule import Schedule
from chartwatch.utils.constants import FREQUENCY_INTERVALS
from chartwatch.utils.timeutils import as_utc

logger = logging.getLogger(__name__)


def frequency_interval(frequency: str) -> timedelta:
    try:
        return FREQUENCY_INTERVALS[frequency]
    except KeyError:
        raise ValueError(f"Unknown schedule frequency: {frequency!r}") from None


def next_run_after(completed_at: datetime, frequency: str) -> datetime:
    return as_utc(completed_at) + frequency_interval(frequency)


def select_due(session: Session, now: datetime) -> list[Schedule]:
    """Enabled schedules whose next run has elapsed. Read-only."""
    stmt = (
        select(Schedule)
        .where(Schedule.enabled == True)  # noqa: E712
        .where(Schedule.next_run_at <= now)
        .order_by(Schedule.next_run_at, Schedule.id)
    )
    return list(session.exec(stmt).all())


def claim_schedule(session: Session, schedule_id: int, now: datetime, require_due: bool) -> Schedule | None:
    """Mark a schedule in-progress by pushing next_run_at one interval past ``now``.

    The write is a compare-and-set on the ``next_run_at`` value just read, so a
    second claimer (another tick, a manual trigger, another process) loses.
    Returns a detached copy of the schedule as it was before the claim, or None
    when the schedule is gone, not due (``require_due``) or claimed elsewhere.
    """
    schedule = session.get(Schedule, schedule_id)
    if schedule is None:
        return None
    if require_due and (not schedule.enabled or as_utc(schedule.next_run_at) > as_utc(now)):
        return None

    snapshot = Schedule.model_validate(schedule.model_dump())
    lease = next_run_after(now, schedule.frequency)
    result = session.execute(
        update(Schedule)
        .where(Schedule.id == schedule_id)
        .where(Schedule.next_run_at == schedule.next_run_at)
        .values(next_run_at=lease)
    )
    session.commit()
    if result.rowcount != 1:
        logger.info(f"Schedule {schedule_id} was claimed by another runner")
        return None
    return snapshot
