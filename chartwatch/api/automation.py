"""Automation API: schedule management, manual triggers and job logs."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from chartwatch.database import get_session
from chartwatch.engine.errors import PersistenceError, ScheduleBusyError, ScheduleNotFoundError
from chartwatch.engine.job import JobOutcome, JobStatus
from chartwatch.engine.scheduler import get_runner
from chartwatch.models.job_log import JobLog
from chartwatch.models.layout import Layout
from chartwatch.models.schedule import Schedule
from chartwatch.models.snapshot import Snapshot
from chartwatch.schemas.job_log import JobLogRead, TickResult, TriggerResult
from chartwatch.schemas.schedule import SCHEDULE_DEFAULTS, LayoutBrief, ScheduleRead, ScheduleUpsert

router = APIRouter(prefix="/api/automation", tags=["automation"])

LOG_LIMIT_DEFAULT = 50
LOG_LIMIT_MAX = 500

# Failed outcomes other than these map to 500
_STATUS_CODES = {
    JobStatus.SUCCESS: 200,
    JobStatus.SUPPRESSED: 200,
    JobStatus.ANALYSIS_FAILED: 502,
}


def _to_read(schedule: Schedule, session: Session) -> ScheduleRead:
    layout = session.get(Layout, schedule.layout_id)
    read = ScheduleRead.model_validate(schedule)
    if layout is not None:
        read.layout = LayoutBrief.model_validate(layout)
    return read


def _to_result(outcome: JobOutcome) -> TriggerResult:
    return TriggerResult(
        schedule_id=outcome.schedule_id,
        status=outcome.status.value,
        decision_reason=outcome.decision_reason,
        signal_id=outcome.signal_id,
        message=outcome.message,
    )


@router.get("", response_model=list[ScheduleRead])
def list_schedules(
    user_id: int | None = None,
    session: Session = Depends(get_session),
):
    stmt = select(Schedule).order_by(Schedule.id)
    if user_id is not None:
        stmt = stmt.where(Schedule.user_id == user_id)
    return [_to_read(s, session) for s in session.exec(stmt).all()]


@router.put("", response_model=ScheduleRead)
def upsert_schedule(data: ScheduleUpsert, session: Session = Depends(get_session)):
    """Create or update the schedule for a layout. Either way it becomes due now."""
    layout = session.get(Layout, data.layout_id)
    if not layout:
        raise HTTPException(status_code=404, detail="Layout not found")

    now = datetime.now(timezone.utc)
    changes = data.model_dump(exclude_unset=True, exclude_none=True, exclude={"layout_id"})
    schedule = session.exec(select(Schedule).where(Schedule.layout_id == layout.id)).first()
    if schedule is None:
        schedule = Schedule(layout_id=layout.id, user_id=layout.user_id, **{**SCHEDULE_DEFAULTS, **changes})
    else:
        for key, value in changes.items():
            setattr(schedule, key, value)
    schedule.next_run_at = now
    schedule.updated_at = now

    session.add(schedule)
    session.commit()
    session.refresh(schedule)
    return _to_read(schedule, session)


@router.get("/logs", response_model=list[JobLogRead])
def job_logs(
    schedule_id: int | None = None,
    status: str | None = None,
    limit: int = Query(default=LOG_LIMIT_DEFAULT, ge=1, le=LOG_LIMIT_MAX),
    session: Session = Depends(get_session),
):
    stmt = select(JobLog).order_by(JobLog.started_at.desc(), JobLog.id.desc())
    if schedule_id is not None:
        stmt = stmt.where(JobLog.schedule_id == schedule_id)
    if status is not None:
        stmt = stmt.where(JobLog.status == status)
    return session.exec(stmt.limit(limit)).all()


@router.post("/trigger", response_model=TickResult)
async def trigger_tick():
    """Run one tick now: every due schedule, through the normal exclusivity guard."""
    outcomes = await get_runner().run_tick()
    return TickResult(processed=len(outcomes), results=[_to_result(o) for o in outcomes])


@router.get("/{schedule_id}", response_model=ScheduleRead)
def get_schedule(schedule_id: int, session: Session = Depends(get_session)):
    schedule = session.get(Schedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return _to_read(schedule, session)


@router.delete("/{schedule_id}", status_code=204)
def delete_schedule(schedule_id: int, session: Session = Depends(get_session)):
    schedule = session.get(Schedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")

    for log in session.exec(select(JobLog).where(JobLog.schedule_id == schedule_id)).all():
        session.delete(log)
    for snapshot in session.exec(select(Snapshot).where(Snapshot.schedule_id == schedule_id)).all():
        snapshot.schedule_id = None
        session.add(snapshot)
    session.delete(schedule)
    session.commit()


@router.post("/{schedule_id}/trigger", response_model=TriggerResult)
async def trigger_schedule(schedule_id: int):
    """Run one schedule now and report its outcome."""
    try:
        outcome = await get_runner().run_schedule(schedule_id, triggered_by="manual")
    except ScheduleNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ScheduleBusyError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail={"status": "persistence_failed", "message": e.message})

    result = _to_result(outcome)
    return JSONResponse(status_code=_STATUS_CODES.get(outcome.status, 500), content=result.model_dump())
