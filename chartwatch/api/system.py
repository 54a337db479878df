"""System API: health check and scheduler status."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlmodel import Session

from chartwatch.database import get_session

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check(session: Session = Depends(get_session)):
    session.execute(text("SELECT 1"))
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state: tick timing and jobs in flight."""
    from chartwatch.engine.scheduler import get_scheduler_status
    return get_scheduler_status()
