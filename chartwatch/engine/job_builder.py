"""Assembles the immutable JobContext for one due schedule."""

import logging

from sqlmodel import Session

from chartwatch.config import settings
from chartwatch.engine.errors import MissingCredentialsError
from chartwatch.engine.job import FilterSettings, JobContext, NotificationTarget, SessionCredentials
from chartwatch.models.layout import Layout
from chartwatch.models.schedule import Schedule
from chartwatch.models.user import User
from chartwatch.services.encryption import reveal
from chartwatch.utils.logging import bind_job_logger

logger = logging.getLogger("chartwatch.jobs")


def build_job(session: Session, schedule: Schedule, triggered_by: str = "tick") -> JobContext:
    """Build a self-contained job context, failing before any external call.

    Raises MissingCredentialsError when the layout has no capture target or the
    owning user has no chart-session credentials.
    """
    layout = session.get(Layout, schedule.layout_id)
    if layout is None or not layout.capture_layout_id:
        raise MissingCredentialsError("Layout has no capture layout id")

    user = session.get(User, schedule.user_id)
    if user is None or not user.tv_session_id or not user.tv_session_sign:
        raise MissingCredentialsError("User has no chart session credentials")

    session_id = reveal(user.tv_session_id)
    session_sign = reveal(user.tv_session_sign)

    return JobContext(
        schedule_id=schedule.id,
        user_id=schedule.user_id,
        layout_id=layout.id,
        capture_layout_id=layout.capture_layout_id,
        symbol=layout.symbol,
        interval=layout.interval,
        frequency=schedule.frequency,
        model=user.preferred_model or settings.analysis_model,
        credentials=SessionCredentials(session_id=session_id, session_sign=session_sign),
        target=NotificationTarget(
            chat_id=user.telegram_chat_id,
            include_chart=user.include_chart,
            include_economic=user.include_economic,
        ),
        filters=FilterSettings(
            send_to_telegram=schedule.send_to_telegram,
            only_on_signal_change=schedule.only_on_signal_change,
            min_confidence=schedule.min_confidence,
            send_on_hold=schedule.send_on_hold,
            last_signal=schedule.last_signal,
        ),
        triggered_by=triggered_by,
        log=bind_job_logger(logger, schedule.id, schedule.user_id),
    )
