"""Database models."""

from chartwatch.models.user import User
from chartwatch.models.layout import Layout
from chartwatch.models.schedule import Schedule
from chartwatch.models.snapshot import Snapshot
from chartwatch.models.signal import Signal
from chartwatch.models.economic_context import EconomicContext
from chartwatch.models.job_log import JobLog

__all__ = [
    "User",
    "Layout",
    "Schedule",
    "Snapshot",
    "Signal",
    "EconomicContext",
    "JobLog",
]
