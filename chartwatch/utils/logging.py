"""Logging setup and per-job logger binding."""

import logging
import sys
from typing import Any

from chartwatch.config import settings


def setup_logging() -> None:
    """Configure logging to output to stdout with proper formatting."""
    root_logger = logging.getLogger()
    if any(getattr(h, "_chartwatch", False) for h in root_logger.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler._chartwatch = True
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())

    # Set lower log levels for some noisy libraries
    for name in ("sqlalchemy", "httpx", "httpcore", "apscheduler", "telegram", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


class JobLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the schedule and user the job runs for."""

    def process(self, msg: Any, kwargs: dict) -> tuple[Any, dict]:
        prefix = f"[schedule {self.extra['schedule_id']} user {self.extra['user_id']}]"
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"{prefix} {msg}", kwargs


def bind_job_logger(logger: logging.Logger, schedule_id: int, user_id: int) -> JobLoggerAdapter:
    return JobLoggerAdapter(logger, {"schedule_id": schedule_id, "user_id": user_id})
