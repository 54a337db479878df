"""Shared fixtures: a throwaway SQLite database, seeded rows and stub adapters."""

import itertools
import os
import tempfile

from cryptography.fernet import Fernet

_DB_DIR = tempfile.mkdtemp(prefix="chartwatch-tests-")
os.environ["CW_DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'chartwatch.db')}"
os.environ["CW_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["CW_LEGACY_ENCRYPTION_KEY"] = "00" * 32
os.environ["CW_SCHEDULER_ENABLED"] = "false"
os.environ["CW_TELEGRAM_BOT_TOKEN"] = ""
for _backend in ("CAPTURE", "ANALYSIS", "ECONOMIC", "NOTIFY"):
    os.environ[f"CW_{_backend}_BACKEND"] = "stub"

import pytest  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import chartwatch.models  # noqa: E402,F401
from chartwatch.config import settings  # noqa: E402
from chartwatch.database import engine  # noqa: E402
from chartwatch.engine.adapters import Adapters  # noqa: E402
from chartwatch.engine.runner import AutomationRunner  # noqa: E402
from chartwatch.models.layout import Layout  # noqa: E402
from chartwatch.models.schedule import Schedule  # noqa: E402
from chartwatch.models.user import User  # noqa: E402
from chartwatch.services.encryption import encrypt  # noqa: E402
from chartwatch.services.stubs import (  # noqa: E402
    StubChartAnalyzer,
    StubChartCapture,
    StubEconomicFeed,
    StubImpactSummarizer,
    StubNotifier,
)

_usernames = itertools.count(1)


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_schedule(session):
    """Create a user, a layout and its schedule. Returns the Schedule."""

    def _make(user: User | None = None, user_kwargs=None, layout_kwargs=None, **schedule_kwargs) -> Schedule:
        if user is None:
            fields = {
                "username": f"trader{next(_usernames)}",
                "telegram_chat_id": "1001",
                "tv_session_id": encrypt("session-id"),
                "tv_session_sign": encrypt("session-sign"),
                **(user_kwargs or {}),
            }
            user = User(**fields)
            session.add(user)
            session.commit()
            session.refresh(user)

        layout = Layout(
            user_id=user.id,
            **{"capture_layout_id": "AbCd1234", "symbol": "EURUSD", "interval": "60", **(layout_kwargs or {})},
        )
        session.add(layout)
        session.commit()
        session.refresh(layout)

        schedule = Schedule(user_id=user.id, layout_id=layout.id, **schedule_kwargs)
        session.add(schedule)
        session.commit()
        session.refresh(schedule)
        return schedule

    return _make


@pytest.fixture
def adapters():
    return Adapters(
        capture=StubChartCapture(),
        analyzer=StubChartAnalyzer(),
        feed=StubEconomicFeed(),
        summarizer=StubImpactSummarizer(),
        notifier=StubNotifier(),
    )


@pytest.fixture
def test_settings():
    return settings.model_copy(
        update={
            "capture_timeout_seconds": 2.0,
            "analysis_timeout_seconds": 2.0,
            "enrichment_timeout_seconds": 2.0,
            "dispatch_timeout_seconds": 2.0,
            "shutdown_grace_seconds": 0.5,
        }
    )


@pytest.fixture
def runner(adapters, test_settings):
    return AutomationRunner(adapters=adapters, settings=test_settings)


@pytest.fixture
def reload():
    """Read a row back through a fresh session."""

    def _reload(model, pk):
        with Session(engine) as s:
            return s.get(model, pk)

    return _reload
