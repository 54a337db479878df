"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chartwatch.config import settings
from chartwatch.database import create_db_and_tables
from chartwatch.utils.logging import setup_logging
from chartwatch.api import automation, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from chartwatch.engine.scheduler import start_scheduler, stop_scheduler
    if settings.scheduler_enabled:
        start_scheduler()

    # Start the operator bot if configured
    operator_bot = None
    if settings.telegram_bot_token and settings.telegram_admin_chat_ids:
        from chartwatch.services.telegram_bot import init_bot
        operator_bot = init_bot()
        operator_bot.start()

    yield

    if operator_bot:
        operator_bot.stop()
    await stop_scheduler()


app = FastAPI(
    title="Chartwatch",
    description="Scheduled chart capture, AI signal analysis and Telegram alerts",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(automation.router)
app.include_router(system.router)
