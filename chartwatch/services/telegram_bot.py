"""Telegram delivery of signal alerts, plus an operator bot for remote status checks."""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Optional, Protocol

from telegram import Bot, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes
from sqlmodel import Session, func, select

from chartwatch.config import settings
from chartwatch.engine.errors import DispatchError
from chartwatch.engine.job import ImageRef
from chartwatch.schemas.analysis import ImpactSummary, SignalResult

logger = logging.getLogger(__name__)

# Telegram's limit for photo captions
CAPTION_LIMIT = 1024
REASON_PREVIEW_CHARS = 150


def confidence_emoji(confidence: int) -> str:
    if confidence >= 90:
        return "🟢🟢🟢"
    if confidence >= 70:
        return "🟢🟢⚪"
    if confidence >= 50:
        return "🟢⚪⚪"
    if confidence >= 30:
        return "🟡⚪⚪"
    return "🔴⚪⚪"


ACTION_LABELS = {"BUY": "📈 BUY", "SELL": "📉 SELL", "HOLD": "⏸️ HOLD"}


def format_price(price: float) -> str:
    # Forex quotes need 5 decimals, stocks 3, gold and crypto 2
    if price < 10:
        return f"{price:.5f}"
    if price < 1000:
        return f"{price:.3f}"
    return f"{price:.2f}"


def format_trading_alert(
    display_name: str,
    signal: SignalResult,
    created_at: datetime,
    economic: ImpactSummary | None = None,
    link: str | None = None,
) -> str:
    """Render a signal as a Telegram Markdown message."""
    lines = [
        "🤖 *Trade Analysis Alert*",
        "",
        f"📊 *{display_name}*",
        f"⏰ {created_at:%Y-%m-%d %H:%M} UTC",
        "",
        f"*Action:* {ACTION_LABELS.get(signal.action, signal.action)}",
        f"*Confidence:* {signal.confidence}% {confidence_emoji(signal.confidence)}",
        "",
    ]

    setup = signal.trade_setup
    if setup and signal.action != "HOLD" and setup.entry_price and setup.stop_loss and setup.target_price:
        lines.append(f"💼 *Trade Setup* ({setup.quality})")
        lines.append(f"Entry: `{format_price(setup.entry_price)}`")
        lines.append(f"Stop Loss: `{format_price(setup.stop_loss)}`")
        lines.append(f"Target: `{format_price(setup.target_price)}`")
        risk = setup.entry_price - setup.stop_loss
        if risk:
            reward = (setup.target_price - setup.entry_price) / risk
            lines.append(f"R:R Ratio: `1:{reward:.2f}`")
        lines.append("")

    if signal.reasons:
        first = signal.reasons[0]
        preview = first[:REASON_PREVIEW_CHARS] + ("..." if len(first) > REASON_PREVIEW_CHARS else "")
        lines.append(f"📝 *Analysis:* {preview}")
        lines.append("")

    if economic is not None:
        if economic.immediate_risk != "NONE":
            lines.append(f"⚠️ *Economic Risk:* {economic.immediate_risk}")
        if economic.weekly_outlook != "NEUTRAL":
            lines.append(f"📊 *Weekly Outlook:* {economic.weekly_outlook}")
        lines.append("")

    if link:
        lines.append(f"🔗 [View Full Analysis]({link})")
    return "\n".join(lines).strip()


def format_error_alert(display_name: str, error: str, when: datetime) -> str:
    return (
        "⚠️ *Automation Error*\n\n"
        f"📊 Layout: {display_name}\n"
        f"❌ Error: {error}\n\n"
        f"⏰ {when:%Y-%m-%d %H:%M} UTC"
    )


class Notifier(Protocol):
    async def send_alert(self, chat_id: str, text: str, image: ImageRef | None = None) -> None: ...

    async def send_error_alert(self, chat_id: str, text: str) -> None: ...


class TelegramNotifier:
    """Sends alerts through the Bot API. One short-lived Bot session per send."""

    def __init__(self, token: str):
        self.token = token

    def _bot(self) -> Bot:
        if not self.token:
            raise DispatchError("CW_TELEGRAM_BOT_TOKEN is not set")
        return Bot(self.token)

    async def send_alert(self, chat_id: str, text: str, image: ImageRef | None = None) -> None:
        try:
            async with self._bot() as bot:
                if image is not None:
                    caption = text if len(text) <= CAPTION_LIMIT else text[: CAPTION_LIMIT - 3] + "..."
                    await bot.send_photo(
                        chat_id=chat_id,
                        photo=image.data,
                        caption=caption,
                        parse_mode=ParseMode.MARKDOWN,
                    )
                else:
                    await bot.send_message(
                        chat_id=chat_id,
                        text=text,
                        parse_mode=ParseMode.MARKDOWN,
                        disable_web_page_preview=True,
                    )
        except TelegramError as e:
            raise DispatchError(f"Telegram send to {chat_id} failed: {e}") from e
        logger.info(f"Telegram alert sent to {chat_id}")

    async def send_error_alert(self, chat_id: str, text: str) -> None:
        try:
            async with self._bot() as bot:
                await bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
        except TelegramError as e:
            raise DispatchError(f"Telegram error alert to {chat_id} failed: {e}") from e


class OperatorBot:
    """Operator bot running in a background thread with its own event loop.

    Answers /status and /logs for the chat ids in CW_TELEGRAM_ADMIN_CHAT_IDS.
    """

    def __init__(self, token: str, chat_ids: list[int]):
        self.token = token
        self.chat_ids = set(chat_ids)
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return
        await update.message.reply_text(status_text())

    async def _cmd_logs(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return
        await update.message.reply_text(recent_logs_text())

    def _run_bot(self):
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = Application.builder().token(self.token).build()
        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("logs", self._cmd_logs))

        logger.info("Operator bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def status_text() -> str:
    from chartwatch.database import engine
    from chartwatch.engine.scheduler import get_scheduler_status
    from chartwatch.models.schedule import Schedule

    status = get_scheduler_status()
    with Session(engine) as session:
        enabled = session.exec(
            select(func.count()).select_from(Schedule).where(Schedule.enabled == True)  # noqa: E712
        ).one()

    scheduler_str = "running" if status["running"] else "stopped"
    next_tick = status["next_tick"] or "-"
    return (
        f"Scheduler: {scheduler_str}\n"
        f"Next tick: {next_tick}\n"
        f"Enabled schedules: {enabled}\n"
        f"Jobs in flight: {status['in_flight']}"
    )


def recent_logs_text(limit: int = 10) -> str:
    from chartwatch.database import engine
    from chartwatch.models.job_log import JobLog

    with Session(engine) as session:
        logs = session.exec(
            select(JobLog).order_by(JobLog.started_at.desc(), JobLog.id.desc()).limit(limit)
        ).all()
    if not logs:
        return "No job runs yet."

    lines = []
    for log in logs:
        detail = log.action or log.error_kind or "-"
        lines.append(f"#{log.schedule_id} {log.started_at:%m-%d %H:%M} {log.status} ({detail})")
    return "\n".join(lines)


def init_bot() -> OperatorBot:
    """Build the operator bot from settings."""
    return OperatorBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_admin_chat_ids,
    )
