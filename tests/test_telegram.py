"""Tests for alert formatting and the Telegram notifier."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram.error import NetworkError

from chartwatch.engine.errors import DispatchError
from chartwatch.engine.job import ImageRef
from chartwatch.schemas.analysis import ImpactSummary, SignalResult, TradeSetup
from chartwatch.services.telegram_bot import (
    CAPTION_LIMIT,
    TelegramNotifier,
    confidence_emoji,
    format_error_alert,
    format_price,
    format_trading_alert,
)

WHEN = datetime(2026, 3, 2, 14, 5, tzinfo=timezone.utc)


def _signal(action="BUY", confidence=84, **kwargs) -> SignalResult:
    return SignalResult(action=action, confidence=confidence, **kwargs)


# ---------------------------------------------------------------------------
# 1. Formatting
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "confidence,expected",
    [(95, "🟢🟢🟢"), (70, "🟢🟢⚪"), (50, "🟢⚪⚪"), (30, "🟡⚪⚪"), (10, "🔴⚪⚪")],
)
def test_confidence_emoji(confidence, expected):
    assert confidence_emoji(confidence) == expected


def test_format_price_precision():
    assert format_price(1.08501) == "1.08501"
    assert format_price(187.5) == "187.500"
    assert format_price(2345.678) == "2345.68"


def test_alert_contains_trade_setup_for_directional_signal():
    setup = TradeSetup(quality="A", entry_price=1.085, stop_loss=1.08, target_price=1.095)
    text = format_trading_alert("EURUSD 60", _signal(trade_setup=setup), WHEN,
                                link="http://app.test/analysis/7")

    assert "📊 *EURUSD 60*" in text
    assert "*Action:* 📈 BUY" in text
    assert "💼 *Trade Setup* (A)" in text
    assert "R:R Ratio: `1:2.00`" in text
    assert text.endswith("🔗 [View Full Analysis](http://app.test/analysis/7)")


def test_hold_alert_omits_trade_setup():
    setup = TradeSetup(entry_price=1.0, stop_loss=0.9, target_price=1.2)
    text = format_trading_alert("EURUSD", _signal("HOLD", trade_setup=setup), WHEN)
    assert "Trade Setup" not in text


def test_first_reason_is_truncated():
    reason = "x" * 200
    text = format_trading_alert("EURUSD", _signal(reasons=[reason, "second"]), WHEN)
    assert f"📝 *Analysis:* {'x' * 150}..." in text
    assert "second" not in text


def test_economic_lines_skip_neutral_values():
    economic = ImpactSummary(immediate_risk="NONE", weekly_outlook="BEARISH")
    text = format_trading_alert("EURUSD", _signal(), WHEN, economic=economic)
    assert "Economic Risk" not in text
    assert "📊 *Weekly Outlook:* BEARISH" in text


def test_error_alert():
    text = format_error_alert("GBPJPY 240", "Capture timed out after 45s", WHEN)
    assert "Automation Error" in text
    assert "Capture timed out after 45s" in text


# ---------------------------------------------------------------------------
# 2. Notifier
# ---------------------------------------------------------------------------

def _patched_bot():
    bot = AsyncMock()
    bot_cls = MagicMock()
    bot_cls.return_value.__aenter__.return_value = bot
    return bot_cls, bot


@pytest.mark.asyncio
async def test_send_alert_with_chart_uses_photo_caption():
    bot_cls, bot = _patched_bot()
    image = ImageRef(data=b"\x89PNG")
    long_text = "a" * (CAPTION_LIMIT + 50)

    with patch("chartwatch.services.telegram_bot.Bot", bot_cls):
        await TelegramNotifier("token").send_alert("1001", long_text, image)

    bot.send_photo.assert_awaited_once()
    kwargs = bot.send_photo.await_args.kwargs
    assert kwargs["chat_id"] == "1001"
    assert kwargs["photo"] == b"\x89PNG"
    assert len(kwargs["caption"]) == CAPTION_LIMIT
    bot.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_alert_text_only():
    bot_cls, bot = _patched_bot()
    with patch("chartwatch.services.telegram_bot.Bot", bot_cls):
        await TelegramNotifier("token").send_alert("1001", "hello")

    bot.send_message.assert_awaited_once()
    assert bot.send_message.await_args.kwargs["text"] == "hello"


@pytest.mark.asyncio
async def test_transport_error_becomes_dispatch_error():
    bot_cls, bot = _patched_bot()
    bot.send_message.side_effect = NetworkError("connection reset")

    with patch("chartwatch.services.telegram_bot.Bot", bot_cls):
        with pytest.raises(DispatchError):
            await TelegramNotifier("token").send_alert("1001", "hello")


@pytest.mark.asyncio
async def test_missing_token_is_a_dispatch_error():
    with pytest.raises(DispatchError):
        await TelegramNotifier("").send_error_alert("1001", "boom")
