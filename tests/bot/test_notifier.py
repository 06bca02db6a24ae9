from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import TelegramError

from analysis.models import RiskLevel, RiskVerdict
from bot.notifier import TelegramNotifier
from events import Event, EventKind


def make_bot():
    bot = MagicMock()
    bot.send_message = AsyncMock()
    return bot


@pytest.mark.asyncio
async def test_opportunity_is_posted_as_html(make_opportunity):
    bot = make_bot()
    notifier = TelegramNotifier(bot, chat_id="42")

    await notifier(Event(EventKind.OPPORTUNITY_FOUND, "found", data=make_opportunity()))

    kwargs = bot.send_message.call_args.kwargs
    assert kwargs["chat_id"] == "42"
    assert kwargs["parse_mode"] == "HTML"
    assert "Net Profit: <b>$70.00</b>" in kwargs["text"]
    assert "/execute" in kwargs["text"]


@pytest.mark.asyncio
async def test_verdict_reason_is_escaped():
    bot = make_bot()
    verdict = RiskVerdict(RiskLevel.HIGH, 12, "Pool <1k deep & volatile")

    await TelegramNotifier(bot, chat_id="42")(Event(EventKind.RISK_VERDICT, "verdict", data=verdict))

    text = bot.send_message.call_args.kwargs["text"]
    assert "AI Risk: HIGH" in text
    assert "Pool &lt;1k deep &amp; volatile" in text


@pytest.mark.asyncio
async def test_scan_ticks_are_not_posted():
    bot = make_bot()
    await TelegramNotifier(bot, chat_id="42")(Event(EventKind.SCAN_TICK, "Scanning metis..."))
    bot.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_failures_are_reported_not_raised(capsys, make_opportunity):
    bot = make_bot()
    bot.send_message.side_effect = TelegramError("flood control")

    await TelegramNotifier(bot, chat_id="42")(Event(EventKind.DECISION_EXPIRED, "expired", data=make_opportunity()))

    assert "flood control" in capsys.readouterr().out
