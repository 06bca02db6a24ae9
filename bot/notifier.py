# bot/notifier.py
import html
from typing import Optional

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from analysis.models import Opportunity, RiskVerdict
from constants import C_RED, C_RESET
from events import Event, EventKind
from ledger import TradeRecord


def format_opportunity_html(opp: Opportunity, remaining_seconds: Optional[float] = None) -> str:
    """Renders an opportunity with its route as a Telegram HTML block."""
    route = "\n".join(f"  {html.escape(step)}" for step in opp.path())
    lines = [
        f"<b>⚡ {html.escape(opp.symbol)}</b>  <code>{opp.id}</code>",
        f"Buy: {html.escape(opp.buy_venue)} → Sell: {html.escape(opp.sell_venue)}",
        f"Spread: <b>{opp.spread_pct:.2f}%</b> | Liquidity: ${opp.liquidity_usd:,.0f}",
        f"Slippage: {opp.slippage_tolerance_pct:.2f}% | Fee: ${opp.flash_fee_usd:.2f} | Gas: ${opp.estimated_gas_usd:.2f}",
        f"Net Profit: <b>${opp.net_profit_usd:.2f}</b>",
        f"<b>Route</b>\n{route}",
    ]
    if remaining_seconds is not None:
        lines.append(f"Time left: <code>{remaining_seconds:.1f}s</code>")
    return "\n".join(lines)


def format_verdict_html(verdict: RiskVerdict) -> str:
    icon = {"LOW": "🟢", "MEDIUM": "🟡", "HIGH": "🔴"}.get(verdict.risk_level.value, "⚪")
    return (
        f"{icon} <b>AI Risk: {verdict.risk_level.value}</b> ({verdict.score}/100)\n"
        f"<i>{html.escape(verdict.reason)}</i>"
    )


def format_trade_html(record: TradeRecord) -> str:
    opp = record.opportunity
    source = "Auto" if record.resolution.value == "AUTO_EXECUTED" else "Manual"
    return (
        f"<b>✅ Executed ({source})</b> {html.escape(opp.symbol)}\n"
        f"Profit: <b>${record.realized_profit_usd:.2f}</b> | Cost: ${record.realized_cost_usd:.2f}\n"
        f"Tx: <code>{record.tx_reference}</code>"
    )


class TelegramNotifier:
    """Event sink that posts decision-relevant events to one Telegram chat."""

    NOTIFIED_KINDS = {
        EventKind.OPPORTUNITY_FOUND,
        EventKind.RISK_VERDICT,
        EventKind.DECISION_EXPIRED,
        EventKind.DECISION_CANCELLED,
        EventKind.DECISION_RESOLVED,
    }

    def __init__(self, bot: Bot, chat_id: str):
        self.bot = bot
        self.chat_id = chat_id

    async def __call__(self, event: Event) -> None:
        if event.kind not in self.NOTIFIED_KINDS:
            return
        message = self.render(event)
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=message,
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
            )
        except TelegramError as e:
            print(f"{C_RED}Error sending Telegram message: {e}{C_RESET}")

    def render(self, event: Event) -> str:
        data = event.data
        if event.kind is EventKind.OPPORTUNITY_FOUND and isinstance(data, Opportunity):
            footer = "\n\nReply /execute to trade now or /cancel to skip."
            return f"<b>Opportunity detected</b>\n{format_opportunity_html(data)}{footer}"
        if event.kind is EventKind.RISK_VERDICT and isinstance(data, RiskVerdict):
            return format_verdict_html(data)
        if event.kind is EventKind.DECISION_RESOLVED and isinstance(data, TradeRecord):
            return format_trade_html(data)
        if event.kind is EventKind.DECISION_EXPIRED and isinstance(data, Opportunity):
            return (
                f"⌛ Decision window closed for <b>{html.escape(data.symbol)}</b> <code>{data.id}</code>.\n"
                f"Still pending: /execute or /cancel."
            )
        return html.escape(event.message)
