# bot/handlers.py
import time

from telegram import Update
from telegram.ext import ContextTypes

from bot.notifier import format_opportunity_html, format_trade_html, format_verdict_html
from decision import DecisionState, PendingOpportunityMachine
from ledger import ExecutionLedger

# --- Command Handlers ---

async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    help_text = """
    <b>Welcome to the Flash-Arb Monitor!</b>

    This bot watches DexScreener pairs for flash-loan arbitrage and simulates execution behind a short countdown.

    <b><u>Available Commands:</u></b>
    /status - Get bot status and last scan info
    /pending - Show the opportunity awaiting a decision
    /execute [id] - Execute the pending opportunity now
    /cancel [id] - Skip the pending opportunity
    /auto [on|off] - Show or toggle auto-approve
    /history - Show recent simulated trades
    /help - Show this help message
    """
    await update.message.reply_html(help_text)

async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Checks and reports the bot's operational status and scanner state."""
    bot_data = context.application.bot_data
    scanner_task = bot_data.get('scanner_task')
    start_time = bot_data.get('start_time', 0)
    machine: PendingOpportunityMachine | None = bot_data.get('machine')
    ledger: ExecutionLedger | None = bot_data.get('ledger')

    # Calculate uptime
    uptime_seconds = time.time() - start_time
    uptime_str = time.strftime('%H:%M:%S', time.gmtime(uptime_seconds))

    # Determine scanner status
    if scanner_task and not scanner_task.done():
        scanner_status = "✅ Running"
    elif scanner_task and scanner_task.done():
        if not scanner_task.cancelled() and scanner_task.exception():
            scanner_status = "❌ Stopped with error"
        else:
            scanner_status = "⏹️ Stopped"
    else:
        scanner_status = "⚠️ Not running"

    status_text = (
        f"<b>🤖 Bot Status</b>\n"
        f"Uptime: <code>{uptime_str}</code>\n\n"
        f"<b>🔍 Scanner</b>\n"
        f"Status: {scanner_status}\n"
        f"Last Scan: <code>{bot_data.get('last_scan_time', 'Never')}</code>\n"
        f"Pairs Last Scan: <code>{bot_data.get('samples_last_scan', 'N/A')}</code>\n"
    )
    gas = bot_data.get('last_gas_gwei')
    if gas is not None:
        status_text += f"Gas: <code>{gas:.1f} gwei</code>\n"
    last_error = bot_data.get('last_error')
    if last_error:
        status_text += f"Last Error: <pre>{last_error}</pre>\n"

    if machine:
        status_text += (
            f"\n<b>⏱ Decisions</b>\n"
            f"Auto-approve: <code>{'ON' if machine.auto_approve else 'OFF'}</code>\n"
            f"Slot: <code>{machine.state.value}</code>\n"
        )
    if ledger:
        totals = ledger.totals
        status_text += (
            f"\n<b>📒 Ledger</b>\n"
            f"Trades: <code>{totals.trade_count}</code>\n"
            f"Total Profit: <code>${totals.cumulative_profit_usd:.2f}</code>\n"
            f"Total Cost: <code>${totals.cumulative_cost_usd:.2f}</code>\n"
        )
        if ledger.wallet:
            status_text += f"Balance: <code>{ledger.wallet.balance:.4f} {ledger.wallet.symbol}</code>\n"

    await update.message.reply_html(status_text)

async def pending_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows the opportunity currently holding the decision slot."""
    machine: PendingOpportunityMachine = context.application.bot_data['machine']
    decision = machine.pending
    if decision is None:
        await update.message.reply_text("No opportunity is pending.")
        return

    message = format_opportunity_html(decision.opportunity, decision.remaining_seconds)
    if machine.state is DecisionState.EXPIRED:
        message += "\n<b>Window closed</b> - waiting for /execute or /cancel."
    elif decision.auto_executable:
        message += "\nAuto-approve is armed for this decision."
    if decision.risk_verdict:
        message += "\n\n" + format_verdict_html(decision.risk_verdict)
    await update.message.reply_html(message)

async def execute_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Executes the pending opportunity, optionally addressed by id."""
    machine: PendingOpportunityMachine = context.application.bot_data['machine']
    opportunity_id = context.args[0] if context.args else None
    record = machine.execute(opportunity_id)
    if record is None:
        await update.message.reply_text(_nothing_to_do(machine, opportunity_id))
        return
    await update.message.reply_html(format_trade_html(record))

async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Cancels the pending opportunity, optionally addressed by id."""
    machine: PendingOpportunityMachine = context.application.bot_data['machine']
    opportunity_id = context.args[0] if context.args else None
    pending = machine.pending
    if not machine.cancel(opportunity_id):
        await update.message.reply_text(_nothing_to_do(machine, opportunity_id))
        return
    await update.message.reply_text(f"Cancelled {pending.opportunity.symbol} ({pending.opportunity.id}).")

async def auto_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows or toggles auto-approve. Applies to the next admitted opportunity."""
    machine: PendingOpportunityMachine = context.application.bot_data['machine']
    if context.args:
        choice = context.args[0].lower()
        if choice not in ('on', 'off'):
            await update.message.reply_text("Usage: /auto [on|off]")
            return
        machine.auto_approve = choice == 'on'
    state = 'ON' if machine.auto_approve else 'OFF'
    await update.message.reply_html(f"Auto-approve is <b>{state}</b>.")

async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the most recent simulated trades, newest first."""
    ledger: ExecutionLedger = context.application.bot_data['ledger']
    history = ledger.history
    if not history:
        await update.message.reply_text("No trades executed yet.")
        return

    lines = ["<b>📜 Recent Trades</b>\n"]
    for idx, record in enumerate(history, start=1):
        opp = record.opportunity
        when = record.resolved_at.astimezone().strftime('%H:%M:%S')
        lines.append(
            f"{idx}. <code>{when}</code> {opp.symbol} +${record.realized_profit_usd:.2f} "
            f"({record.resolution.value.split('_')[0].lower()})"
        )
    totals = ledger.totals
    lines.append(f"\nTotal: <b>${totals.cumulative_profit_usd:.2f}</b> over {totals.trade_count} trades")
    await update.message.reply_html("\n".join(lines))


def _nothing_to_do(machine: PendingOpportunityMachine, opportunity_id: str | None) -> str:
    if machine.pending is None:
        return "No opportunity is pending."
    return f"Opportunity {opportunity_id} is not the pending one ({machine.pending.opportunity.id})."
