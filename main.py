#!/usr/bin/env python3
import asyncio
import logging
import random
import sys
import time
from typing import Callable, MutableMapping, NamedTuple, Optional, Any

import aiohttp
from telegram import BotCommand
from telegram.ext import Application, CommandHandler
from telegram.error import TimedOut, TelegramError

import constants
from analysis.detector import OpportunityDetector, fixed_loan_size
from analysis.spread import CrossVenueSpreadSource, RandomSpreadSource
from bot.handlers import (
    auto_command,
    cancel_command,
    execute_command,
    help_command,
    history_command,
    pending_command,
    status_command,
)
from bot.notifier import TelegramNotifier
from config import AppConfig, load_config
from decision import PendingOpportunityMachine
from events import ConsoleSink, EventBus
from ledger import ExecutionLedger, VirtualWallet
from scanner import ArbitrageScanner
from services.blockscout_client import BlockscoutClient, SimulatedGasOracle
from services.dexscreener_client import DexScreenerClient
from services.gemini_client import GeminiClient
from services.market_sampler import MarketSampler
from storage import SQLiteRepository
from storage.models import TradeRow, TradeSummary

USER_AGENT = 'FlashArbMonitor/1.0'


class Components(NamedTuple):
    bus: EventBus
    ledger: ExecutionLedger
    machine: PendingOpportunityMachine
    scanner: ArbitrageScanner
    gemini_client: Optional[GeminiClient]


def build_components(
    config: AppConfig,
    session: aiohttp.ClientSession,
    repository: Optional[SQLiteRepository] = None,
    status: Optional[MutableMapping[str, Any]] = None,
) -> Components:
    """Wires clients, model, decision machine and scanner for one chain."""
    chain_info = constants.CHAIN_CONFIG[config.chain]
    rng = random.Random(config.seed)

    if config.spread_source == 'simulated':
        spread_source = RandomSpreadSource(rng=rng)
    else:
        spread_source = CrossVenueSpreadSource()

    if config.gas_source == 'simulated':
        gas_oracle = SimulatedGasOracle(rng=rng)
    else:
        gas_oracle = BlockscoutClient(session, str(chain_info['explorerUrl']), timeout=config.poll_timeout)

    gemini_client = None
    if config.ai_analysis_enabled and config.gemini_api_key:
        gemini_client = GeminiClient(session, config.gemini_api_key, timeout=config.risk_timeout)
    elif config.ai_analysis_enabled:
        print(f"{constants.C_YELLOW}{constants.GEMINI_API_KEY_ENV_VAR} not set; AI risk analysis disabled.{constants.C_RESET}")

    bus = EventBus()
    wallet = VirtualWallet(
        balance=config.virtual_balance,
        token_price_usd=config.native_price_usd,
        symbol=str(chain_info['nativeSymbol']),
    )
    ledger = ExecutionLedger(capacity=config.history_capacity, wallet=wallet)
    machine = PendingOpportunityMachine(
        ledger,
        bus,
        countdown_seconds=config.countdown_seconds,
        tick_seconds=config.tick_seconds,
        auto_approve=config.auto_approve,
        risk_scorer=gemini_client,
        risk_timeout_seconds=config.risk_timeout,
    )
    detector = OpportunityDetector(
        spread_source,
        loan_sizer=fixed_loan_size(config.loan_amount),
        min_liquidity_usd=config.min_liquidity,
        max_gas_gwei=config.max_gas_gwei,
        gas_cost_usd=config.gas_cost_usd,
        min_profit_usd=config.min_profit,
    )
    sampler = MarketSampler(
        DexScreenerClient(session, timeout=config.poll_timeout),
        str(chain_info['dexscreenerName']),
        config.token_addresses,
        venues=config.venues or None,
    )
    scanner = ArbitrageScanner(
        config,
        sampler,
        detector,
        machine,
        bus,
        gas_oracle,
        repository=repository,
        status=status,
    )
    return Components(bus=bus, ledger=ledger, machine=machine, scanner=scanner, gemini_client=gemini_client)


# --- Telegram mode ---

async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients and tasks."""
    # Create and store a single, shared aiohttp session
    session = aiohttp.ClientSession(headers={'User-Agent': USER_AGENT})
    application.bot_data['http_session'] = session

    config: AppConfig = application.bot_data['config']
    components = build_components(
        config,
        session,
        repository=application.bot_data.get('repository'),
        status=application.bot_data,
    )
    components.bus.subscribe(ConsoleSink())
    components.bus.subscribe(TelegramNotifier(application.bot, config.telegram_chat_id))
    application.bot_data['bus'] = components.bus
    application.bot_data['machine'] = components.machine
    application.bot_data['ledger'] = components.ledger

    # Set bot commands
    commands = [
        BotCommand("status", "Check bot status"),
        BotCommand("pending", "Show the pending opportunity"),
        BotCommand("execute", "Execute the pending opportunity"),
        BotCommand("cancel", "Skip the pending opportunity"),
        BotCommand("auto", "Show or toggle auto-approve"),
        BotCommand("history", "Show recent trades"),
        BotCommand("help", "Show help message"),
    ]
    try:
        await application.bot.set_my_commands(commands)
    except (TimedOut, TelegramError) as exc:
        print(
            f"{constants.C_YELLOW}Warning: unable to set Telegram bot commands ({exc})."
            f" Continuing startup without updating commands.{constants.C_RESET}"
        )

    _print_banner(config, components.ledger)
    scanner_task = asyncio.create_task(components.scanner.start())
    application.bot_data['scanner_task'] = scanner_task

async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    scanner_task = application.bot_data.get('scanner_task')
    if scanner_task and not scanner_task.done():
        scanner_task.cancel()
        await asyncio.gather(scanner_task, return_exceptions=True)
    machine = application.bot_data.get('machine')
    if machine:
        await machine.close()
    bus = application.bot_data.get('bus')
    if bus:
        await bus.drain()
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    repository = application.bot_data.get('repository')
    if repository:
        await repository.close()


# --- CLI mode ---

def handle_console_command(line: str, machine: PendingOpportunityMachine, ledger: ExecutionLedger) -> str:
    """Applies one console command and returns the reply to print."""
    parts = line.strip().split()
    if not parts:
        return ""
    command, args = parts[0].lower(), parts[1:]
    opportunity_id = args[0] if args else None

    if command in ('execute', 'x'):
        record = machine.execute(opportunity_id)
        if record is None:
            return "Nothing to execute."
        return f"Executed {record.opportunity.symbol} | Profit: ${record.realized_profit_usd:.2f} | Tx: {record.tx_reference}"
    if command in ('cancel', 'c'):
        return "Cancelled." if machine.cancel(opportunity_id) else "Nothing to cancel."
    if command == 'auto':
        if args:
            if args[0].lower() not in ('on', 'off'):
                return "Usage: auto [on|off]"
            machine.auto_approve = args[0].lower() == 'on'
        return f"Auto-approve is {'ON' if machine.auto_approve else 'OFF'}."
    if command == 'status':
        totals = ledger.totals
        pending = machine.pending
        slot = machine.state.value
        if pending is not None:
            slot += f" {pending.opportunity.symbol} ({pending.opportunity.id}) {pending.remaining_seconds:.1f}s"
        status = (
            f"Slot: {slot} | Auto-approve: {'ON' if machine.auto_approve else 'OFF'} | "
            f"Trades: {totals.trade_count} | Profit: ${totals.cumulative_profit_usd:.2f}"
        )
        if ledger.wallet:
            status += f" | Balance: {ledger.wallet.balance:.4f} {ledger.wallet.symbol}"
        return status
    return "Commands: execute [id] | cancel [id] | auto [on|off] | status"


def _attach_console_reader(loop: asyncio.AbstractEventLoop, on_line: Callable[[str], None]) -> bool:
    def _on_readable() -> None:
        line = sys.stdin.readline()
        if not line:
            loop.remove_reader(sys.stdin.fileno())
            return
        on_line(line)

    try:
        loop.add_reader(sys.stdin.fileno(), _on_readable)
    except (NotImplementedError, ValueError, OSError) as exc:
        print(f"{constants.C_YELLOW}Console commands unavailable ({exc}).{constants.C_RESET}")
        return False
    return True


async def run_cli(config: AppConfig, repository: SQLiteRepository) -> None:
    async with aiohttp.ClientSession(headers={'User-Agent': USER_AGENT}) as session:
        components = build_components(config, session, repository=repository)
        components.bus.subscribe(ConsoleSink())
        _print_banner(config, components.ledger)

        def _on_line(line: str) -> None:
            reply = handle_console_command(line, components.machine, components.ledger)
            if reply:
                print(reply)

        loop = asyncio.get_running_loop()
        reading = _attach_console_reader(loop, _on_line)
        try:
            await components.scanner.start()
        finally:
            if reading:
                loop.remove_reader(sys.stdin.fileno())
            await components.machine.close()
            await components.bus.drain()
            await repository.close()


def _print_banner(config: AppConfig, ledger: ExecutionLedger) -> None:
    print("=" * 50)
    print(f"Monitoring {constants.C_BLUE}{config.chain.capitalize()}{constants.C_RESET} | Tokens: {', '.join(config.tokens)}")
    print(
        f"Auto-approve: {'ON' if config.auto_approve else 'OFF'} | Countdown: {config.countdown_seconds:.1f}s"
        f" | Loan: ${config.loan_amount:,.0f} | Max gas: {config.max_gas_gwei:.0f} gwei"
    )
    if ledger.wallet:
        print(f"Virtual balance: {ledger.wallet.balance:.2f} {ledger.wallet.symbol}")
    print("=" * 50)


def main() -> None:
    """The main synchronous entry point for the application."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_config()

    repository = SQLiteRepository(config.db_path)

    if config.show_history:
        async def _load() -> tuple[list[TradeRow], TradeSummary]:
            try:
                return await repository.fetch_recent_trades(config.history_limit), await repository.fetch_trade_summary()
            finally:
                await repository.close()

        records, summary = asyncio.run(_load())
        _print_trade_history(records, summary, config.history_limit)
        return

    if not config.telegram_enabled:
        print("Telegram is not configured. The application will run in CLI-only mode.")
        try:
            asyncio.run(run_cli(config, repository))
        except KeyboardInterrupt:
            print("\nStopped.")
        return

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    # Store config and other shared data
    application.bot_data['config'] = config
    application.bot_data['start_time'] = time.time()
    application.bot_data['repository'] = repository

    # Register command handlers
    application.add_handler(CommandHandler("start", help_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("pending", pending_command))
    application.add_handler(CommandHandler("execute", execute_command))
    application.add_handler(CommandHandler("cancel", cancel_command))
    application.add_handler(CommandHandler("auto", auto_command))
    application.add_handler(CommandHandler("history", history_command))

    application.run_polling()


def _print_trade_history(records: list[TradeRow], summary: TradeSummary, limit: int) -> None:
    heading = f"Showing up to {limit} simulated trades"
    print(heading)
    print("=" * len(heading))

    if not records:
        print("No trades recorded.")
        return

    headers = [
        "Time (UTC)",
        "Pair",
        "Route",
        "Mode",
        "Spread %",
        "Net $",
        "Cost $",
        "Risk",
        "Tx",
    ]

    def _format_risk(record: TradeRow) -> str:
        if record.risk_level is None:
            return "-"
        if record.risk_score is None:
            return record.risk_level
        return f"{record.risk_level} {record.risk_score}"

    def _format_row(record: TradeRow) -> list[str]:
        return [
            record.resolved_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.pair,
            f"{record.buy_venue}->{record.sell_venue}",
            "Auto" if record.resolution == "AUTO_EXECUTED" else "Manual",
            f"{record.spread_bps / 100:.2f}",
            f"{record.net_profit_usd:.2f}",
            f"{record.realized_cost_usd:.2f}",
            _format_risk(record),
            record.tx_reference,
        ]

    rows = [_format_row(rec) for rec in records]
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: list[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    print(_format_line(headers))
    print("  ".join('-' * w for w in widths))
    for row in rows:
        print(_format_line(row))

    print("-" * len(heading))
    print(
        f"Total: {summary.trade_count} trades ({summary.auto_executed} auto, {summary.user_executed} manual)"
        f" | Profit: ${summary.total_profit_usd:.2f} | Cost: ${summary.total_cost_usd:.2f}"
    )


if __name__ == "__main__":
    main()
