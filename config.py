#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple, Optional, Sequence
import constants

FALSY_ENV_VALUES = {"0", "false", "no", "off"}


class AppConfig(NamedTuple):
    """Typed configuration object."""
    chain: str
    tokens: list[str]
    token_addresses: list[str]
    venues: list[str]
    auto_approve: bool
    min_profit: float
    max_gas_gwei: float
    interval: float
    countdown_seconds: float
    tick_seconds: float
    history_capacity: int
    loan_amount: float
    min_liquidity: float
    gas_cost_usd: float
    poll_timeout: float
    risk_timeout: float
    spread_source: str
    gas_source: str
    seed: Optional[int]
    virtual_balance: float
    native_price_usd: float
    telegram_enabled: bool
    telegram_bot_token: str | None
    telegram_chat_id: str | None
    gemini_api_key: str | None
    ai_analysis_enabled: bool
    show_history: bool
    history_limit: int
    db_path: str


def _env_flag(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() not in FALSY_ENV_VALUES


def resolve_token_addresses(chain: str, tokens: Sequence[str]) -> tuple[list[str], list[str]]:
    """Maps symbols or raw 0x addresses onto lowercase addresses. Returns (addresses, unknown)."""
    known = constants.COMMON_TOKEN_ADDRESSES.get(chain, {})
    addresses: list[str] = []
    unknown: list[str] = []
    for token in tokens:
        lowered = token.lower()
        if lowered.startswith('0x') and len(lowered) == 42:
            address = lowered
        elif lowered in known:
            address = known[lowered]
        else:
            unknown.append(token)
            continue
        if address not in addresses:
            addresses.append(address)
    return addresses, unknown


def load_config(argv: Optional[Sequence[str]] = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Monitor DexScreener pairs for flash-loan arbitrage and simulate execution behind a countdown.",
        epilog="Example: ./main.py --chain metis --token METIS WETH --auto-approve --min-profit 1.00"
    )
    # --- Market ---
    parser.add_argument('--chain', choices=constants.CHAIN_CONFIG.keys(), default='metis', help='Blockchain to monitor (default: metis).')
    parser.add_argument('--token', nargs='+', help='Token symbols or addresses to watch (default: every known token of the chain).')
    parser.add_argument('--venue', nargs='+', help='Restrict samples to these DexScreener dexIds (default: all).')
    parser.add_argument('--interval', type=float, default=constants.DEFAULT_POLL_INTERVAL_SECONDS, help=f'Seconds between market polls (default: {constants.DEFAULT_POLL_INTERVAL_SECONDS}).')
    parser.add_argument('--poll-timeout', type=float, default=constants.DEFAULT_POLL_TIMEOUT_SECONDS, help=f'Timeout in seconds for a market poll (default: {constants.DEFAULT_POLL_TIMEOUT_SECONDS}).')
    parser.add_argument('--spread-source', choices=['cross-venue', 'simulated'], default='cross-venue', help='Where the observed spread comes from (default: cross-venue).')
    parser.add_argument('--gas-source', choices=['explorer', 'simulated'], default='explorer', help='Gas price source (default: explorer).')
    parser.add_argument('--seed', type=int, help='Seed for the simulated spread and gas sources.')

    # --- Profitability ---
    parser.add_argument('--loan-amount', type=float, default=constants.DEFAULT_LOAN_AMOUNT_USD, help=f'Flash loan size in USD (default: {constants.DEFAULT_LOAN_AMOUNT_USD:.0f}).')
    parser.add_argument('--min-liquidity', type=float, default=constants.DEFAULT_MIN_LIQUIDITY_USD, help=f'Pool depth in USD a pair must exceed (default: {constants.DEFAULT_MIN_LIQUIDITY_USD:.0f}).')
    parser.add_argument('--max-gas', type=float, default=constants.DEFAULT_MAX_GAS_GWEI, help=f'Skip ticks above this gas price in gwei (default: {constants.DEFAULT_MAX_GAS_GWEI:.0f}).')
    parser.add_argument('--gas-cost', type=float, default=constants.DEFAULT_GAS_COST_USD, help=f'Estimated execution gas in USD (default: {constants.DEFAULT_GAS_COST_USD}).')
    parser.add_argument('--min-profit', type=float, default=0.0, help='Net profit in USD an opportunity must exceed (default: 0.0).')

    # --- Decision window ---
    parser.add_argument('--auto-approve', action='store_true', help='Execute automatically when the countdown elapses.')
    parser.add_argument('--countdown', type=float, default=constants.DEFAULT_COUNTDOWN_SECONDS, help=f'Decision window in seconds (default: {constants.DEFAULT_COUNTDOWN_SECONDS}).')
    parser.add_argument('--tick', type=float, default=constants.DEFAULT_TICK_SECONDS, help=f'Countdown tick in seconds (default: {constants.DEFAULT_TICK_SECONDS}).')
    parser.add_argument('--risk-timeout', type=float, default=constants.DEFAULT_RISK_TIMEOUT_SECONDS, help=f'Timeout in seconds for the AI risk verdict (default: {constants.DEFAULT_RISK_TIMEOUT_SECONDS}).')
    parser.add_argument('--disable-ai-analysis', action='store_true', help='Disable the AI risk verdict for opportunities.')

    # --- Ledger ---
    parser.add_argument('--history-capacity', type=int, default=constants.DEFAULT_HISTORY_CAPACITY, help=f'Trades kept in memory (default: {constants.DEFAULT_HISTORY_CAPACITY}).')
    parser.add_argument('--virtual-balance', type=float, default=constants.DEFAULT_VIRTUAL_BALANCE, help=f'Starting paper balance in native tokens (default: {constants.DEFAULT_VIRTUAL_BALANCE:.0f}).')
    parser.add_argument('--native-price', type=float, default=constants.DEFAULT_NATIVE_TOKEN_PRICE_USD, help=f'USD price used to credit the paper balance (default: {constants.DEFAULT_NATIVE_TOKEN_PRICE_USD:.0f}).')
    parser.add_argument('--db-path', type=str, default='data/flash_arb_history.db', help='SQLite database for ticks and trades.')
    parser.add_argument('--show-history', action='store_true', help='Display recently stored trades and exit.')
    parser.add_argument('--history-limit', type=int, default=10, help='Number of stored trades to display (default: 10).')

    # --- Notifications ---
    parser.add_argument('--telegram-enabled', action='store_true', help='Enable Telegram notifications and commands.')

    args = parser.parse_args(argv)

    if args.interval <= 0:
        parser.error('--interval must be positive.')
    if args.poll_timeout <= 0 or args.risk_timeout <= 0:
        parser.error('--poll-timeout and --risk-timeout must be positive.')
    if args.countdown <= 0 or args.tick <= 0:
        parser.error('--countdown and --tick must be positive.')
    if args.tick > args.countdown:
        parser.error('--tick cannot be longer than --countdown.')
    if args.history_capacity < 1 or args.history_limit < 1:
        parser.error('--history-capacity and --history-limit must be at least 1.')
    if args.loan_amount <= 0:
        parser.error('--loan-amount must be positive.')
    if args.min_liquidity < 0 or args.gas_cost < 0:
        parser.error('--min-liquidity and --gas-cost cannot be negative.')
    if args.max_gas <= 0:
        parser.error('--max-gas must be positive.')
    if args.native_price <= 0 or args.virtual_balance < 0:
        parser.error('--native-price must be positive and --virtual-balance non-negative.')

    chain_tokens = list(constants.COMMON_TOKEN_ADDRESSES.get(args.chain, {}).keys())
    tokens = args.token or [symbol.upper() for symbol in chain_tokens]
    token_addresses, unknown = resolve_token_addresses(args.chain, tokens)
    if unknown:
        parser.error(f"Unknown token(s) on {args.chain}: {', '.join(unknown)}. Pass a 0x address instead.")
    if len(token_addresses) > constants.DEXSCREENER_MAX_TOKENS_PER_QUERY:
        parser.error(f'At most {constants.DEXSCREENER_MAX_TOKENS_PER_QUERY} tokens can be watched at once.')

    # Load from environment
    telegram_bot_token = os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR)
    telegram_chat_id = os.environ.get(constants.TELEGRAM_CHAT_ID_ENV_VAR)
    gemini_api_key = os.environ.get(constants.GEMINI_API_KEY_ENV_VAR)

    ai_analysis_enabled = not args.disable_ai_analysis
    ai_analysis_env = _env_flag(os.environ.get(constants.AI_ANALYSIS_ENABLED_ENV_VAR))
    if ai_analysis_env is not None:
        ai_analysis_enabled = ai_analysis_env

    auto_approve = args.auto_approve or bool(_env_flag(os.environ.get(constants.AUTO_APPROVE_ENV_VAR)))

    if args.telegram_enabled and not args.show_history and not (telegram_bot_token and telegram_chat_id):
        print(f"{constants.C_RED}Telegram is enabled, but {constants.TELEGRAM_BOT_TOKEN_ENV_VAR} or {constants.TELEGRAM_CHAT_ID_ENV_VAR} are not set.{constants.C_RESET}")
        exit(1)

    return AppConfig(
        chain=args.chain,
        tokens=[token.upper() if not token.lower().startswith('0x') else token.lower() for token in tokens],
        token_addresses=token_addresses,
        venues=[venue.lower() for venue in args.venue] if args.venue else [],
        auto_approve=auto_approve,
        min_profit=args.min_profit,
        max_gas_gwei=args.max_gas,
        interval=args.interval,
        countdown_seconds=args.countdown,
        tick_seconds=args.tick,
        history_capacity=args.history_capacity,
        loan_amount=args.loan_amount,
        min_liquidity=args.min_liquidity,
        gas_cost_usd=args.gas_cost,
        poll_timeout=args.poll_timeout,
        risk_timeout=args.risk_timeout,
        spread_source=args.spread_source,
        gas_source=args.gas_source,
        seed=args.seed,
        virtual_balance=args.virtual_balance,
        native_price_usd=args.native_price,
        telegram_enabled=args.telegram_enabled,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_id=telegram_chat_id,
        gemini_api_key=gemini_api_key,
        ai_analysis_enabled=ai_analysis_enabled,
        show_history=args.show_history,
        history_limit=args.history_limit,
        db_path=args.db_path,
    )
