#!/usr/bin/env python3
from typing import Dict, Union

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_CYAN = '\033[96m'
C_RESET = '\033[0m'

# --- API Configuration ---
DEXSCREENER_API_BASE_URL = 'https://api.dexscreener.com/latest/dex'
GEMINI_API_URL = 'https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent'

# --- Environment Variable Names ---
GEMINI_API_KEY_ENV_VAR = 'GEMINI_API_KEY'
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
TELEGRAM_CHAT_ID_ENV_VAR = 'TELEGRAM_CHAT_ID'
AI_ANALYSIS_ENABLED_ENV_VAR = 'AI_ANALYSIS_ENABLED'
AUTO_APPROVE_ENV_VAR = 'AUTO_APPROVE'

# --- Chain Configuration ---
CHAIN_CONFIG: Dict[str, Dict[str, Union[str, int]]] = {
    'metis': {
        'chainId': 1088,
        'dexscreenerName': 'metis',
        'explorerUrl': 'https://andromeda-explorer.metis.io',
        'nativeSymbol': 'METIS',
        'aaveV3Pool': '0x90df02551bB792286e8D4f13E0e357b4Bf1D6a57',
    },
    'ethereum': {
        'chainId': 1,
        'dexscreenerName': 'ethereum',
        'explorerUrl': 'https://eth.blockscout.com',
        'nativeSymbol': 'ETH',
        'aaveV3Pool': '0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2',
    },
    'arbitrum': {
        'chainId': 42161,
        'dexscreenerName': 'arbitrum',
        'explorerUrl': 'https://arbitrum.blockscout.com',
        'nativeSymbol': 'ETH',
        'aaveV3Pool': '0x794a61358D6845594F94dc1DB02A252b5b4814aD',
    },
}

# --- Common Token Addresses (Lowercase for case-insensitive matching) ---
COMMON_TOKEN_ADDRESSES: Dict[str, Dict[str, str]] = {
    'metis': {
        'metis': '0xdeaddeaddeaddeaddeaddeaddeaddeaddead0000',
        'usdc': '0xea32a96608495e54156ae48931a7c20f0dcc1a21',
        'usdt': '0xbb06dca3ae6887fabf931640f67cab3e3a16f4dc',
        'weth': '0x75cb093e4d615a77ee47dcfcc8d6256173a55782',
    },
    'ethereum': {
        'usdc': '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48',
        'usdt': '0xdac17f958d2ee523a2206206994597c13d831ec7',
        'weth': '0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2',
    },
    'arbitrum': {
        'usdc': '0xaf88d065e77c8cc2239327c5edb3a432268e5831',
        'usdt': '0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9',
        'weth': '0x82af49447d8a07e3bd95bd0d56f35241523fbab1',
    },
}

# DexScreener accepts at most 30 addresses per tokens query.
DEXSCREENER_MAX_TOKENS_PER_QUERY = 30

# --- Flash Loan Model ---
FLASH_FEE_BPS = 9  # Aave V3 flash loan premium, 0.09%
FLASH_LOAN_PROVIDER = 'Aave V3'
FLASH_LOAN_ASSET = 'USDC'
MIN_SLIPPAGE_TOLERANCE_PCT = 0.1
SLIPPAGE_SAFETY_MULTIPLIER = 2

# --- Reference Defaults ---
DEFAULT_LOAN_AMOUNT_USD = 5000.0
DEFAULT_MIN_LIQUIDITY_USD = 10000.0
DEFAULT_MAX_GAS_GWEI = 50.0
DEFAULT_GAS_COST_USD = 0.50
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_COUNTDOWN_SECONDS = 3.0
DEFAULT_TICK_SECONDS = 0.1
DEFAULT_HISTORY_CAPACITY = 10
DEFAULT_POLL_TIMEOUT_SECONDS = 10.0
DEFAULT_RISK_TIMEOUT_SECONDS = 8.0
DEFAULT_VIRTUAL_BALANCE = 100.0
DEFAULT_NATIVE_TOKEN_PRICE_USD = 50.0

# --- Simulated Sources ---
SIMULATED_SPREAD_TRIGGER_PROBABILITY = 0.15
SIMULATED_SPREAD_MIN_BPS = 15
SIMULATED_SPREAD_MAX_BPS = 165
SIMULATED_SELL_VENUE = 'aggregator'
SIMULATED_GAS_MIN_GWEI = 20.0
SIMULATED_GAS_MAX_GWEI = 60.0
