#!/usr/bin/env python3
import random
from typing import Optional, Protocol

import aiohttp
from constants import C_RED, C_RESET, SIMULATED_GAS_MAX_GWEI, SIMULATED_GAS_MIN_GWEI
from errors import TransientNetworkError
from services.dexscreener_client import api_get


def log_error(message: str) -> None:
    """Centralized error logging."""
    print(f"{C_RED}{message}{C_RESET}")


class GasOracle(Protocol):
    async def get_gas_price_in_gwei(self) -> Optional[float]:
        ...


class BlockscoutClient:
    def __init__(self, session: aiohttp.ClientSession, explorer_url: str, timeout: float = 5.0):
        self.session = session
        self.base_api_url = explorer_url.rstrip('/')
        self.timeout = timeout

    async def get_gas_price_in_gwei(self) -> Optional[float]:
        """
        Gets the explorer's 'average' gas price in Gwei.
        Returns None when the oracle is unreachable or the payload cannot be parsed.
        """
        url = f"{self.base_api_url}/api/v1/gas-price-oracle"
        try:
            data = await api_get(url, self.session, timeout=self.timeout)
        except TransientNetworkError as e:
            log_error(f"Gas oracle unavailable: {e}")
            return None

        average = data.get('average') if isinstance(data, dict) else None
        # Newer Blockscout releases nest the price: {"average": {"price": 1.2, ...}}
        if isinstance(average, dict):
            average = average.get('price')
        try:
            return float(average)
        except (ValueError, TypeError):
            log_error(f"Could not parse gas price from Blockscout: {data if data else 'No data'}")
            return None


class SimulatedGasOracle:
    """Uniform gas price fluctuation for demonstration runs."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        low: float = SIMULATED_GAS_MIN_GWEI,
        high: float = SIMULATED_GAS_MAX_GWEI,
    ):
        self.rng = rng or random.Random()
        self.low = low
        self.high = high

    async def get_gas_price_in_gwei(self) -> Optional[float]:
        return self.rng.uniform(self.low, self.high)
