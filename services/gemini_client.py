# services/gemini_client.py
import aiohttp
import time
import asyncio
import json
from typing import Optional, Dict, Any

from analysis.models import Opportunity, RiskLevel, RiskVerdict
from constants import C_YELLOW, C_RESET, GEMINI_API_URL


async def api_post(url: str, session: aiohttp.ClientSession, json_data: Dict, headers: Optional[Dict] = None, timeout: float = 30.0) -> Optional[Dict]:
    """Makes a generic async POST request."""
    try:
        async with session.post(url, json=json_data, headers=headers, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            return await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        print(f"{C_YELLOW}API POST request failed: {e!r}{C_RESET}")
        return None


RISK_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "riskLevel": {"type": "STRING", "enum": [level.value for level in RiskLevel]},
        "score": {"type": "INTEGER", "description": "0 to 100 safety score"},
        "reason": {"type": "STRING"},
    },
    "required": ["riskLevel", "score", "reason"],
}


class GeminiClient:
    def __init__(self, session: aiohttp.ClientSession, api_key: str, timeout: float = 30.0):
        self.session = session
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = GEMINI_API_URL
        self.headers = {'Content-Type': 'application/json', 'x-goog-api-key': self.api_key}
        self._last_request_time = 0.0
        self._rate_limit_delay = 4  # free tier allows ~15 requests per minute

    async def _wait_for_rate_limit(self):
        """Ensures requests respect the rate limit by pausing if necessary."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    async def score_opportunity(self, opportunity: Opportunity) -> Optional[RiskVerdict]:
        """Asks Gemini for an execution risk verdict. Returns None when no usable verdict comes back."""
        if not self.api_key:
            print(f"{C_YELLOW}Gemini API key not configured; no risk verdict.{C_RESET}")
            return None

        await self._wait_for_rate_limit()

        request_body = {
            "contents": [{"parts": [{"text": self._build_prompt(opportunity)}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RISK_RESPONSE_SCHEMA,
            },
        }

        response_json = await api_post(self.base_url, self.session, json_data=request_body, headers=self.headers, timeout=self.timeout)
        if response_json is None:
            return None

        try:
            candidate = response_json['candidates'][0]['content']['parts'][0]['text'].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            print(f"{C_YELLOW}Error parsing Gemini response: {e}{C_RESET}")
            return None

        verdict = self._parse_candidate(candidate)
        if verdict is None:
            print(f"{C_YELLOW}Gemini returned an invalid risk verdict; ignoring it.{C_RESET}")
        return verdict

    def _build_prompt(self, opportunity: Opportunity) -> str:
        steps = ", ".join(opportunity.path())
        return f"""
Assess the risk of this arbitrage execution.
Strategy: Flash Loan (Aave V3)
Pair: {opportunity.symbol}
Spread: {opportunity.spread_pct:.2f}%
Expected Profit: ${opportunity.net_profit_usd:.2f}
Gas Cost: ${opportunity.estimated_gas_usd:.2f}
Pool Depth: ${opportunity.liquidity_usd:,.0f} (modeled slippage {opportunity.slippage_tolerance_pct:.2f}%)
Steps: {steps}

Is this a safe execution considering potential slippage and MEV risks?
Return ONLY strict JSON with keys "riskLevel" (LOW, MEDIUM or HIGH), "score" (0-100 safety score) and "reason" (one sentence).
"""

    def _parse_candidate(self, raw_text: str) -> Optional[RiskVerdict]:
        text = self._strip_code_fences(raw_text.strip())

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None

        try:
            level = RiskLevel(str(payload.get('riskLevel', '')).upper())
        except ValueError:
            return None

        score = payload.get('score')
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            return None

        reason = payload.get('reason')
        if not isinstance(reason, str) or not reason.strip():
            reason = "No reason given."

        return RiskVerdict(risk_level=level, score=int(max(0, min(100, round(score)))), reason=reason.strip())

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        if text.startswith("```"):
            lines = text.splitlines()
            if len(lines) >= 3 and lines[0].startswith("```") and lines[-1].startswith("```"):
                inner = "\n".join(lines[1:-1]).strip()
                if inner.startswith("json"):
                    inner = inner[4:].strip()
                return inner
        return text
