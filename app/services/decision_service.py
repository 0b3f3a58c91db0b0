import asyncio
import json
import logging
import os
import re
from typing import Callable, Dict, List, Optional

from dotenv import load_dotenv
from google import genai

from app.models.decision import DecisionPayload
from app.models.trading_state import InstrumentQuote, Trade

load_dotenv()

logger = logging.getLogger(__name__)

EMPTY_REPLY_ANALYSIS = "Analyzing market conditions..."

_FENCE_RE = re.compile(r"```(?:json)?\n?")


class MissingCredentialsError(ValueError):
    """No API key for the reasoning service. Raised before any remote call."""


class DecisionServiceError(RuntimeError):
    """The reasoning service could not be reached or answered with an error."""


class DecisionService:
    """
    Asks Gemini for the next trading action.

    Only two things escape this class as errors: a missing API key and a failed
    call. Whatever text comes back is turned into a DecisionPayload, falling back
    to HOLD when it can't be read.
    """

    def __init__(self, model_name: Optional[str] = None, timeout: Optional[float] = None,
                 client_factory: Optional[Callable] = None):
        self.model_name = model_name or os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        if timeout is None:
            timeout = float(os.getenv("DECISION_TIMEOUT_SECONDS", "10"))
        self.timeout = timeout
        # One client per key, the key comes from the stored config record
        self.client_factory = client_factory or (lambda api_key: genai.Client(api_key=api_key))

    async def request_decision(self, snapshot: List[InstrumentQuote], open_trades: List[Trade],
                               balance: float, credentials: Optional[Dict]) -> DecisionPayload:
        api_key = (credentials or {}).get("geminiApiKey")
        if not api_key or not str(api_key).strip():
            raise MissingCredentialsError("Gemini API key is required")

        prompt = self._create_decision_prompt(snapshot, open_trades, balance)

        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self._call_model, api_key, prompt),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Decision request timed out after {self.timeout}s, holding.")
            return DecisionPayload.hold(f"Decision request timed out after {self.timeout:g}s. Holding positions.")
        except Exception as e:
            logger.error(f"Decision service call failed: {e}")
            raise DecisionServiceError(str(e)) from e

        return self.parse_decision(text)

    def _call_model(self, api_key: str, prompt: str) -> str:
        client = self.client_factory(api_key)
        response = client.models.generate_content(
            model=self.model_name,
            contents=prompt,
        )
        return response.text or ""

    def parse_decision(self, text: Optional[str]) -> DecisionPayload:
        raw = text or ""
        clean = _FENCE_RE.sub("", raw).strip()
        try:
            data = json.loads(clean)
            if not isinstance(data, dict):
                raise ValueError("reply is not a JSON object")
            return DecisionPayload.model_validate(data)
        except Exception as e:
            # Includes RecursionError from deeply nested replies
            logger.error(f"Failed to parse AI response ({e}): {raw[:200]}")
            return DecisionPayload.hold(raw or EMPTY_REPLY_ANALYSIS)

    def _create_decision_prompt(self, snapshot: List[InstrumentQuote], open_trades: List[Trade],
                                balance: float) -> str:
        market_json = json.dumps([q.to_dict() for q in snapshot], indent=2)
        trades_json = json.dumps([t.to_dict() for t in open_trades if t.is_open], indent=2)
        return f"""You are an expert forex trading AI. Analyze the current market conditions and make a trading decision.

Current Market Data:
{market_json}

Current Open Trades:
{trades_json}

Account Balance: ${balance:.2f}

Trading Rules:
1. Maximum 3 open trades at a time
2. Risk no more than 2% per trade
3. Use proper risk management and stop losses
4. Focus on high-probability setups
5. Consider trend, volatility, and price action
6. Take profit when target is reached (typically 2-3% gain)
7. Close losing trades early to minimize losses

Your task:
1. Analyze the market data and current positions
2. Decide if you should: OPEN_TRADE, CLOSE_TRADE, or HOLD
3. If opening a trade, specify: pair, type (BUY/SELL), volume (0.1-1.0), entry price, and reasoning
4. If closing a trade, specify: trade ID and reasoning
5. Provide detailed market analysis

Response format (JSON):
{{
  "action": "OPEN_TRADE" | "CLOSE_TRADE" | "HOLD",
  "analysis": "Your detailed market analysis...",
  "trade": {{
    "pair": "EUR/USD",
    "type": "BUY" | "SELL",
    "volume": 0.5,
    "entryPrice": 1.1234,
    "reasoning": "Why this trade..."
  }},
  "tradeId": "id_to_close" (only if CLOSE_TRADE)
}}

Respond ONLY with valid JSON, no markdown formatting."""


decision_service = DecisionService()
