import random
from typing import List, Optional

from app.models.trading_state import CURRENCY_PAIRS, InstrumentQuote


class MarketService:
    """
    Synthetic market feed. Every snapshot is drawn fresh, nothing carries over
    between calls and nothing is tied to the prices of open trades.
    """

    BASE_PRICE = 1.0
    PRICE_RANGE = 0.5
    CHANGE_RANGE = 0.02
    MAX_VOLATILITY = 0.01

    def __init__(self, pairs: Optional[List[str]] = None, rng: Optional[random.Random] = None):
        self.pairs = list(pairs or CURRENCY_PAIRS)
        self.rng = rng or random.Random()

    def generate_snapshot(self) -> List[InstrumentQuote]:
        return [self._quote(pair) for pair in self.pairs]

    def _quote(self, pair: str) -> InstrumentQuote:
        return InstrumentQuote(
            pair=pair,
            price=self.BASE_PRICE + self.rng.random() * self.PRICE_RANGE,
            change24h=(self.rng.random() - 0.5) * self.CHANGE_RANGE,
            volatility=self.rng.random() * self.MAX_VOLATILITY,
            trend="BULLISH" if self.rng.random() > 0.5 else "BEARISH",
        )


market_service = MarketService()
