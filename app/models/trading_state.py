from dataclasses import dataclass, field
from typing import Dict, List, Optional

HISTORY_CAPACITY = 20

CURRENCY_PAIRS = [
    "EUR/USD", "GBP/USD", "USD/JPY", "USD/CHF",
    "AUD/USD", "USD/CAD", "NZD/USD",
]


@dataclass
class InstrumentQuote:
    pair: str
    price: float
    change24h: float
    volatility: float
    trend: str # 'BULLISH' or 'BEARISH'

    def to_dict(self) -> Dict:
        return {
            "pair": self.pair,
            "price": self.price,
            "change24h": self.change24h,
            "volatility": self.volatility,
            "trend": self.trend,
        }


@dataclass
class Trade:
    id: str
    pair: str
    type: str # 'BUY' or 'SELL'
    entry_price: float
    current_price: float
    volume: float
    profit: float = 0.0
    timestamp: int = 0 # epoch millis at open
    status: str = "OPEN"
    ai_reasoning: str = ""
    closed_at: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"

    def to_dict(self) -> Dict:
        # Same field names the dashboard and the prompt use
        return {
            "id": self.id,
            "pair": self.pair,
            "type": self.type,
            "entryPrice": self.entry_price,
            "currentPrice": self.current_price,
            "volume": self.volume,
            "profit": self.profit,
            "timestamp": self.timestamp,
            "status": self.status,
            "aiReasoning": self.ai_reasoning,
            "closedAt": self.closed_at,
        }


@dataclass
class HistorySample:
    time: str
    equity: float

    def to_dict(self) -> Dict:
        return {"time": self.time, "equity": self.equity}


@dataclass
class AccountState:
    balance: float
    equity: float
    total_profit: float
    open_trades: int
    history: List[HistorySample] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "balance": self.balance,
            "equity": self.equity,
            "totalProfit": self.total_profit,
            "openTrades": self.open_trades,
            "history": [sample.to_dict() for sample in self.history],
        }
