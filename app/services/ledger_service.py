import logging
import os
import random
import time
import uuid
from collections import deque
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from app.models.decision import TradeRequest
from app.models.trading_state import HISTORY_CAPACITY, AccountState, HistorySample, Trade

load_dotenv()

logger = logging.getLogger(__name__)


class LedgerService:
    """
    In-memory book of simulated trades plus the account totals derived from it.

    Trades only ever move OPEN -> CLOSED. Once closed, profit and price are frozen
    and the trade is skipped by every later revaluation.
    """

    PIP_FACTOR = 10000 # price units -> pips
    PIP_VALUE = 10.0 # money per pip per lot
    MAX_PRICE_MOVE = 0.001 # max relative move per revaluation (+/- half of it)

    def __init__(self, initial_balance: Optional[float] = None, rng: Optional[random.Random] = None):
        if initial_balance is None:
            initial_balance = float(os.getenv("INITIAL_BALANCE", "10000"))
        self.rng = rng or random.Random()
        self.reset(initial_balance)

    def reset(self, initial_balance: float):
        self.initial_balance = initial_balance
        self.balance = initial_balance
        self.total_profit = 0.0
        self.trades: List[Trade] = []
        self.history = deque(maxlen=HISTORY_CAPACITY)

    # --- Reads ---

    def open_trades(self) -> List[Trade]:
        return [t for t in self.trades if t.is_open]

    def closed_trades(self) -> List[Trade]:
        return [t for t in self.trades if not t.is_open]

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        for trade in self.trades:
            if trade.id == trade_id:
                return trade
        return None

    def equity(self) -> float:
        return self.balance + sum(t.profit for t in self.open_trades())

    def account_state(self) -> AccountState:
        return AccountState(
            balance=self.balance,
            equity=self.equity(),
            total_profit=self.total_profit,
            open_trades=len(self.open_trades()),
            history=list(self.history),
        )

    # --- Transitions ---

    def apply_open(self, request: TradeRequest) -> Trade:
        """
        Books a new OPEN trade at its requested entry price.
        Position limits are left to the decision source.
        """
        trade = Trade(
            id=uuid.uuid4().hex[:12],
            pair=request.pair,
            type=request.type,
            entry_price=request.entry_price,
            current_price=request.entry_price,
            volume=request.volume,
            profit=0.0,
            timestamp=int(time.time() * 1000),
            status="OPEN",
            ai_reasoning=request.reasoning,
        )
        self.trades.append(trade)
        logger.info(f"Opened {trade.type} {trade.pair} x{trade.volume} @ {trade.entry_price:.5f} (id={trade.id})")
        return trade

    def apply_close(self, trade_id: str) -> Optional[Trade]:
        """
        Closes the OPEN trade with this id and realizes its profit into the balance.
        Unknown or already-closed ids are ignored and None is returned.
        """
        trade = next((t for t in self.trades if t.id == trade_id and t.is_open), None)
        if trade is None:
            logger.info(f"Close requested for {trade_id}, no open trade matches. Ignoring.")
            return None

        trade.status = "CLOSED"
        trade.closed_at = int(time.time() * 1000)
        self.balance += trade.profit
        self.total_profit += trade.profit
        logger.info(f"Closed {trade.pair} (id={trade.id}) with profit {trade.profit:.2f}")
        return trade

    def revaluate(self):
        """Moves every open trade's price a small random step and recomputes its profit."""
        for trade in self.open_trades():
            price_change = (self.rng.random() - 0.5) * self.MAX_PRICE_MOVE
            trade.current_price = trade.current_price * (1 + price_change)
            trade.profit = self.profit_for(trade, trade.current_price)

    def profit_for(self, trade: Trade, price: float) -> float:
        if trade.type == "BUY":
            pips = (price - trade.entry_price) * self.PIP_FACTOR
        else:
            pips = (trade.entry_price - price) * self.PIP_FACTOR
        return pips * trade.volume * self.PIP_VALUE

    def append_history_sample(self, timestamp: datetime, equity: float) -> HistorySample:
        sample = HistorySample(time=timestamp.strftime("%H:%M:%S"), equity=equity)
        self.history.append(sample)
        return sample


ledger_service = LedgerService()
