import logging
import random
import time
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class NotConnectedError(RuntimeError):
    pass


@dataclass
class MT5Trade:
    ticket: int
    symbol: str
    type: str
    volume: float
    open_price: float
    current_price: float
    profit: float
    open_time: int

    def to_dict(self) -> Dict:
        return asdict(self)


class MT5Connector:
    """
    MetaTrader 5 connector interface.

    MT5 has no web API, so a real implementation needs a bridge server next to the
    terminal. Until one exists every call here is simulated: connect always
    succeeds, prices are random and tickets are timestamps.
    """

    DEMO_BALANCE = 10000.0
    SPREAD = 0.0001

    def __init__(self, rng: Optional[random.Random] = None):
        self.config: Dict = {}
        self.connected = False
        self.rng = rng or random.Random()

    def _require_connection(self):
        if not self.connected:
            raise NotConnectedError("Not connected to MT5")

    def connect(self, config: Dict) -> bool:
        self.config = dict(config or {})
        logger.info(f"Connecting to MT5: {self.config.get('mt5Server')} {self.config.get('mt5Login')}")
        self.connected = True
        return True

    def get_balance(self) -> float:
        self._require_connection()
        return self.DEMO_BALANCE

    def get_price(self, symbol: str) -> Dict[str, float]:
        self._require_connection()
        base = 1.0 + self.rng.random() * 0.5
        return {"bid": base, "ask": base + self.SPREAD}

    def open_trade(self, symbol: str, direction: str, volume: float,
                   stop_loss: Optional[float] = None, take_profit: Optional[float] = None) -> Optional[MT5Trade]:
        self._require_connection()
        price = self.get_price(symbol)
        open_price = price["ask"] if direction == "BUY" else price["bid"]
        now = int(time.time() * 1000)
        trade = MT5Trade(
            ticket=now,
            symbol=symbol,
            type=direction,
            volume=volume,
            open_price=open_price,
            current_price=open_price,
            profit=0.0,
            open_time=now,
        )
        logger.info(f"Opened trade: {trade}")
        return trade

    def close_trade(self, ticket: int) -> bool:
        self._require_connection()
        logger.info(f"Closed trade: {ticket}")
        return True

    def get_open_trades(self) -> List[MT5Trade]:
        self._require_connection()
        return []

    def disconnect(self):
        self.connected = False
        logger.info("Disconnected from MT5")


mt5_connector = MT5Connector()
