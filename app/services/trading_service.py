import asyncio
import logging
import os
from datetime import datetime
from typing import Callable, Dict, List, Optional

from dotenv import load_dotenv

from app.database import get_config
from app.models.decision import DecisionPayload
from app.models.trading_state import InstrumentQuote
from app.services.decision_service import (
    DecisionService,
    DecisionServiceError,
    MissingCredentialsError,
    decision_service,
)
from app.services.ledger_service import LedgerService, ledger_service
from app.services.market_service import MarketService, market_service

load_dotenv()

logger = logging.getLogger(__name__)


class CycleInProgressError(RuntimeError):
    pass


class TradingService:
    """
    Runs the bot: on every tick it takes a market snapshot, asks the decision
    service what to do, applies the answer to the ledger and revalues open trades.

    Stopping only suppresses future ticks. A cycle that has already started always
    runs to completion, and at most one cycle runs at a time.
    """

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"

    def __init__(self, ledger: Optional[LedgerService] = None, market: Optional[MarketService] = None,
                 decisions: Optional[DecisionService] = None,
                 config_provider: Optional[Callable[[], Optional[Dict]]] = None,
                 interval: Optional[float] = None):
        self.ledger = ledger or ledger_service
        self.market = market or market_service
        self.decisions = decisions or decision_service
        self.config_provider = config_provider or get_config
        if interval is None:
            interval = float(os.getenv("CYCLE_INTERVAL_SECONDS", "5"))
        self.interval = interval

        self.state = self.STOPPED
        self._stop_event: Optional[asyncio.Event] = None
        self._scheduler_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._cycle_in_progress = False

        self.last_analysis = "Waiting to start..."
        self.last_update: Optional[datetime] = None
        self.last_snapshot: List[InstrumentQuote] = []
        self.last_decision: Optional[DecisionPayload] = None
        self.cycles_completed = 0
        self.cycles_failed = 0
        self.ticks_skipped = 0

    @property
    def is_running(self) -> bool:
        return self.state == self.RUNNING

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_in_progress

    # --- Control ---

    def start(self) -> bool:
        """Starts the periodic loop. Must be called from inside the event loop."""
        if self.is_running:
            return False
        self._stop_event = asyncio.Event()
        self.state = self.RUNNING
        self._scheduler_task = asyncio.create_task(self._run_scheduler(self._stop_event))
        logger.info(f"Trading bot started (every {self.interval:g}s).")
        return True

    def stop(self) -> bool:
        if not self.is_running:
            return False
        self.state = self.STOPPED
        self._stop_event.set()
        self._scheduler_task = None
        logger.info("Trading bot stopped.")
        return True

    def toggle(self) -> bool:
        """Flips between RUNNING and STOPPED. Returns the new running flag."""
        if self.is_running:
            self.stop()
        else:
            self.start()
        return self.is_running

    async def _run_scheduler(self, stop_event: asyncio.Event):
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break

            if self._cycle_in_progress:
                self.ticks_skipped += 1
                logger.warning("Previous trading cycle still running, skipping this tick.")
                continue

            self._cycle_task = asyncio.create_task(self._run_scheduled_cycle())

    async def _run_scheduled_cycle(self):
        try:
            await self.run_cycle()
        except CycleInProgressError:
            # A manual cycle claimed the slot before this task got to run
            self.ticks_skipped += 1
            logger.warning("Manual trading cycle in progress, skipping this tick.")
        except MissingCredentialsError as e:
            logger.error(f"Trading cycle skipped: {e}")
        except DecisionServiceError as e:
            logger.error(f"Trading cycle error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error in trading cycle: {e}")

    # --- Cycle ---

    async def run_cycle(self) -> DecisionPayload:
        """
        One full trading cycle:
        1. Market snapshot
        2. Decision from the reasoning service
        3. OPEN_TRADE / CLOSE_TRADE applied to the ledger
        4. Open trades revalued
        5. Equity sample, timestamp and analysis recorded

        Errors from step 2 abort the cycle before the ledger is touched.
        """
        if self._cycle_in_progress:
            raise CycleInProgressError("A trading cycle is already running")
        self._cycle_in_progress = True
        try:
            snapshot = self.market.generate_snapshot()
            # sqlite read, kept off the event loop
            credentials = await asyncio.to_thread(self.config_provider)

            try:
                decision = await self.decisions.request_decision(
                    snapshot,
                    self.ledger.open_trades(),
                    self.ledger.balance,
                    credentials,
                )
            except (MissingCredentialsError, DecisionServiceError):
                self.cycles_failed += 1
                raise

            if decision.action == "OPEN_TRADE":
                self.ledger.apply_open(decision.trade)
            elif decision.action == "CLOSE_TRADE":
                self.ledger.apply_close(decision.trade_id)

            self.ledger.revaluate()

            now = datetime.now()
            equity = self.ledger.equity()
            self.ledger.append_history_sample(now, equity)
            self.last_update = now
            if decision.analysis:
                self.last_analysis = decision.analysis
            self.last_snapshot = snapshot
            self.last_decision = decision
            self.cycles_completed += 1

            logger.info(f"Cycle {self.cycles_completed}: {decision.action} | balance {self.ledger.balance:.2f} | equity {equity:.2f}")
            return decision
        finally:
            self._cycle_in_progress = False

    def status(self) -> Dict:
        return {
            "state": self.state,
            "running": self.is_running,
            "cycleInProgress": self._cycle_in_progress,
            "intervalSeconds": self.interval,
            "account": self.ledger.account_state().to_dict(),
            "analysis": self.last_analysis,
            "lastDecision": self.last_decision.to_dict() if self.last_decision else None,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
            "cyclesCompleted": self.cycles_completed,
            "cyclesFailed": self.cycles_failed,
            "ticksSkipped": self.ticks_skipped,
            "openTrades": [t.to_dict() for t in self.ledger.open_trades()],
            "closedTrades": [t.to_dict() for t in self.ledger.closed_trades()],
        }


trading_service = TradingService()
