import asyncio
import logging
import time
from typing import Dict, List, Optional
from .costs import CostModel
from .execution import PaperLedger, TRADE_LOG_HEADER
from .health import ConnectionMonitor
from .logger import AsyncAuditLogger
from .market_engine import MarketEngine, StartupError
from .models import InstrumentPrice, VENUES
from .risk_engine import CooldownBook, SlotDecisionEngine
from .strategy import OpportunityDetector
from .symbols import SymbolNormalizer
from .telemetry import SkipRecorder, SKIP_LOG_HEADER
from .websocket_engine import FEED_CLASSES, VenueFeed


class ArbitrageBot:
    """
    Wires the feeds, detector, slot engine and paper ledger together.

    Both feeds push ticks into one queue; a single dispatcher task handles each tick
    to completion in arrival order, so the open-pairing set only ever has one writer.
    """
    def __init__(self, config: dict, logger: logging.Logger, feeds: Optional[Dict[str, VenueFeed]] = None):
        self.config = config
        self.logger = logger

        self.monitor = ConnectionMonitor()
        self.normalizer = SymbolNormalizer(config['arbitrage']['quote_assets'])
        self.costs = CostModel(config)
        self.feeds = feeds or {
            venue: FEED_CLASSES[venue](config, self.normalizer, self.monitor, logger) for venue in VENUES
        }
        self.market = MarketEngine(config, self.feeds, self.normalizer, logger)

        audit = config['audit']
        self.skip_log = AsyncAuditLogger(audit['skipped_log'], SKIP_LOG_HEADER)
        self.trade_log = AsyncAuditLogger(audit['trade_log'], TRADE_LOG_HEADER)

        self.detector = OpportunityDetector(config, self.feeds, self.costs, logger)
        self.telemetry = SkipRecorder(logger, self.skip_log)
        self.ledger = PaperLedger(config, self.costs, logger, self.trade_log)
        self.ledger.set_price_getter(self.detector.current_prices)
        self.cooldowns = CooldownBook(config, logger)
        self.ledger.add_close_listener(self.cooldowns.on_pairing_closed)
        self.engine = SlotDecisionEngine(config, self.ledger, self.costs, self.telemetry, logger, self.cooldowns)

        self.trading_enabled = config['trading']['enabled']
        self.instruments: List[str] = []
        self.session_start = time.time()
        self._ticks: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self.running = False

    async def prepare(self) -> List[str]:
        """
        Startup checks. Any failure here is fatal: raises StartupError.
        """
        if not await self.market.initialize():
            raise StartupError("Venue health check failed")
        self.instruments = await self.market.discover_instruments()
        return self.instruments

    async def start(self, instruments: Optional[List[str]] = None):
        if instruments is not None:
            self.instruments = list(instruments)
        if not self.instruments:
            raise StartupError("No instruments to monitor")

        await self.skip_log.start()
        await self.trade_log.start()

        self.running = True
        self._tasks = [
            asyncio.create_task(self._dispatch()),
            asyncio.create_task(self.ledger.run_loop()),
            asyncio.create_task(self._summary_loop()),
        ]
        for feed in self.feeds.values():
            await feed.connect(self.instruments, self._enqueue)

        arb = self.config['arbitrage']
        self.logger.info(f"Min spread to detect: {arb['min_spread_percent']}% | "
                         f"Min profit: {arb.get('min_profit_percent', 0.0)}% | "
                         f"Min profit to keep a slot: {self.config['notifications']['min_spread_to_notify']}%")
        self.logger.info("🔍 Waiting for arbitrage opportunities...")

    async def _enqueue(self, price: InstrumentPrice):
        self._ticks.put_nowait(price)

    async def _dispatch(self):
        while True:
            price = await self._ticks.get()
            try:
                self.process_tick(price)
            except Exception:
                self.logger.exception(f"Tick handling failed for {price.venue}:{price.symbol}")
            finally:
                self._ticks.task_done()

    def process_tick(self, price: InstrumentPrice):
        opp = self.detector.on_price_update(price)
        if opp is not None and self.trading_enabled:
            self.engine.handle(opp)
        self.ledger.on_price_update(price.symbol)

    async def _summary_loop(self):
        interval = self.config['system']['summary_interval_seconds']
        while True:
            await asyncio.sleep(interval)
            self.log_summary()

    def log_summary(self):
        det = self.detector.stats()
        led = self.ledger.stats()
        health = self.monitor.stats()
        skips = self.telemetry.counts_by_reason()
        self.logger.info(
            f"📊 Comparisons {det['total_comparisons']} | Opportunities {det['opportunities_found']} | "
            f"Open {led['open']} | Closed {led['closed']} (W {led['wins']} / L {led['losses']}) | "
            f"PnL ${led['total_pnl_usd']:.2f} | Balance ${led['balance']:.2f}"
        )
        self.logger.info(
            "🌐 " + " | ".join(
                f"{venue.upper()} {v['disconnects']} drops, {v['total_downtime_minutes']} min down"
                for venue, v in health['venues'].items()
            ) + (f" | Skipped {skips}" if skips else "")
        )

    async def shutdown(self):
        """
        Close both streams, cancel loops and flush the audit trail. Safe to call twice.
        """
        was_running, self.running = self.running, False
        for feed in self.feeds.values():
            await feed.disconnect()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self.market.shutdown()
        await self.skip_log.stop()
        await self.trade_log.stop()
        if was_running:
            self.log_summary()
