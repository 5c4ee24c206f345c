import asyncio
from typing import Dict, List
from .symbols import SymbolNormalizer
from .websocket_engine import VenueFeed, UnavailableError


class StartupError(Exception):
    """The bot cannot start safely: a venue is down or there is nothing to monitor."""


class MarketEngine:
    """
    REST side of both venues.
    Responsible for the startup diagnostics and for discovering the instrument universe
    that is streamed afterwards.
    """
    def __init__(self, config: dict, feeds: Dict[str, VenueFeed], normalizer: SymbolNormalizer, logger):
        self.cfg = config
        self.feeds = feeds
        self.normalizer = normalizer
        self.logger = logger

    async def initialize(self) -> bool:
        """
        Pings every venue. Returns False if ANY venue fails; the caller must not start.
        """
        self.logger.info("📡 TESTING EXCHANGE CONNECTIONS...")
        names = list(self.feeds.keys())
        results = await asyncio.gather(*(self.feeds[n].health_check() for n in names))

        all_connected = True
        for name, ok in zip(names, results):
            if ok:
                self.logger.info(f"   ✅ {name.upper():<10} | REST API reachable")
            else:
                self.logger.critical(f"   ❌ {name.upper():<10} | REST API unreachable")
                all_connected = False
        return all_connected

    async def discover_instruments(self) -> List[str]:
        """
        Top-volume contracts of each venue, joined on the canonical symbol, minus exclusions.
        """
        arb = self.cfg['arbitrage']
        count = arb['top_pairs_count']
        self.logger.info(f"Fetching top {count} contracts per venue...")

        names = list(self.feeds.keys())
        try:
            tops = await asyncio.gather(*(self.feeds[n].fetch_top_instruments(count) for n in names))
        except UnavailableError as e:
            raise StartupError(str(e)) from e

        natives = {}
        for name, rows in zip(names, tops):
            natives[name] = [r['symbol'] for r in rows]
            self.logger.info(f"   {name.upper():<10} | {len(rows)} contracts")

        common = self.normalizer.common_instruments(
            natives['binance'], natives['mexc'], exclude=arb['exclude_pairs']
        )
        if not common:
            raise StartupError("No common contracts between the venues, check arbitrage settings")

        self.logger.info(f"Monitoring {len(common)} common contracts: {', '.join(common[:10])}"
                         + (" ..." if len(common) > 10 else ""))
        return common

    async def shutdown(self):
        """
        Gracefully closes all REST API sessions.
        """
        for feed in self.feeds.values():
            await feed.close()
