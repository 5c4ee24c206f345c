# dualarb/strategy.py
import time
from typing import Callable, Dict, Optional
from .costs import CostModel
from .models import InstrumentPrice, Opportunity, PriceQuote


class OpportunityDetector:
    """
    Event-driven spread check.
    Runs on every tick, compares it with the other venue's cached quote for the same
    canonical instrument and emits an Opportunity when the cost-adjusted profit clears
    the configured thresholds. Pure function of the two cached prices.
    """
    def __init__(self, config: dict, feeds: Dict[str, object], costs: CostModel, logger,
                 clock: Callable[[], float] = time.time):
        self.feeds = feeds
        self.costs = costs
        self.logger = logger
        self.clock = clock

        arb = config['arbitrage']
        self.min_spread_percent = arb['min_spread_percent']
        self.min_profit_percent = arb.get('min_profit_percent', 0.0)
        self.excluded = {s.upper() for s in arb.get('exclude_pairs', [])}

        self.total_comparisons = 0
        self.opportunities_found = 0

    def _counterpart(self, price: InstrumentPrice) -> Optional[InstrumentPrice]:
        for venue, feed in self.feeds.items():
            if venue != price.venue:
                return feed.get_price(price.symbol)
        return None

    def on_price_update(self, price: InstrumentPrice) -> Optional[Opportunity]:
        if price.symbol in self.excluded:
            return None

        # 1. Counterpart quote; nothing to compare until both venues have ticked
        other = self._counterpart(price)
        if other is None:
            return None

        self.total_comparisons += 1

        # --- ZERO PRICE PROTECTION ---
        if price.ask <= 0 or price.bid <= 0 or other.ask <= 0 or other.bid <= 0:
            return None

        # 2. Direction: buy at the ask that undercuts the other venue's bid
        if price.ask < other.bid:
            buy, sell = price, other
        elif other.ask < price.bid:
            buy, sell = other, price
        else:
            return None

        buy_price = buy.ask
        sell_price = sell.bid

        # 3. Gross spread
        spread_percent = (sell_price - buy_price) / buy_price * 100
        if spread_percent < self.min_spread_percent:
            return None

        # 4. Fees + slippage on both legs
        profit_percent = self.costs.net_profit_percent(buy_price, buy.venue, sell_price, sell.venue)

        # 5. Silent filter: nothing was decided yet, so this is not a skip
        if profit_percent < self.min_profit_percent:
            return None

        self.opportunities_found += 1
        return Opportunity(
            instrument=price.symbol,
            buy_venue=buy.venue,
            sell_venue=sell.venue,
            buy_price=buy_price,
            sell_price=sell_price,
            gross_spread_percent=spread_percent,
            net_profit_percent=profit_percent,
            detected_at=self.clock()
        )

    def current_prices(self, instrument: str) -> Optional[PriceQuote]:
        """
        Live cross-venue buy/sell prices for an instrument, used as the ledger's price getter.
        Buy at the cheaper ask when it undercuts the other bid, otherwise the other way round.
        """
        quotes = [feed.get_price(instrument) for feed in self.feeds.values()]
        if len(quotes) != 2 or any(q is None for q in quotes):
            return None
        a, b = quotes
        if a.ask < b.bid:
            return PriceQuote(buy_price=a.ask, sell_price=b.bid)
        return PriceQuote(buy_price=b.ask, sell_price=a.bid)

    def stats(self) -> dict:
        return {
            'total_comparisons': self.total_comparisons,
            'opportunities_found': self.opportunities_found,
        }
