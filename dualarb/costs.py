# dualarb/costs.py
from typing import Dict, Tuple
from .models import OpenPairing, PriceQuote


class CostModel:
    """
    Pessimistic taker-fee + slippage model shared by detection and slot decisions.
    Every fill is assumed to pay the venue's taker fee and the configured slippage,
    so buys get more expensive and sells get cheaper.
    """
    def __init__(self, config: dict):
        # Config values are percentages, stored here as fractions
        self.taker: Dict[str, float] = {
            venue: fees['taker'] / 100 for venue, fees in config['fees'].items()
        }
        self.slippage = config['slippage']['percent'] / 100

    def cost_rate(self, venue: str) -> float:
        return self.taker[venue] + self.slippage

    def effective_buy(self, price: float, venue: str) -> float:
        return price * (1 + self.cost_rate(venue))

    def effective_sell(self, price: float, venue: str) -> float:
        return price * (1 - self.cost_rate(venue))

    def net_profit_percent(self, buy_price: float, buy_venue: str,
                           sell_price: float, sell_venue: str) -> float:
        buy = self.effective_buy(buy_price, buy_venue)
        sell = self.effective_sell(sell_price, sell_venue)
        return (sell - buy) / buy * 100

    def leg_profit_percents(self, pairing: OpenPairing, quote: PriceQuote) -> Tuple[float, float]:
        """
        P&L percent of (long leg, short leg) if the pairing were closed at `quote`.
        The long leg sells back at quote.buy_price, the short leg buys back at quote.sell_price.
        """
        long_venue = pairing.long_leg.venue
        long_entry = self.effective_buy(pairing.long_leg.entry_price, long_venue)
        long_exit = self.effective_sell(quote.buy_price, long_venue)
        long_pnl = (long_exit - long_entry) / long_entry * 100

        short_venue = pairing.short_leg.venue
        short_entry = self.effective_sell(pairing.short_leg.entry_price, short_venue)
        short_exit = self.effective_buy(quote.sell_price, short_venue)
        short_pnl = (short_entry - short_exit) / short_entry * 100

        return long_pnl, short_pnl

    def pairing_profit_percent(self, pairing: OpenPairing, quote: PriceQuote) -> float:
        long_pnl, short_pnl = self.leg_profit_percents(pairing, quote)
        return (long_pnl + short_pnl) / 2
