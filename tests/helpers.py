"""Test doubles and builders shared across test modules."""

from __future__ import annotations

from typing import Dict, List, Optional

from dualarb.models import InstrumentPrice, Opportunity


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubFeed:
    """Price cache only, no network."""

    def __init__(self, venue: str) -> None:
        self.venue = venue
        self.prices: Dict[str, InstrumentPrice] = {}

    def put(self, price: InstrumentPrice) -> None:
        self.prices[price.symbol] = price

    def get_price(self, symbol: str) -> Optional[InstrumentPrice]:
        return self.prices.get(symbol)

    def all_prices(self) -> Dict[str, InstrumentPrice]:
        return dict(self.prices)


def make_price(venue: str, symbol: str, bid: float, ask: float, at: float = 1_000_000.0) -> InstrumentPrice:
    base, quote = symbol.split("/")
    native = f"{base}{quote}" if venue == "binance" else f"{base}_{quote}"
    return InstrumentPrice(
        venue=venue,
        symbol=symbol,
        native_symbol=native,
        bid=bid,
        ask=ask,
        last_trade_price=bid,
        last_trade_time=at,
        observed_at=at,
    )


def make_opportunity(instrument: str = "BTC/USDT", net: float = 0.5, buy: float = 100.0,
                     sell: float = 101.0, at: float = 1_000_000.0) -> Opportunity:
    return Opportunity(
        instrument=instrument,
        buy_venue="binance",
        sell_venue="mexc",
        buy_price=buy,
        sell_price=sell,
        gross_spread_percent=(sell - buy) / buy * 100,
        net_profit_percent=net,
        detected_at=at,
    )


class FakeVenue(StubFeed):
    """StubFeed with the REST and streaming surface the bot drives, all in memory."""

    def __init__(self, venue: str, top: Optional[List[str]] = None, healthy: bool = True,
                 error: Optional[Exception] = None) -> None:
        super().__init__(venue)
        self.top = top or []
        self.healthy = healthy
        self.error = error
        self.on_update = None
        self.connected_with: List[str] = []
        self.disconnects = 0
        self.closed = False

    async def health_check(self) -> bool:
        return self.healthy

    async def fetch_top_instruments(self, n: int) -> List[Dict[str, float]]:
        if self.error is not None:
            raise self.error
        return [{"symbol": s, "volume": float(1000 - i)} for i, s in enumerate(self.top[:n])]

    async def connect(self, instruments: List[str], on_update) -> None:
        self.connected_with = list(instruments)
        self.on_update = on_update

    async def disconnect(self) -> None:
        self.disconnects += 1

    async def close(self) -> None:
        self.closed = True

    async def push(self, price: InstrumentPrice) -> None:
        self.put(price)
        await self.on_update(price)
