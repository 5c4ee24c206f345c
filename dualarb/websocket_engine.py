import asyncio
import aiohttp
import ccxt.async_support as ccxt
import json
import time
import logging
from typing import Awaitable, Callable, Dict, List, Optional
from .health import ConnectionMonitor
from .models import BINANCE, MEXC, InstrumentPrice
from .symbols import SymbolNormalizer

PriceCallback = Callable[[InstrumentPrice], Awaitable[None]]


class UnavailableError(Exception):
    """A venue REST endpoint is unreachable or answered with a non-success status."""


def make_rest_client(venue_cfg: dict) -> ccxt.Exchange:
    """
    Public-data ccxt client for one venue. No API keys: only tickers and server time are used.
    """
    ex_class = getattr(ccxt, venue_cfg['ccxt_id'])
    return ex_class({
        'timeout': venue_cfg.get('network_timeout_ms', 10000),
        'enableRateLimit': True,
        'options': {'defaultType': venue_cfg.get('market_type', 'swap')}
    })


class VenueFeed:
    """
    Streaming top-of-book cache for one venue.

    Owns its price cache (written only by its own stream task), keeps the venue's
    keepalive obligation, reconnects forever after a drop and reports every drop and
    recovery to the ConnectionMonitor.
    """
    venue: str = ""

    def __init__(self, config: dict, normalizer: SymbolNormalizer, monitor: ConnectionMonitor,
                 logger: logging.Logger, rest_client=None, clock: Callable[[], float] = time.time):
        ex_cfg = config['exchanges'][self.venue]
        self.ws_base_url = ex_cfg['ws_base_url'].rstrip('/')
        self.keepalive_interval = ex_cfg['keepalive_interval_seconds']
        self.batch_size = ex_cfg.get('subscribe_batch_size', 0)
        self.batch_delay = ex_cfg.get('subscribe_batch_delay_seconds', 0.0)
        self.reconnect_delay = config['arbitrage']['reconnect_delay_seconds']
        self.quote_assets = [q.upper() for q in config['arbitrage']['quote_assets']]
        self._ex_cfg = ex_cfg

        self.normalizer = normalizer
        self.monitor = monitor
        self.logger = logger
        self.clock = clock
        self._rest = rest_client

        self._cache: Dict[str, InstrumentPrice] = {}
        self.instruments: List[str] = []
        self.running = False
        self.ws = None
        self._on_update: Optional[PriceCallback] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._owns_session = False
        self._task: Optional[asyncio.Task] = None
        self._awaiting_reconnect = False
        self.parse_errors = 0

    # --- REST ---

    @property
    def rest(self):
        if self._rest is None:
            self._rest = make_rest_client(self._ex_cfg)
        return self._rest

    async def health_check(self) -> bool:
        try:
            await self.rest.fetch_time()
            return True
        except ccxt.BaseError as e:
            self.logger.error(f"{self.venue.upper()}: ping failed - {e}")
            return False

    async def fetch_top_instruments(self, n: int) -> List[Dict[str, float]]:
        """
        The n native contracts with the highest 24h quote volume, e.g.
        [{'symbol': 'BTCUSDT', 'volume': 1.2e10}, ...]
        """
        try:
            tickers = await self.rest.fetch_tickers()
        except ccxt.BaseError as e:
            raise UnavailableError(f"{self.venue}: 24h ticker request failed - {e}") from e

        rows = []
        for ticker in tickers.values():
            native = (ticker.get('info') or {}).get('symbol')
            if not native or not self.normalizer.is_supported(self.venue, native):
                continue
            rows.append({'symbol': native, 'volume': float(ticker.get('quoteVolume') or 0.0)})

        rows.sort(key=lambda r: r['volume'], reverse=True)
        return rows[:n]

    async def close(self):
        """Release the REST client."""
        if self._rest is not None:
            await self._rest.close()

    # --- Streaming ---

    async def connect(self, instruments: List[str], on_update: PriceCallback,
                      session: Optional[aiohttp.ClientSession] = None):
        """
        Start streaming the given canonical instruments. A second call while running is a no-op.
        """
        if self.running:
            self.logger.warning(f"{self.venue.upper()}: stream already connected, ignoring connect()")
            return

        self.instruments = list(instruments)
        self._on_update = on_update
        if session is None:
            session = aiohttp.ClientSession()
            self._owns_session = True
        self._session = session
        self.running = True

        self.logger.info(f"⚡ {self.venue.upper()}: connecting stream for {len(self.instruments)} instruments...")
        self._task = asyncio.create_task(self._run_forever())

    async def disconnect(self):
        """Stop streaming, keepalive and any pending reconnect wait. Safe to call twice."""
        self.running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
        self._owns_session = False
        self.ws = None

    def get_price(self, symbol: str) -> Optional[InstrumentPrice]:
        return self._cache.get(symbol)

    def all_prices(self) -> Dict[str, InstrumentPrice]:
        return dict(self._cache)

    @property
    def connected(self) -> bool:
        return self.ws is not None and not self.ws.closed

    async def _run_forever(self):
        while self.running:
            try:
                reason = await self._stream_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = f"Error: {e}"
                self.logger.error(f"{self.venue.upper()}: stream error - {e}")

            if not self.running:
                break

            self.logger.warning(f"{self.venue.upper()}: stream closed ({reason}), reconnecting in {self.reconnect_delay}s")
            self._report_disconnect(reason)
            await asyncio.sleep(self.reconnect_delay)

    async def _stream_once(self) -> str:
        """
        One connection lifetime. Returns the close reason when the server ends it.
        """
        async with self._session.ws_connect(self.stream_url(), autoping=True) as ws:
            self.ws = ws
            self._on_open()
            keepalive = asyncio.create_task(self._keepalive(ws))
            try:
                await self._subscribe(ws)
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self._handle_text(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        return f"Error: {ws.exception()}"
            finally:
                keepalive.cancel()
                self.ws = None
            return f"Code: {ws.close_code}"

    def _on_open(self):
        self.logger.info(f"✅ {self.venue.upper()}: stream connected ({len(self.instruments)} instruments)")
        if self._awaiting_reconnect:
            self.monitor.record_reconnect(self.venue, self.clock())
            self._awaiting_reconnect = False

    def _report_disconnect(self, reason: str):
        self.monitor.record_disconnect(self.venue, reason, self.clock())
        self._awaiting_reconnect = True

    async def _handle_text(self, raw: str):
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            price = self.parse_message(payload)
        except (ValueError, KeyError, TypeError) as e:
            # A bad tick is dropped, the connection stays up
            self.parse_errors += 1
            self.logger.error(f"{self.venue.upper()}: could not parse stream message - {e}")
            return
        if price is None:
            return
        self._cache[price.symbol] = price
        if self._on_update is not None:
            await self._on_update(price)

    async def _subscribe(self, ws):
        messages = self.subscribe_messages()
        if not messages:
            return
        step = self.batch_size if self.batch_size > 0 else len(messages)
        for i in range(0, len(messages), step):
            for message in messages[i:i + step]:
                await ws.send_json(message)
            if i + step < len(messages) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
        self.logger.info(f"{self.venue.upper()}: subscription sent for {len(self.instruments)} instruments")

    async def _keepalive(self, ws):
        while not ws.closed:
            await asyncio.sleep(self.keepalive_interval)
            if ws.closed:
                break
            try:
                await self.send_keepalive(ws)
            except ConnectionError as e:
                # The read loop sees the close and drives the reconnect
                self.logger.debug(f"{self.venue.upper()}: keepalive failed - {e}")
                break
            except Exception as e:
                self.logger.error(f"{self.venue.upper()}: keepalive stopped - {e}")
                break

    # --- Venue specifics ---

    def stream_url(self) -> str:
        raise NotImplementedError

    def subscribe_messages(self) -> List[dict]:
        raise NotImplementedError

    def parse_message(self, data: dict) -> Optional[InstrumentPrice]:
        raise NotImplementedError

    async def send_keepalive(self, ws):
        raise NotImplementedError


class BinanceFuturesFeed(VenueFeed):
    """
    USDT-M futures bookTicker over the combined stream endpoint.
    Subscription is part of the URL; the server pings and aiohttp's autoping answers,
    and an unsolicited pong is sent on every keepalive tick as well.
    """
    venue = BINANCE

    def stream_url(self) -> str:
        # Format: /stream?streams=btcusdt@bookTicker/ethusdt@bookTicker
        streams = [f"{self.normalizer.to_native(self.venue, s).lower()}@bookTicker" for s in self.instruments]
        return f"{self.ws_base_url}/stream?streams={'/'.join(streams)}"

    def subscribe_messages(self) -> List[dict]:
        return []

    def parse_message(self, data: dict) -> Optional[InstrumentPrice]:
        # Combined stream payload: {"stream": "btcusdt@bookTicker", "data": {...}}
        t = data.get('data')
        if not t:
            return None
        native = t['s']
        bid = float(t['b'])
        trade_ms = t.get('T') or t.get('E')
        return InstrumentPrice(
            venue=self.venue,
            symbol=self.normalizer.to_canonical(self.venue, native),
            native_symbol=native,
            bid=bid,
            ask=float(t['a']),
            last_trade_price=float(t.get('c', bid)),
            last_trade_time=trade_ms / 1000 if trade_ms else self.clock(),
            observed_at=self.clock()
        )

    async def send_keepalive(self, ws):
        await ws.pong()


class MexcFuturesFeed(VenueFeed):
    """
    MEXC contract ticker stream. One sub.ticker message per contract, sent in throttled
    batches; the client must ping every 10-20s or the server drops the connection.
    """
    venue = MEXC

    def stream_url(self) -> str:
        return self.ws_base_url

    def subscribe_messages(self) -> List[dict]:
        return [
            {"method": "sub.ticker", "param": {"symbol": self.normalizer.to_native(self.venue, s)}}
            for s in self.instruments
        ]

    def parse_message(self, data: dict) -> Optional[InstrumentPrice]:
        channel = data.get('channel')
        if channel == 'rs.sub.ticker':
            self.logger.debug(f"MEXC: subscription confirmed ({data.get('data')})")
            return None
        if channel != 'push.ticker' or not data.get('data'):
            # pong and other service messages
            return None

        t = data['data']
        native = t['symbol']
        ts_ms = t.get('timestamp') or data.get('ts')
        return InstrumentPrice(
            venue=self.venue,
            symbol=self.normalizer.to_canonical(self.venue, native),
            native_symbol=native,
            bid=float(t['bid1']),
            ask=float(t['ask1']),
            last_trade_price=float(t['lastPrice']),
            last_trade_time=ts_ms / 1000 if ts_ms else self.clock(),
            observed_at=self.clock()
        )

    async def send_keepalive(self, ws):
        await ws.send_json({"method": "ping"})


FEED_CLASSES = {
    BINANCE: BinanceFuturesFeed,
    MEXC: MexcFuturesFeed,
}
