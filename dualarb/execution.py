import asyncio
import itertools
import time
from typing import Callable, Dict, List, Optional
from .costs import CostModel
from .logger import AsyncAuditLogger
from .models import (
    CloseReason, OpenPairing, Opportunity, PairingLeg, PairingStatus, PositionSide, PriceQuote
)

PriceGetter = Callable[[str], Optional[PriceQuote]]
CloseListener = Callable[[OpenPairing], None]

TRADE_LOG_HEADER = [
    "closed_at", "id", "instrument", "long_venue", "short_venue",
    "long_entry", "long_exit", "short_entry", "short_exit",
    "entry_spread_pct", "expected_profit_pct", "realized_profit_pct", "pnl_usd",
    "held_seconds", "reason",
]


class InsufficientBalanceError(Exception):
    def __init__(self, available: float, required: float):
        super().__init__(f"Insufficient balance: ${available:.2f} available, ${required:.2f} required")
        self.available = available
        self.required = required


class PositionLedger:
    """
    Owner of open/closed pairing state. The slot engine only asks for mutations through
    this interface and never touches pairings directly.
    """
    def open_pairing(self, opportunity: Opportunity) -> str:
        raise NotImplementedError

    def close_pairing(self, pairing_id: str, exit_buy_price: float, exit_sell_price: float,
                      reason: CloseReason = CloseReason.MANUAL) -> OpenPairing:
        raise NotImplementedError

    def get_open_pairings(self) -> List[OpenPairing]:
        raise NotImplementedError

    def can_open_new_position(self) -> bool:
        raise NotImplementedError

    def has_open_pairing(self, instrument: str) -> bool:
        return any(p.instrument == instrument for p in self.get_open_pairings())

    def price_getter(self, instrument: str) -> Optional[PriceQuote]:
        raise NotImplementedError


class PaperLedger(PositionLedger):
    """
    Simulated execution: pairings are filled at the quoted prices and tracked against a
    test balance. Margin per leg is position_size_usd / leverage.

    Pairings close on timeout (check_timeouts / run_loop), on spread convergence
    (on_price_update) or on request from the slot engine.
    """
    def __init__(self, config: dict, costs: CostModel, logger,
                 audit_logger: Optional[AsyncAuditLogger] = None, clock: Callable[[], float] = time.time):
        trading = config['trading']
        self.enabled = trading['enabled']
        self.position_size_usd = trading['position_size_usd']
        self.leverage = trading['leverage']
        self.max_open_positions = trading['max_open_positions']
        self.timeout_seconds = trading['position_timeout_seconds']
        self.close_on_convergence = trading['close_on_spread_convergence']
        self.min_profit_to_close = trading['min_profit_to_close_percent']

        self.costs = costs
        self.logger = logger
        self.audit_logger = audit_logger
        self.clock = clock

        self.initial_balance = trading['test_balance_usd']
        self.balance = self.initial_balance
        # Insertion order is the ledger's natural ordering
        self._open: Dict[str, OpenPairing] = {}
        self._closed: List[OpenPairing] = []
        self._ids = itertools.count(1)
        self._price_getter: Optional[PriceGetter] = None
        self._close_listeners: List[CloseListener] = []

    # --- wiring ---

    def set_price_getter(self, getter: PriceGetter):
        self._price_getter = getter

    def add_close_listener(self, listener: CloseListener):
        self._close_listeners.append(listener)

    def price_getter(self, instrument: str) -> Optional[PriceQuote]:
        if self._price_getter is None:
            return None
        return self._price_getter(instrument)

    # --- queries ---

    @property
    def margin_per_pairing(self) -> float:
        return 2 * self.position_size_usd / self.leverage

    def get_open_pairings(self) -> List[OpenPairing]:
        return list(self._open.values())

    def get_closed_pairings(self) -> List[OpenPairing]:
        return list(self._closed)

    def has_open_pairing(self, instrument: str) -> bool:
        return self.find_open(instrument) is not None

    def find_open(self, instrument: str) -> Optional[OpenPairing]:
        for pairing in self._open.values():
            if pairing.instrument == instrument:
                return pairing
        return None

    def can_open_new_position(self) -> bool:
        return self.enabled and len(self._open) < self.max_open_positions

    # --- mutations ---

    def open_pairing(self, opportunity: Opportunity) -> str:
        if self.has_open_pairing(opportunity.instrument):
            raise ValueError(f"{opportunity.instrument} already has an open pairing")

        required = self.margin_per_pairing
        if self.balance < required:
            raise InsufficientBalanceError(self.balance, required)

        now = self.clock()
        pairing = OpenPairing(
            id=f"{opportunity.instrument.replace('/', '')}-{int(now * 1000)}-{next(self._ids)}",
            instrument=opportunity.instrument,
            long_leg=PairingLeg(opportunity.buy_venue, PositionSide.LONG, opportunity.buy_price, self.position_size_usd),
            short_leg=PairingLeg(opportunity.sell_venue, PositionSide.SHORT, opportunity.sell_price, self.position_size_usd),
            entry_spread=opportunity.gross_spread_percent,
            expected_profit=opportunity.net_profit_percent,
            opened_at=now,
            timeout_at=now + self.timeout_seconds
        )
        self.balance -= required
        self._open[pairing.id] = pairing

        self.logger.info(
            f"🟢 OPEN {pairing.instrument} | LONG {pairing.long_venue.upper()} @ {opportunity.buy_price:.6g}"
            f" / SHORT {pairing.short_venue.upper()} @ {opportunity.sell_price:.6g}"
            f" | Spread {opportunity.gross_spread_percent:.2f}% | Net {opportunity.net_profit_percent:.2f}%"
        )
        return pairing.id

    def close_pairing(self, pairing_id: str, exit_buy_price: float, exit_sell_price: float,
                      reason: CloseReason = CloseReason.MANUAL) -> OpenPairing:
        pairing = self._open.pop(pairing_id)
        quote = PriceQuote(buy_price=exit_buy_price, sell_price=exit_sell_price)
        long_pnl, short_pnl = self.costs.leg_profit_percents(pairing, quote)

        pairing.long_leg.exit_price = exit_buy_price
        pairing.short_leg.exit_price = exit_sell_price
        pairing.closed_at = self.clock()
        pairing.close_reason = reason
        pairing.status = PairingStatus.TIMEOUT_CLOSED if reason == CloseReason.TIMEOUT else PairingStatus.CLOSED
        pairing.realized_profit_percent = (long_pnl + short_pnl) / 2
        pairing.realized_pnl_usd = (
            pairing.long_leg.size_usd * long_pnl + pairing.short_leg.size_usd * short_pnl
        ) / 100

        self.balance += self.margin_per_pairing + pairing.realized_pnl_usd
        self._closed.append(pairing)

        self.logger.info(
            f"🔴 CLOSE {pairing.instrument} ({reason.value}) | Profit {pairing.realized_profit_percent:.2f}%"
            f" | PnL ${pairing.realized_pnl_usd:.3f} | Held {pairing.held_seconds:.0f}s"
        )
        if self.audit_logger is not None:
            self.audit_logger.log_row(_trade_row(pairing))

        for listener in self._close_listeners:
            listener(pairing)
        return pairing

    def on_price_update(self, instrument: str) -> Optional[OpenPairing]:
        """
        Closes the instrument's pairing once its cost-adjusted profit reaches the close target.
        """
        if not self.close_on_convergence:
            return None
        pairing = self.find_open(instrument)
        if pairing is None:
            return None
        quote = self.price_getter(instrument)
        if quote is None:
            return None
        if self.costs.pairing_profit_percent(pairing, quote) >= self.min_profit_to_close:
            return self.close_pairing(pairing.id, quote.buy_price, quote.sell_price, CloseReason.CONVERGENCE)
        return None

    def check_timeouts(self, now: Optional[float] = None) -> List[OpenPairing]:
        now = self.clock() if now is None else now
        closed = []
        for pairing in self.get_open_pairings():
            if now < pairing.timeout_at:
                continue
            quote = self.price_getter(pairing.instrument)
            if quote is None:
                self.logger.warning(f"No live prices for {pairing.instrument} at timeout, closing at entry prices")
                quote = PriceQuote(pairing.long_leg.entry_price, pairing.short_leg.entry_price)
            closed.append(self.close_pairing(pairing.id, quote.buy_price, quote.sell_price, CloseReason.TIMEOUT))
        return closed

    async def run_loop(self, interval: float = 1.0):
        while True:
            self.check_timeouts()
            await asyncio.sleep(interval)

    def stats(self) -> dict:
        wins = [p for p in self._closed if (p.realized_pnl_usd or 0) > 0]
        total_pnl = sum(p.realized_pnl_usd or 0 for p in self._closed)
        return {
            'open': len(self._open),
            'closed': len(self._closed),
            'wins': len(wins),
            'losses': len(self._closed) - len(wins),
            'total_pnl_usd': total_pnl,
            'initial_balance': self.initial_balance,
            'balance': self.balance,
        }


def _trade_row(p: OpenPairing) -> list:
    return [
        time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(p.closed_at)),
        p.id,
        p.instrument,
        p.long_venue,
        p.short_venue,
        f"{p.long_leg.entry_price:.8g}",
        f"{p.long_leg.exit_price:.8g}",
        f"{p.short_leg.entry_price:.8g}",
        f"{p.short_leg.exit_price:.8g}",
        f"{p.entry_spread:.4f}",
        f"{p.expected_profit:.4f}",
        f"{p.realized_profit_percent:.4f}",
        f"{p.realized_pnl_usd:.4f}",
        f"{p.held_seconds:.1f}",
        p.close_reason.value,
    ]
