# dualarb/models.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import time

BINANCE = "binance"
MEXC = "mexc"
VENUES = (BINANCE, MEXC)


class SkipReason(Enum):
    """
    Why a detected opportunity was not turned into a pairing.
    """
    POSITION_NOT_PROFITABLE = "POSITION_NOT_PROFITABLE"
    NO_FREE_SLOTS = "NO_FREE_SLOTS"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class PositionSide(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PairingStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    TIMEOUT_CLOSED = "TIMEOUT_CLOSED"


class CloseReason(Enum):
    TIMEOUT = "TIMEOUT"
    CONVERGENCE = "CONVERGENCE"
    REPLACED = "REPLACED"
    MANUAL = "MANUAL"
    SHUTDOWN = "SHUTDOWN"


@dataclass(slots=True)
class InstrumentPrice:
    """
    Latest top-of-book snapshot for one instrument on one venue.
    Using __slots__ since one of these is built for every tick.
    """
    venue: str
    symbol: str          # canonical, e.g. BTC/USDT
    native_symbol: str   # as the venue spells it
    bid: float
    ask: float
    last_trade_price: float
    last_trade_time: float
    observed_at: float

    @property
    def age(self) -> float:
        """Returns the age of the data in seconds."""
        return time.time() - self.observed_at


@dataclass(frozen=True, slots=True)
class Opportunity:
    """
    A cost-checked cross-venue signal passed from the detector to the slot engine.
    """
    instrument: str
    buy_venue: str
    sell_venue: str
    buy_price: float
    sell_price: float
    gross_spread_percent: float
    net_profit_percent: float
    detected_at: float


@dataclass(frozen=True, slots=True)
class SkippedOpportunity:
    instrument: str
    buy_venue: str
    sell_venue: str
    buy_price: float
    sell_price: float
    gross_spread_percent: float
    net_profit_percent: float
    reason: SkipReason
    detected_at: float
    current_position_profit: Optional[float] = None
    available_balance: Optional[float] = None
    required_balance: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """Best cross-venue buy/sell prices for an instrument right now."""
    buy_price: float
    sell_price: float


@dataclass(slots=True)
class PairingLeg:
    venue: str
    side: PositionSide
    entry_price: float
    size_usd: float
    exit_price: Optional[float] = None


@dataclass(slots=True)
class OpenPairing:
    """
    A long leg on the cheap venue and a short leg on the rich venue, traded as one unit.
    Owned and mutated by the ledger only.
    """
    id: str
    instrument: str
    long_leg: PairingLeg
    short_leg: PairingLeg
    entry_spread: float
    expected_profit: float
    opened_at: float
    timeout_at: float
    status: PairingStatus = PairingStatus.OPEN
    closed_at: Optional[float] = None
    close_reason: Optional[CloseReason] = None
    realized_profit_percent: Optional[float] = None
    realized_pnl_usd: Optional[float] = None

    @property
    def long_venue(self) -> str:
        return self.long_leg.venue

    @property
    def short_venue(self) -> str:
        return self.short_leg.venue

    @property
    def held_seconds(self) -> Optional[float]:
        if self.closed_at is None:
            return None
        return self.closed_at - self.opened_at


@dataclass(slots=True)
class Downtime:
    venue: str
    disconnected_at: float
    reason: str
    reconnected_at: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        """Seconds between disconnect and reconnect, None while the outage is ongoing."""
        if self.reconnected_at is None:
            return None
        return self.reconnected_at - self.disconnected_at
