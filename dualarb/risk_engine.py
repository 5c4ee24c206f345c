from .costs import CostModel
from .execution import InsufficientBalanceError, PositionLedger
from .models import CloseReason, OpenPairing, Opportunity, SkipReason
from .telemetry import SkipRecorder
from enum import Enum
from typing import Callable, Dict
import logging
import time


class Decision(Enum):
    OPENED = "OPENED"
    REPLACED = "REPLACED"
    DUPLICATE = "DUPLICATE"
    BLOCKED = "BLOCKED"
    SKIPPED = "SKIPPED"


class InstrumentState(Enum):
    ELIGIBLE = "ELIGIBLE"
    COOLING = "COOLING"
    EXCLUDED = "EXCLUDED"


class CooldownBook:
    """
    Per-instrument re-entry guard.

    A pairing that lived shorter than flash_threshold_seconds is a flash trade and earns
    a strike; max_flash_strikes strikes exclude the instrument for the rest of the session.
    Any other close puts the instrument on cooldown for cooldown_seconds.
    Pairings closed to make room for a better one are not counted.
    """
    def __init__(self, config: dict, logger: logging.Logger, clock: Callable[[], float] = time.time):
        cfg = config['cooldown']
        self.cooldown_seconds = cfg['cooldown_seconds']
        self.flash_threshold = cfg['flash_threshold_seconds']
        self.max_strikes = cfg['max_flash_strikes']
        self.logger = logger
        self.clock = clock

        self.next_eligible: Dict[str, float] = {}
        self.strikes: Dict[str, int] = {}
        self.excluded = set()

    def state(self, instrument: str) -> InstrumentState:
        if instrument in self.excluded:
            return InstrumentState.EXCLUDED
        if self.next_eligible.get(instrument, 0.0) > self.clock():
            return InstrumentState.COOLING
        return InstrumentState.ELIGIBLE

    def is_blocked(self, instrument: str) -> bool:
        return self.state(instrument) != InstrumentState.ELIGIBLE

    def on_pairing_closed(self, pairing: OpenPairing):
        if pairing.close_reason in (CloseReason.REPLACED, CloseReason.SHUTDOWN):
            return
        instrument = pairing.instrument
        held = pairing.held_seconds or 0.0

        if held < self.flash_threshold:
            self.strikes[instrument] = self.strikes.get(instrument, 0) + 1
            self.logger.warning(f"⚠️ FLASH: {instrument} closed after {held:.1f}s "
                                f"(strike {self.strikes[instrument]}/{self.max_strikes})")
            if self.strikes[instrument] >= self.max_strikes:
                self.excluded.add(instrument)
                self.next_eligible.pop(instrument, None)
                self.logger.error(f"⛔ EXCLUDED: {instrument} after {self.strikes[instrument]} flash trades")
            return

        if self.cooldown_seconds > 0:
            self.next_eligible[instrument] = pairing.closed_at + self.cooldown_seconds


class SlotDecisionEngine:
    """
    Decides what to do with each Opportunity given the capital slots.
    Open slot -> open. Full -> maybe replace the first open pairing that is both worth
    keeping and beaten by the newcomer. Otherwise record why it was skipped.
    The free-slot count is always asked from the ledger, never cached here.
    """
    def __init__(self, config: dict, ledger: PositionLedger, costs: CostModel, telemetry: SkipRecorder,
                 logger: logging.Logger, cooldowns: CooldownBook = None):
        self.ledger = ledger
        self.costs = costs
        self.telemetry = telemetry
        self.logger = logger
        self.cooldowns = cooldowns

        self.min_profit_to_notify = config['notifications']['min_spread_to_notify']
        self.close_on_new_opportunity = config['trading']['close_on_new_opportunity']

    def handle(self, opp: Opportunity) -> Decision:
        # 1. Never enter the same instrument twice
        if self.ledger.has_open_pairing(opp.instrument):
            return Decision.DUPLICATE

        # 2. Cooling down or excluded after flash trades
        if self.cooldowns is not None and self.cooldowns.is_blocked(opp.instrument):
            return Decision.BLOCKED

        # 3. Free slot
        if self.ledger.can_open_new_position():
            return self._open(opp, Decision.OPENED)

        # 4. Slots full: first-fit replacement
        if self.close_on_new_opportunity:
            for pairing in self.ledger.get_open_pairings():
                quote = self.ledger.price_getter(pairing.instrument)
                if quote is None:
                    self.logger.warning(f"No live prices for {pairing.instrument}, skipping it in replacement check")
                    continue

                current = self.costs.pairing_profit_percent(pairing, quote)

                if current >= self.min_profit_to_notify:
                    if opp.net_profit_percent > current:
                        self.logger.info(
                            f"🔁 REPLACE {pairing.instrument} ({current:.2f}%) with "
                            f"{opp.instrument} ({opp.net_profit_percent:.2f}%)"
                        )
                        self.ledger.close_pairing(pairing.id, quote.buy_price, quote.sell_price, CloseReason.REPLACED)
                        return self._open(opp, Decision.REPLACED)
                else:
                    # The occupying pairing is not worth giving up yet
                    self.telemetry.record_skipped(
                        opp, SkipReason.POSITION_NOT_PROFITABLE, current_position_profit=current
                    )
                    return Decision.SKIPPED

        # 5. Nothing could be freed
        self.telemetry.record_skipped(opp, SkipReason.NO_FREE_SLOTS)
        return Decision.SKIPPED

    def _open(self, opp: Opportunity, decision: Decision) -> Decision:
        try:
            self.ledger.open_pairing(opp)
        except InsufficientBalanceError as e:
            self.telemetry.record_skipped(
                opp, SkipReason.INSUFFICIENT_BALANCE,
                available_balance=e.available, required_balance=e.required
            )
            return Decision.SKIPPED
        return decision
