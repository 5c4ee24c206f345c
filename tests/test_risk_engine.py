"""Tests for the slot decision engine and the cooldown book."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import pytest

from dualarb.config import build_config
from dualarb.costs import CostModel
from dualarb.execution import InsufficientBalanceError, PositionLedger
from dualarb.models import (
    CloseReason, OpenPairing, Opportunity, PairingLeg, PositionSide, PriceQuote, SkipReason
)
from dualarb.risk_engine import CooldownBook, Decision, InstrumentState, SlotDecisionEngine
from dualarb.telemetry import SkipRecorder
from tests.helpers import FakeClock, make_opportunity


def _pairing(pid: str, instrument: str, long_entry: float = 100.0, short_entry: float = 101.0,
             opened_at: float = 0.0) -> OpenPairing:
    return OpenPairing(
        id=pid,
        instrument=instrument,
        long_leg=PairingLeg("binance", PositionSide.LONG, long_entry, 100.0),
        short_leg=PairingLeg("mexc", PositionSide.SHORT, short_entry, 100.0),
        entry_spread=1.0,
        expected_profit=0.6,
        opened_at=opened_at,
        timeout_at=opened_at + 600,
    )


class FakeLedger(PositionLedger):
    """Records every mutation request; prices come from a dict."""

    def __init__(self, max_open: int = 2) -> None:
        self.max_open = max_open
        self.pairings: List[OpenPairing] = []
        self.quotes: Dict[str, PriceQuote] = {}
        self.opened: List[Opportunity] = []
        self.closed: List[tuple] = []
        self.refuse_balance = False

    def open_pairing(self, opportunity: Opportunity) -> str:
        if self.refuse_balance:
            raise InsufficientBalanceError(10.0, 40.0)
        self.opened.append(opportunity)
        pid = f"new-{len(self.opened)}"
        self.pairings.append(_pairing(pid, opportunity.instrument, opportunity.buy_price, opportunity.sell_price))
        return pid

    def close_pairing(self, pairing_id: str, exit_buy_price: float, exit_sell_price: float,
                      reason: CloseReason = CloseReason.MANUAL) -> OpenPairing:
        self.closed.append((pairing_id, exit_buy_price, exit_sell_price, reason))
        pairing = next(p for p in self.pairings if p.id == pairing_id)
        self.pairings.remove(pairing)
        return pairing

    def get_open_pairings(self) -> List[OpenPairing]:
        return list(self.pairings)

    def can_open_new_position(self) -> bool:
        return len(self.pairings) < self.max_open

    def price_getter(self, instrument: str) -> Optional[PriceQuote]:
        return self.quotes.get(instrument)


# Quotes relative to a pairing entered long 100 / short 101 with 0.18% cost per fill
QUOTE_PROFIT_HIGH = PriceQuote(buy_price=101.0, sell_price=100.0)    # ~ +0.63%
QUOTE_PROFIT_LOW = PriceQuote(buy_price=100.0, sell_price=101.0)     # ~ -0.36%


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(max_open=2)


@pytest.fixture
def recorder(logger: logging.Logger) -> SkipRecorder:
    return SkipRecorder(logger)


def _engine(config: dict, ledger: FakeLedger, recorder: SkipRecorder, logger: logging.Logger,
            cooldowns: CooldownBook | None = None) -> SlotDecisionEngine:
    return SlotDecisionEngine(config, ledger, CostModel(config), recorder, logger, cooldowns)


class TestFreeSlots:
    def test_opens_when_slot_free(self, config, ledger, recorder, logger) -> None:
        engine = _engine(config, ledger, recorder, logger)
        assert engine.handle(make_opportunity("BTC/USDT")) == Decision.OPENED
        assert [o.instrument for o in ledger.opened] == ["BTC/USDT"]
        assert recorder.skipped() == []

    def test_duplicate_instrument_discarded_silently(self, config, ledger, recorder, logger) -> None:
        engine = _engine(config, ledger, recorder, logger)
        engine.handle(make_opportunity("BTC/USDT"))
        assert engine.handle(make_opportunity("BTC/USDT", net=5.0)) == Decision.DUPLICATE
        assert len(ledger.opened) == 1
        assert recorder.skipped() == []

    def test_at_most_one_pairing_per_instrument(self, config, ledger, recorder, logger) -> None:
        ledger.max_open = 10
        engine = _engine(config, ledger, recorder, logger)
        for _ in range(5):
            for symbol in ("BTC/USDT", "ETH/USDT", "BTC/USDT"):
                engine.handle(make_opportunity(symbol))
        instruments = [p.instrument for p in ledger.get_open_pairings()]
        assert sorted(instruments) == ["BTC/USDT", "ETH/USDT"]

    def test_insufficient_balance_recorded(self, config, ledger, recorder, logger) -> None:
        ledger.refuse_balance = True
        engine = _engine(config, ledger, recorder, logger)
        assert engine.handle(make_opportunity("BTC/USDT")) == Decision.SKIPPED
        skipped = recorder.skipped()[0]
        assert skipped.reason == SkipReason.INSUFFICIENT_BALANCE
        assert (skipped.available_balance, skipped.required_balance) == (10.0, 40.0)


class TestFullSlots:
    def _fill(self, ledger: FakeLedger) -> None:
        ledger.pairings = [_pairing("p1", "ETH/USDT"), _pairing("p2", "SOL/USDT")]

    def test_replaces_first_profitable_pairing(self, config, ledger, recorder, logger) -> None:
        self._fill(ledger)
        ledger.quotes = {"ETH/USDT": QUOTE_PROFIT_HIGH, "SOL/USDT": QUOTE_PROFIT_HIGH}
        engine = _engine(config, ledger, recorder, logger)

        assert engine.handle(make_opportunity("BTC/USDT", net=2.0)) == Decision.REPLACED
        assert ledger.closed == [("p1", 101.0, 100.0, CloseReason.REPLACED)]
        assert [o.instrument for o in ledger.opened] == ["BTC/USDT"]
        assert recorder.skipped() == []

    def test_replacement_only_when_new_is_better(self, config, ledger, recorder, logger) -> None:
        self._fill(ledger)
        ledger.quotes = {"ETH/USDT": QUOTE_PROFIT_HIGH, "SOL/USDT": QUOTE_PROFIT_HIGH}
        engine = _engine(config, ledger, recorder, logger)

        assert engine.handle(make_opportunity("BTC/USDT", net=0.3)) == Decision.SKIPPED
        assert ledger.closed == []
        assert ledger.opened == []
        assert recorder.skipped()[0].reason == SkipReason.NO_FREE_SLOTS

    def test_unprofitable_pairing_blocks_with_reason(self, config, ledger, recorder, logger) -> None:
        self._fill(ledger)
        ledger.quotes = {"ETH/USDT": QUOTE_PROFIT_LOW, "SOL/USDT": QUOTE_PROFIT_HIGH}
        engine = _engine(config, ledger, recorder, logger)

        assert engine.handle(make_opportunity("BTC/USDT", net=2.0)) == Decision.SKIPPED
        assert ledger.closed == []
        skipped = recorder.skipped()[0]
        assert skipped.reason == SkipReason.POSITION_NOT_PROFITABLE
        expected = CostModel(config).pairing_profit_percent(ledger.pairings[0], QUOTE_PROFIT_LOW)
        assert skipped.current_position_profit == pytest.approx(expected)

    def test_first_fit_not_best_fit(self, config, ledger, recorder, logger) -> None:
        # SOL is less profitable than ETH but ETH comes first in ledger order
        self._fill(ledger)
        ledger.quotes = {"ETH/USDT": QUOTE_PROFIT_HIGH,
                         "SOL/USDT": PriceQuote(buy_price=100.6, sell_price=100.4)}
        engine = _engine(config, ledger, recorder, logger)
        engine.handle(make_opportunity("BTC/USDT", net=5.0))
        assert [c[0] for c in ledger.closed] == ["p1"]

    def test_missing_quote_skips_pairing(self, config, ledger, recorder, logger, caplog) -> None:
        self._fill(ledger)
        ledger.quotes = {"SOL/USDT": QUOTE_PROFIT_HIGH}
        engine = _engine(config, ledger, recorder, logger)

        with caplog.at_level(logging.WARNING, logger=logger.name):
            assert engine.handle(make_opportunity("BTC/USDT", net=2.0)) == Decision.REPLACED
        assert [c[0] for c in ledger.closed] == ["p2"]
        assert "ETH/USDT" in caplog.text

    def test_no_quotes_at_all_means_no_free_slots(self, config, ledger, recorder, logger) -> None:
        self._fill(ledger)
        engine = _engine(config, ledger, recorder, logger)
        assert engine.handle(make_opportunity("BTC/USDT", net=2.0)) == Decision.SKIPPED
        assert recorder.skipped()[0].reason == SkipReason.NO_FREE_SLOTS

    def test_replacement_disabled(self, ledger, recorder, logger) -> None:
        config = build_config({"trading": {"close_on_new_opportunity": False}})
        self._fill(ledger)
        ledger.quotes = {"ETH/USDT": QUOTE_PROFIT_LOW, "SOL/USDT": QUOTE_PROFIT_LOW}
        engine = _engine(config, ledger, recorder, logger)

        assert engine.handle(make_opportunity("BTC/USDT", net=2.0)) == Decision.SKIPPED
        assert ledger.closed == []
        assert ledger.opened == []
        assert [s.reason for s in recorder.skipped()] == [SkipReason.NO_FREE_SLOTS]


class TestCooldownBook:
    def _closed(self, instrument: str, opened_at: float, closed_at: float,
                reason: CloseReason = CloseReason.CONVERGENCE) -> OpenPairing:
        p = _pairing("x", instrument, opened_at=opened_at)
        p.closed_at = closed_at
        p.close_reason = reason
        return p

    def _book(self, logger: logging.Logger, clock: FakeClock, **cfg) -> CooldownBook:
        base = {"cooldown_seconds": 300, "flash_threshold_seconds": 2, "max_flash_strikes": 3}
        base.update(cfg)
        return CooldownBook(build_config({"cooldown": base}), logger, clock)

    def test_cooldown_after_normal_close(self, logger, clock) -> None:
        book = self._book(logger, clock)
        book.on_pairing_closed(self._closed("BTC/USDT", clock() - 60, clock()))
        assert book.state("BTC/USDT") == InstrumentState.COOLING
        clock.advance(301)
        assert book.state("BTC/USDT") == InstrumentState.ELIGIBLE

    def test_flash_strikes_exclude(self, logger, clock) -> None:
        book = self._book(logger, clock)
        for _ in range(2):
            book.on_pairing_closed(self._closed("BTC/USDT", clock() - 1, clock()))
            assert book.state("BTC/USDT") == InstrumentState.ELIGIBLE
        book.on_pairing_closed(self._closed("BTC/USDT", clock() - 1, clock()))
        assert book.state("BTC/USDT") == InstrumentState.EXCLUDED
        clock.advance(10_000)
        assert book.is_blocked("BTC/USDT")

    def test_replaced_pairings_not_counted(self, logger, clock) -> None:
        book = self._book(logger, clock)
        book.on_pairing_closed(self._closed("BTC/USDT", clock() - 1, clock(), CloseReason.REPLACED))
        assert book.strikes == {}
        assert book.state("BTC/USDT") == InstrumentState.ELIGIBLE

    def test_disabled_by_default(self, logger, clock) -> None:
        book = self._book(logger, clock, cooldown_seconds=0, flash_threshold_seconds=0)
        book.on_pairing_closed(self._closed("BTC/USDT", clock(), clock()))
        assert book.state("BTC/USDT") == InstrumentState.ELIGIBLE

    def test_engine_respects_cooldown(self, config, ledger, recorder, logger, clock) -> None:
        book = self._book(logger, clock)
        book.on_pairing_closed(self._closed("BTC/USDT", clock() - 60, clock()))
        engine = _engine(config, ledger, recorder, logger, book)
        assert engine.handle(make_opportunity("BTC/USDT")) == Decision.BLOCKED
        assert ledger.opened == []
        assert recorder.skipped() == []
