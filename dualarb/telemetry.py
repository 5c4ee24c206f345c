# dualarb/telemetry.py
import time
from collections import Counter
from typing import Callable, Dict, List, Optional
from .logger import AsyncAuditLogger
from .models import Opportunity, SkippedOpportunity, SkipReason

SKIP_LOG_HEADER = [
    "detected_at", "instrument", "buy_venue", "sell_venue", "buy_price", "sell_price",
    "spread_pct", "profit_pct", "reason", "current_position_profit_pct",
    "available_balance", "required_balance",
]


class SkipRecorder:
    """
    Append-only log of opportunities the slot engine considered and turned down.
    Kept in memory for the session summary and mirrored to the CSV audit trail.
    """
    def __init__(self, logger, audit_logger: Optional[AsyncAuditLogger] = None,
                 clock: Callable[[], float] = time.time):
        self.logger = logger
        self.audit_logger = audit_logger
        self.clock = clock
        self._skipped: List[SkippedOpportunity] = []

    def record_skipped(self, opportunity: Opportunity, reason: SkipReason,
                       current_position_profit: Optional[float] = None,
                       available_balance: Optional[float] = None,
                       required_balance: Optional[float] = None) -> SkippedOpportunity:
        skipped = SkippedOpportunity(
            instrument=opportunity.instrument,
            buy_venue=opportunity.buy_venue,
            sell_venue=opportunity.sell_venue,
            buy_price=opportunity.buy_price,
            sell_price=opportunity.sell_price,
            gross_spread_percent=opportunity.gross_spread_percent,
            net_profit_percent=opportunity.net_profit_percent,
            reason=reason,
            detected_at=opportunity.detected_at,
            current_position_profit=current_position_profit,
            available_balance=available_balance,
            required_balance=required_balance
        )
        self._skipped.append(skipped)

        self.logger.info(
            f"⏭️ SKIP {skipped.instrument} ({reason.value}) | Buy {skipped.buy_venue.upper()}"
            f" -> Sell {skipped.sell_venue.upper()} | Net {skipped.net_profit_percent:.2f}%"
        )
        if self.audit_logger is not None:
            self.audit_logger.log_row(_skip_row(skipped))
        return skipped

    def skipped(self) -> List[SkippedOpportunity]:
        return list(self._skipped)

    def counts_by_reason(self) -> Dict[str, int]:
        return dict(Counter(s.reason.value for s in self._skipped))


def _optional(value: Optional[float], fmt: str) -> str:
    return "" if value is None else format(value, fmt)


def _skip_row(s: SkippedOpportunity) -> list:
    return [
        time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(s.detected_at)),
        s.instrument,
        s.buy_venue,
        s.sell_venue,
        f"{s.buy_price:.8g}",
        f"{s.sell_price:.8g}",
        f"{s.gross_spread_percent:.4f}",
        f"{s.net_profit_percent:.4f}",
        s.reason.value,
        _optional(s.current_position_profit, ".4f"),
        _optional(s.available_balance, ".2f"),
        _optional(s.required_balance, ".2f"),
    ]
