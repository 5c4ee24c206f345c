# dualarb/symbols.py
from typing import Iterable, List, Sequence
from .models import BINANCE, MEXC


class SymbolNormalizer:
    """
    Maps venue-native contract names onto one canonical BASE/QUOTE form and back.

    Binance USDT-M: BTCUSDT   <->  BTC/USDT
    MEXC contract:  BTC_USDT  <->  BTC/USDT
    """
    def __init__(self, quote_assets: Sequence[str] = ("USDT",)):
        # Longest quote first so e.g. FDUSD wins over USD
        self.quote_assets = sorted({q.upper() for q in quote_assets}, key=len, reverse=True)

    def to_canonical(self, venue: str, native: str) -> str:
        native = native.upper()
        if venue == BINANCE:
            for quote in self.quote_assets:
                if native.endswith(quote) and len(native) > len(quote):
                    return f"{native[:-len(quote)]}/{quote}"
            raise ValueError(f"Unsupported binance symbol: {native}")
        if venue == MEXC:
            base, sep, quote = native.partition('_')
            if not sep or not base or quote not in self.quote_assets:
                raise ValueError(f"Unsupported mexc symbol: {native}")
            return f"{base}/{quote}"
        raise ValueError(f"Unknown venue: {venue}")

    def to_native(self, venue: str, canonical: str) -> str:
        base, sep, quote = canonical.upper().partition('/')
        if not sep or not base or quote not in self.quote_assets:
            raise ValueError(f"Not a canonical symbol: {canonical}")
        if venue == BINANCE:
            return f"{base}{quote}"
        if venue == MEXC:
            return f"{base}_{quote}"
        raise ValueError(f"Unknown venue: {venue}")

    def is_supported(self, venue: str, native: str) -> bool:
        try:
            self.to_canonical(venue, native)
        except ValueError:
            return False
        return True

    def common_instruments(self, binance_natives: Iterable[str], mexc_natives: Iterable[str],
                           exclude: Iterable[str] = ()) -> List[str]:
        """
        Canonical symbols listed on both venues, in Binance (volume) order, minus exclusions.
        """
        excluded = {s.upper() for s in exclude}
        on_mexc = {self.to_canonical(MEXC, s) for s in mexc_natives}
        common = []
        for native in binance_natives:
            canonical = self.to_canonical(BINANCE, native)
            if canonical in on_mexc and canonical not in excluded and canonical not in common:
                common.append(canonical)
        return common
