"""Protocol interfaces for the index settlement client."""
from .chain import LedgerClient
from .price_oracle import QuoteSource, SpotPriceSource
from .store import BalanceStore

__all__ = ["BalanceStore", "LedgerClient", "QuoteSource", "SpotPriceSource"]
