"""Price sources."""
from .adapter import PriceOracleAdapter
from .coingecko import CoinGeckoClient
from .jupiter import JupiterQuoteClient

__all__ = ["CoinGeckoClient", "JupiterQuoteClient", "PriceOracleAdapter"]
