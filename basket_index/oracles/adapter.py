"""One interface over the spot-price and quote sources.

None of these calls retry; each resolves to its documented default on
failure so a valuation can always be computed. Rate-limit placeholders are
reported alongside the values they affect.
"""
from __future__ import annotations

import logging
from typing import Sequence

from ..config import AssetConfig
from ..interfaces.price_oracle import QuoteSource, SpotPriceSource

logger = logging.getLogger(__name__)


class PriceOracleAdapter:
    def __init__(self, spot: SpotPriceSource, quotes: QuoteSource) -> None:
        self._spot = spot
        self._quotes = quotes

    async def fetch_reference(self, coin_id: str) -> tuple[float, bool]:
        """``(price, degraded)`` of ``coin_id``; ``(0.0, False)`` on failure."""
        try:
            prices = await self._spot.fetch_prices([coin_id])
        except Exception as e:
            logger.error("Reference price fetch for %s failed: %s", coin_id, e)
            return 0.0, False
        entry = prices.get(coin_id, {})
        return float(entry.get("price", 0.0)), bool(entry.get("placeholder", False))

    async def fetch_reference_price(self, coin_id: str) -> float:
        price, _ = await self.fetch_reference(coin_id)
        return price

    async def fetch_basket_reference_data(
        self, assets: Sequence[AssetConfig]
    ) -> dict[str, dict[str, float]]:
        """``{mint: {"reference_price", "change_24h", "degraded"}}``; members may be missing."""
        by_coin = {a.coingecko_id: a.mint for a in assets if a.coingecko_id}
        if not by_coin:
            return {}
        try:
            prices = await self._spot.fetch_prices(list(by_coin))
        except Exception as e:
            logger.error("Basket reference data fetch failed: %s", e)
            return {}

        data: dict[str, dict[str, float]] = {}
        for coin_id, mint in by_coin.items():
            entry = prices.get(coin_id)
            if entry is None:
                continue
            data[mint] = {
                "reference_price": entry.get("price", 0.0),
                "change_24h": entry.get("change_24h", 0.0),
                "degraded": bool(entry.get("placeholder", False)),
            }
        return data

    async def fetch_asset_quote_price(self, mint: str) -> float:
        try:
            return await self._quotes.fetch_unit_price(mint)
        except Exception as e:
            logger.error("Quote price fetch for %s failed: %s", mint, e)
            return 0.0
