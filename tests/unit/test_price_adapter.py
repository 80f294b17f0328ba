"""Unit tests for the price oracle adapter."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from basket_index.config import AssetConfig
from basket_index.oracles import PriceOracleAdapter

ASSETS = (
    AssetConfig("BONK", "m-bonk", "bonk"),
    AssetConfig("WIF", "m-wif", "dogwifcoin"),
    AssetConfig("NEW", "m-new", ""),
)


def _spot(prices: dict) -> MagicMock:
    spot = MagicMock()
    spot.fetch_prices = AsyncMock(return_value=prices)
    return spot


class TestPriceOracleAdapter:
    @pytest.mark.asyncio
    async def test_reference_price(self) -> None:
        adapter = PriceOracleAdapter(_spot({"solana": {"price": 150.0}}), MagicMock())
        assert await adapter.fetch_reference_price("solana") == 150.0

    @pytest.mark.asyncio
    async def test_reference_price_failure_is_zero(self) -> None:
        spot = MagicMock()
        spot.fetch_prices = AsyncMock(side_effect=RuntimeError("boom"))
        adapter = PriceOracleAdapter(spot, MagicMock())
        assert await adapter.fetch_reference_price("solana") == 0.0

    @pytest.mark.asyncio
    async def test_basket_data_keyed_by_mint(self) -> None:
        spot = _spot({"bonk": {"price": 0.00002, "change_24h": 3.0}})
        adapter = PriceOracleAdapter(spot, MagicMock())

        data = await adapter.fetch_basket_reference_data(ASSETS)

        assert data == {
            "m-bonk": {"reference_price": 0.00002, "change_24h": 3.0, "degraded": False}
        }
        spot.fetch_prices.assert_awaited_once_with(["bonk", "dogwifcoin"])

    @pytest.mark.asyncio
    async def test_placeholder_reference_reported_as_degraded(self) -> None:
        spot = _spot({"solana": {"price": 0.01, "change_24h": 0.0, "placeholder": True}})
        adapter = PriceOracleAdapter(spot, MagicMock())

        assert await adapter.fetch_reference("solana") == (0.01, True)

    @pytest.mark.asyncio
    async def test_placeholder_members_flagged(self) -> None:
        spot = _spot({
            "bonk": {"price": 0.01, "change_24h": 0.0, "placeholder": True},
            "dogwifcoin": {"price": 2.0, "change_24h": 1.0},
        })
        adapter = PriceOracleAdapter(spot, MagicMock())

        data = await adapter.fetch_basket_reference_data(ASSETS)

        assert data["m-bonk"]["degraded"] is True
        assert data["m-wif"]["degraded"] is False

    @pytest.mark.asyncio
    async def test_quote_failure_is_zero(self) -> None:
        quotes = MagicMock()
        quotes.fetch_unit_price = AsyncMock(side_effect=ConnectionError("down"))
        adapter = PriceOracleAdapter(_spot({}), quotes)
        assert await adapter.fetch_asset_quote_price("m-bonk") == 0.0
