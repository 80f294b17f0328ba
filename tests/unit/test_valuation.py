"""Unit tests for index valuation — NAV, reference value and 24h change."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from basket_index.config import AppConfig, AssetConfig
from basket_index.services.valuation import (
    CHANGE_CEILING,
    CHANGE_FLOOR,
    BasketValuator,
    IndexRefresher,
    build_snapshot,
    clamp_change,
)

ASSETS = tuple(AssetConfig(symbol=f"A{i}", mint=f"m{i}", coingecko_id=f"c{i}") for i in range(5))


def _reference(changes: list[float | None]) -> dict[str, dict[str, float]]:
    return {
        f"m{i}": {"reference_price": 1.0, "change_24h": c}
        for i, c in enumerate(changes)
        if c is not None
    }


class TestBuildSnapshot:
    def test_nav_is_sum_of_member_prices(self) -> None:
        quotes = {f"m{i}": p for i, p in enumerate([0.1, 0.2, 0.3, 0.4, 0.5])}
        snapshot = build_snapshot(ASSETS, quotes, {}, reference_price=100.0)

        assert snapshot.total_value == pytest.approx(1.5)
        assert snapshot.total_value_reference == pytest.approx(150.0)
        assert [a.symbol for a in snapshot.assets] == ["A0", "A1", "A2", "A3", "A4"]

    def test_member_changes_clamped_before_mean(self) -> None:
        snapshot = build_snapshot(
            ASSETS, {}, _reference([-150, 2000, 10, 10, 10]), reference_price=0.0
        )
        # (-99 + 999 + 10 + 10 + 10) / 5
        assert snapshot.change_24h == pytest.approx(186.0)
        assert [a.change_24h for a in snapshot.assets] == [-99.0, 999.0, 10.0, 10.0, 10.0]

    def test_change_clamped_high(self) -> None:
        snapshot = build_snapshot(ASSETS, {}, _reference([2000] * 5), reference_price=0.0)
        assert snapshot.change_24h == CHANGE_CEILING

    def test_change_clamped_low(self) -> None:
        snapshot = build_snapshot(ASSETS, {}, _reference([-150] * 5), reference_price=0.0)
        assert snapshot.change_24h == CHANGE_FLOOR

    def test_missing_change_counts_as_zero(self) -> None:
        snapshot = build_snapshot(
            ASSETS, {}, _reference([10, 10, 10, 10, None]), reference_price=0.0
        )
        assert snapshot.change_24h == pytest.approx(8.0)

    def test_missing_quote_contributes_zero(self) -> None:
        quotes = {"m0": 0.5, "m1": 0.25}
        snapshot = build_snapshot(ASSETS, quotes, {}, reference_price=2.0)
        assert snapshot.total_value == pytest.approx(0.75)
        assert snapshot.assets[4].price == 0.0

    def test_non_finite_inputs_become_zero(self) -> None:
        quotes = {"m0": float("nan"), "m1": float("inf"), "m2": 0.3}
        snapshot = build_snapshot(ASSETS, quotes, {}, reference_price=float("nan"))
        assert snapshot.total_value == pytest.approx(0.3)
        assert snapshot.total_value_reference == 0.0

    def test_empty_basket(self) -> None:
        snapshot = build_snapshot((), {}, {}, reference_price=100.0)
        assert snapshot.total_value == 0.0
        assert snapshot.change_24h == 0.0

    def test_degraded_passthrough(self) -> None:
        snapshot = build_snapshot(ASSETS, {}, {}, reference_price=0.0, degraded=True)
        assert snapshot.degraded is True


class TestClampChange:
    def test_bounds(self) -> None:
        assert clamp_change(-1000.0) == -99.0
        assert clamp_change(5000.0) == 999.0
        assert clamp_change(12.5) == 12.5


def _oracle(
    quotes: dict[str, float], reference: dict, reference_price: float = 100.0
) -> MagicMock:
    oracle = MagicMock()
    oracle.fetch_reference = AsyncMock(return_value=(reference_price, False))
    oracle.fetch_basket_reference_data = AsyncMock(return_value=reference)
    oracle.fetch_asset_quote_price = AsyncMock(side_effect=lambda mint: quotes.get(mint, 0.0))
    return oracle


class TestBasketValuator:
    @pytest.mark.asyncio
    async def test_snapshot_joins_all_fetches(self, sample_app_config: AppConfig) -> None:
        mints = sample_app_config.index.basket.mints
        oracle = _oracle({m: 0.2 for m in mints}, {mints[0]: {"change_24h": 5.0}})
        ledger = MagicMock()
        ledger.get_balance = AsyncMock(return_value=1_500_000_000)

        valuator = BasketValuator(sample_app_config, oracle, ledger)
        snapshot = await valuator.snapshot("owner")

        assert snapshot.total_value == pytest.approx(1.0)
        assert snapshot.total_value_reference == pytest.approx(100.0)
        assert snapshot.change_24h == pytest.approx(1.0)
        assert snapshot.settlement_balance == pytest.approx(1.5)
        assert snapshot.degraded is False
        oracle.fetch_reference.assert_awaited_once_with("solana")
        assert oracle.fetch_asset_quote_price.await_count == len(mints)

    @pytest.mark.asyncio
    async def test_placeholder_reference_data_marks_snapshot_degraded(
        self, sample_app_config: AppConfig
    ) -> None:
        mints = sample_app_config.index.basket.mints
        reference = {mints[0]: {"change_24h": 0.0, "degraded": True}}
        valuator = BasketValuator(sample_app_config, _oracle({}, reference))

        snapshot = await valuator.snapshot()

        assert snapshot.degraded is True

    @pytest.mark.asyncio
    async def test_concurrent_snapshots_keep_their_own_status(
        self, sample_app_config: AppConfig
    ) -> None:
        limited_started = asyncio.Event()
        release_limited = asyncio.Event()
        calls = 0

        async def fetch_reference(coin_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                limited_started.set()
                await release_limited.wait()
                return 0.01, True
            return 150.0, False

        oracle = _oracle({}, {})
        oracle.fetch_reference = fetch_reference
        valuator = BasketValuator(sample_app_config, oracle)

        limited = asyncio.create_task(valuator.snapshot())
        await limited_started.wait()
        healthy = await valuator.snapshot()
        release_limited.set()

        assert healthy.degraded is False
        assert (await limited).degraded is True

    @pytest.mark.asyncio
    async def test_balance_zero_without_owner(self, sample_app_config: AppConfig) -> None:
        ledger = MagicMock()
        ledger.get_balance = AsyncMock(return_value=1)
        valuator = BasketValuator(sample_app_config, _oracle({}, {}), ledger)

        snapshot = await valuator.snapshot()

        assert snapshot.settlement_balance == 0.0
        ledger.get_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_balance_failure_defaults_to_zero(self, sample_app_config: AppConfig) -> None:
        ledger = MagicMock()
        ledger.get_balance = AsyncMock(side_effect=ConnectionError("down"))
        valuator = BasketValuator(sample_app_config, _oracle({}, {}), ledger)

        snapshot = await valuator.snapshot("owner")

        assert snapshot.settlement_balance == 0.0


class TestIndexRefresher:
    @pytest.mark.asyncio
    async def test_refresh_publishes_latest(self) -> None:
        valuator = MagicMock()
        valuator.snapshot = AsyncMock(return_value="snap")
        published: list = []

        async def on_snapshot(s) -> None:
            published.append(s)

        refresher = IndexRefresher(valuator, 30, on_snapshot=on_snapshot)
        assert await refresher.refresh("owner") == "snap"
        assert refresher.latest == "snap"
        assert published == ["snap"]

    @pytest.mark.asyncio
    async def test_stale_refresh_dropped(self) -> None:
        slow_started = asyncio.Event()
        release_slow = asyncio.Event()

        async def snapshot(owner):
            if owner == "slow":
                slow_started.set()
                await release_slow.wait()
                return "old"
            return "new"

        valuator = MagicMock()
        valuator.snapshot = snapshot
        refresher = IndexRefresher(valuator, 30)

        slow = asyncio.create_task(refresher.refresh("slow"))
        await slow_started.wait()
        assert await refresher.refresh("fast") == "new"
        release_slow.set()

        assert await slow is None
        assert refresher.latest == "new"

    @pytest.mark.asyncio
    async def test_run_survives_errors(self) -> None:
        valuator = MagicMock()
        valuator.snapshot = AsyncMock(side_effect=[RuntimeError("boom"), "ok", "ok"])

        refresher = IndexRefresher(valuator, 0)
        await refresher.run(iterations=3)

        assert valuator.snapshot.await_count == 3
        assert refresher.latest == "ok"
