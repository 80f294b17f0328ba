"""Basket valuation — index NAV and equal-weighted 24h change."""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Mapping, Sequence

from ..config import AppConfig, AssetConfig
from ..interfaces.chain import LedgerClient
from ..models import Asset, IndexSnapshot
from ..oracles.adapter import PriceOracleAdapter
from ..oracles.jupiter import LAMPORTS_PER_SOL

logger = logging.getLogger(__name__)

CHANGE_FLOOR = -99.0
CHANGE_CEILING = 999.0


def clamp_change(value: float) -> float:
    return max(CHANGE_FLOOR, min(CHANGE_CEILING, value))


def _finite(value: float | None) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return float(value)


def build_snapshot(
    assets: Sequence[AssetConfig],
    quote_prices: Mapping[str, float],
    reference_data: Mapping[str, Mapping[str, float]],
    reference_price: float,
    settlement_balance: float = 0.0,
    degraded: bool = False,
) -> IndexSnapshot:
    """Combine per-member quotes into one snapshot.

    One unit of the index is one unit of every member, so the NAV is the
    plain sum of member unit prices. Member changes are clamped before they
    are averaged and the average is clamped again. A member with no 24h
    data counts as 0% and still counts towards the average.
    """
    members: list[Asset] = []
    for cfg in assets:
        change = clamp_change(
            _finite(reference_data.get(cfg.mint, {}).get("change_24h"))
        )
        members.append(
            Asset(
                mint=cfg.mint,
                symbol=cfg.symbol,
                price=_finite(quote_prices.get(cfg.mint)),
                change_24h=change,
            )
        )

    total_value = sum(a.price for a in members)
    reference_price = _finite(reference_price)
    mean_change = sum(a.change_24h for a in members) / len(members) if members else 0.0

    return IndexSnapshot(
        total_value=total_value,
        total_value_reference=total_value * reference_price,
        change_24h=clamp_change(mean_change),
        assets=tuple(members),
        reference_price=reference_price,
        settlement_balance=settlement_balance,
        degraded=degraded,
    )


class BasketValuator:
    """Fetches every input concurrently and publishes one snapshot."""

    def __init__(
        self,
        config: AppConfig,
        oracle: PriceOracleAdapter,
        ledger: LedgerClient | None = None,
    ) -> None:
        self._deployment = config.index
        self._settlement_coin_id = config.oracle.settlement_coingecko_id
        self._oracle = oracle
        self._ledger = ledger

    async def _fetch_settlement_balance(self, owner: str | None) -> float:
        if not owner or self._ledger is None:
            return 0.0
        try:
            return await self._ledger.get_balance(owner) / LAMPORTS_PER_SOL
        except Exception as e:
            logger.error("Error fetching SOL balance for %s: %s", owner, e)
            return 0.0

    async def snapshot(self, owner: str | None = None) -> IndexSnapshot:
        """Run the N+3 fetches and join them before building the snapshot."""
        assets = self._deployment.basket.assets

        (reference_price, reference_degraded), reference_data, balance, *quotes = (
            await asyncio.gather(
                self._oracle.fetch_reference(self._settlement_coin_id),
                self._oracle.fetch_basket_reference_data(assets),
                self._fetch_settlement_balance(owner),
                *(self._oracle.fetch_asset_quote_price(a.mint) for a in assets),
            )
        )
        degraded = reference_degraded or any(
            entry.get("degraded") for entry in reference_data.values()
        )

        snapshot = build_snapshot(
            assets,
            {a.mint: q for a, q in zip(assets, quotes)},
            reference_data,
            reference_price,
            settlement_balance=balance,
            degraded=degraded,
        )
        logger.info(
            "Index NAV %.6f SOL ($%.4f), 24h %.2f%%%s",
            snapshot.total_value,
            snapshot.total_value_reference,
            snapshot.change_24h,
            " [degraded]" if snapshot.degraded else "",
        )
        return snapshot


class IndexRefresher:
    """Periodically re-runs the valuation and keeps the newest snapshot.

    Refreshes may overlap; a refresh that started earlier than the one
    already published is dropped.
    """

    def __init__(
        self,
        valuator: BasketValuator,
        interval_seconds: int,
        on_snapshot: Callable[[IndexSnapshot], Awaitable[None]] | None = None,
    ) -> None:
        self._valuator = valuator
        self.interval = interval_seconds
        self._on_snapshot = on_snapshot
        self._started = 0
        self._published = 0
        self.latest: IndexSnapshot | None = None

    async def refresh(self, owner: str | None = None) -> IndexSnapshot | None:
        self._started += 1
        sequence = self._started
        snapshot = await self._valuator.snapshot(owner)
        if sequence < self._published:
            logger.debug("Dropping stale snapshot #%d (have #%d)", sequence, self._published)
            return None
        self._published = sequence
        self.latest = snapshot
        if self._on_snapshot is not None:
            await self._on_snapshot(snapshot)
        return snapshot

    async def run(self, owner: str | None = None, iterations: int | None = None) -> None:
        """Refresh every ``interval`` seconds; forever unless ``iterations`` is set."""
        logger.info("Starting index refresh (every %d seconds)", self.interval)
        done = 0
        while iterations is None or done < iterations:
            try:
                await self.refresh(owner)
            except Exception as e:
                logger.error("Error in refresh loop: %s", e)
            done += 1
            if iterations is None or done < iterations:
                await asyncio.sleep(self.interval)
