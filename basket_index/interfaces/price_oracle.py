"""Price source protocols — spot feed and swap-quote feed."""
from typing import Protocol


class SpotPriceSource(Protocol):
    """Reference-currency prices and 24h changes keyed by source id.

    Entries substituted for a rate-limited response carry ``"placeholder": True``.
    """

    async def fetch_prices(self, ids: list[str]) -> dict[str, dict[str, float]]: ...


class QuoteSource(Protocol):
    """Per-unit price of an asset in the settlement asset."""

    async def fetch_unit_price(self, input_mint: str) -> float: ...
