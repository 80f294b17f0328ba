"""CoinGecko spot-price source."""
import logging
import ssl

import aiohttp
import certifi

from ..config import SpotSourceConfig

logger = logging.getLogger(__name__)

RATE_LIMITED = 429
PLACEHOLDER_PRICE = 0.01


class CoinGeckoClient:
    """Fetch reference-currency prices and 24h changes from CoinGecko."""

    def __init__(self, config: SpotSourceConfig) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.vs_currency = config.vs_currency
        self.timeout = config.timeout

    async def fetch_prices(self, ids: list[str]) -> dict[str, dict[str, float]]:
        """Return ``{id: {"price": float, "change_24h": float}}``.

        A rate-limited response yields a placeholder entry per requested id
        instead of an error, marked with ``"placeholder": True``. Any other
        failure yields ``{}``.
        """
        ids = [i for i in dict.fromkeys(ids) if i]
        if not ids:
            return {}

        url = f"{self.base_url}/simple/price"
        params = {
            "ids": ",".join(ids),
            "vs_currencies": self.vs_currency,
            "include_24hr_change": "true",
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url,
                    params=params,
                    headers={"Accept": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status == RATE_LIMITED:
                        logger.warning(
                            "CoinGecko rate limited; substituting placeholder "
                            "prices for %s",
                            ", ".join(ids),
                        )
                        return {
                            i: {
                                "price": PLACEHOLDER_PRICE,
                                "change_24h": 0.0,
                                "placeholder": True,
                            }
                            for i in ids
                        }
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from CoinGecko: HTTP %s",
                            response.status,
                        )
                        return {}

                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching prices from CoinGecko: %s", e)
            return {}

        prices: dict[str, dict[str, float]] = {}
        change_key = f"{self.vs_currency}_24h_change"
        for coin_id in ids:
            entry = data.get(coin_id)
            if not entry or entry.get(self.vs_currency) is None:
                continue
            prices[coin_id] = {
                "price": float(entry[self.vs_currency]),
                "change_24h": float(entry.get(change_key) or 0.0),
            }

        logger.debug("Fetched %d/%d spot prices from CoinGecko", len(prices), len(ids))
        return prices
