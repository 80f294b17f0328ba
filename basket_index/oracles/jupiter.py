"""Jupiter swap-quote source used to price basket members in SOL."""
import logging
import ssl

import aiohttp
import certifi

from ..config import QuoteSourceConfig

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
PRICE_UNIT = 1_000_000


class JupiterQuoteClient:
    """Price an asset by quoting a large fixed notional into SOL."""

    def __init__(self, config: QuoteSourceConfig, output_mint: str) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.notional = config.notional
        self.slippage_bps = config.slippage_bps
        self.timeout = config.timeout
        self.output_mint = output_mint

    async def fetch_quote(self, input_mint: str, amount: int) -> dict | None:
        """Raw quote response, or None on any failure."""
        params = {
            "inputMint": input_mint,
            "outputMint": self.output_mint,
            "amount": str(amount),
            "slippageBps": str(self.slippage_bps),
        }
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    f"{self.base_url}/quote",
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching quote for %s: HTTP %s",
                            input_mint,
                            response.status,
                        )
                        return None
                    return await response.json()
        except Exception as e:
            logger.error("Error fetching quote for %s: %s", input_mint, e)
            return None

    async def fetch_unit_price(self, input_mint: str) -> float:
        """SOL received per 1,000,000 base units of ``input_mint``; 0 on failure."""
        quote = await self.fetch_quote(input_mint, self.notional)
        if not quote:
            return 0.0
        try:
            out_amount = int(quote["outAmount"])
        except (KeyError, TypeError, ValueError):
            logger.error("Malformed quote for %s: %s", input_mint, quote)
            return 0.0

        sol_out = out_amount / LAMPORTS_PER_SOL
        return sol_out / (self.notional / PRICE_UNIT)
