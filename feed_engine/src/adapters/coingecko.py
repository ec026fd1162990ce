"""CoinGecko adapter.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={id}&vs_currencies=usd
Rate Limit: 30 calls/min (free), higher with API key

CoinGecko does not publish a confidence interval. A fixed relative width
(CONFIDENCE_PERCENT of price) is attached so that samples can be weighted
against oracle sources.
"""

from __future__ import annotations

import logging

from .base import (
    AdapterConfigError,
    AdapterError,
    BaseAdapter,
    PriceSample,
    register_adapter,
)

logger = logging.getLogger(__name__)


@register_adapter
class CoinGeckoAdapter(BaseAdapter):
    """Adapter for CoinGecko simple price API.

    API tiers:
        - Free: api.coingecko.com (no key, 30 calls/min)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"

    # Assumed confidence width as percent of price
    CONFIDENCE_PERCENT = 0.5

    # Map token symbols to CoinGecko IDs
    COIN_IDS = {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "SOL": "solana",
        "USDT": "tether",
        "USDC": "usd-coin",
        "RAY": "raydium",
        "JUP": "jupiter-exchange-solana",
        "BONK": "bonk",
        "AVAX": "avalanche-2",
        "LINK": "chainlink",
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]  # Strip "demo:" prefix
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key:
            return self.BASE_URL_FREE
        return self.BASE_URL_FREE if self._is_demo else self.BASE_URL_PRO

    @property
    def api_header(self) -> tuple[str, str] | None:
        """Return appropriate header name and value for API key."""
        if not self.api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return (header_name, self.api_key)

    def supports_symbol(self, symbol: str) -> bool:
        return symbol.upper() in self.COIN_IDS

    async def fetch(self, symbol: str) -> PriceSample:
        """Fetch USD price from CoinGecko.

        :param symbol: Token symbol (e.g., "SOL").
        :returns: Normalized PriceSample.
        :raises AdapterConfigError: If the coin id is unknown.
        :raises AdapterError: On request or parse failure.
        """
        symbol = symbol.upper()
        coin_id = self.COIN_IDS.get(symbol)
        if not coin_id:
            raise AdapterConfigError(f"[coingecko] Unknown coin: {symbol}")

        headers = {}
        if self.api_header:
            header_name, header_value = self.api_header
            headers[header_name] = header_value

        response = await self._get(
            f"{self.base_url}/simple/price",
            params={
                "ids": coin_id,
                "vs_currencies": "usd",
                "include_last_updated_at": "true",
            },
            headers=headers if headers else None,
        )
        data = self._json(response)

        entry = data.get(coin_id) if isinstance(data, dict) else None
        if not entry or "usd" not in entry:
            raise AdapterError(f"[coingecko] Coin {coin_id} not in response: {data}")

        try:
            price = float(entry["usd"])
            updated_at = float(entry["last_updated_at"])
        except (KeyError, ValueError, TypeError) as e:
            raise AdapterError(f"[coingecko] Failed to parse response: {e}") from e

        if price <= 0:
            raise AdapterError(f"[coingecko] Non-positive price for {symbol}")

        return PriceSample.capture(
            symbol=symbol,
            price=price,
            confidence=price * self.CONFIDENCE_PERCENT / 100,
            timestamp=updated_at,
            source=self.name,
        )
