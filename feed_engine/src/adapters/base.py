"""Base adapter interface, normalized price samples and shared HTTP client.

Every price source adapter inherits from BaseAdapter and implements fetch().
Adapters normalize provider-specific units (integer mantissa + exponent,
fixed-point scale, bid/ask spreads) into a PriceSample carrying a decimal
price and an absolute confidence width in the same unit.

Adapters never retry. Retry and fallback ordering is owned by the feed
manager so that it can be controlled centrally per symbol.

A shared httpx.AsyncClient is used across all adapters to avoid connection
overhead.

.. code-block:: python

    @register_adapter
    class MyAdapter(BaseAdapter):
        name = "myadapter"

        async def fetch(self, symbol: str) -> PriceSample:
            response = await self._get(f"https://api.example.com/{symbol}")
            data = response.json()
            return PriceSample.capture(
                symbol=symbol,
                price=float(data["price"]),
                confidence=float(data["conf"]),
                timestamp=float(data["time"]),
                source=self.name,
            )
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Base exception for adapter errors (provider error)."""

    pass


class AdapterConfigError(AdapterError):
    """Raised when the adapter has no feed configured for a symbol.

    This error is fatal for the source: the feed manager never retries it.
    """

    pass


class AdapterTimeout(AdapterError):
    """Raised when a provider request times out."""

    pass


class AdapterHTTPError(AdapterError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


@dataclass(frozen=True)
class PriceSample:
    """A single normalized price observation from one source.

    :ivar symbol: Token symbol (uppercase, e.g. "SOL").
    :ivar price: Decimal price in the quote currency (USD).
    :ivar confidence: Absolute confidence width, same unit as price.
    :ivar timestamp: Unix timestamp when the source captured the price.
    :ivar source: Source id of the adapter that produced the sample.
    :ivar staleness: Seconds between capture and observation (never negative).
    :ivar ema_price: Provider exponential moving average, if exposed.
    :ivar trading_status: Provider market status, if exposed.
    :ivar high_trust: Whether the provider marked this sample as high trust.
    """

    symbol: str
    price: float
    confidence: float
    timestamp: float
    source: str
    staleness: float = 0.0
    ema_price: float | None = None
    trading_status: str | None = None
    high_trust: bool = False

    def __post_init__(self) -> None:
        if not self.price > 0:
            raise ValueError(f"price must be positive, got {self.price}")
        if self.confidence < 0:
            raise ValueError(f"confidence must be non-negative, got {self.confidence}")
        if self.staleness < 0:
            raise ValueError(f"staleness must be non-negative, got {self.staleness}")

    @property
    def confidence_percent(self) -> float:
        """Confidence width as a percentage of price."""
        return self.confidence / self.price * 100

    @classmethod
    def capture(
        cls,
        *,
        symbol: str,
        price: float,
        confidence: float,
        timestamp: float,
        source: str,
        now: float | None = None,
        **extra: Any,
    ) -> PriceSample:
        """Create a sample, computing staleness against the current time.

        :param now: Observation time (defaults to ``time.time()``).
        :returns: New PriceSample.
        :raises ValueError: If price or confidence is invalid.
        """
        observed_at = time.time() if now is None else now
        staleness = max(0.0, observed_at - timestamp)
        return cls(
            symbol=symbol.upper(),
            price=price,
            confidence=confidence,
            timestamp=timestamp,
            source=source,
            staleness=staleness,
            **extra,
        )


class BaseAdapter(ABC):
    """Abstract base class for price source adapters.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "pyth")
        - fetch(): Async method returning a PriceSample for a symbol

    :cvar name: Unique identifier for this adapter.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Adapter identification
    name: ClassVar[str] = ""

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the adapter.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        """Check if this adapter has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all adapter instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if (
            BaseAdapter._shared_client is None
            or BaseAdapter._shared_client.is_closed
        ):
            BaseAdapter._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return BaseAdapter._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseAdapter._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseAdapter._shared_client = None

    @abstractmethod
    async def fetch(self, symbol: str) -> PriceSample:
        """Fetch the current price sample for a symbol.

        :param symbol: Token symbol (e.g., "SOL", "BTC").
        :returns: Normalized PriceSample.
        :raises AdapterConfigError: If the symbol is not configured for this source.
        :raises AdapterTimeout: If the provider request timed out.
        :raises AdapterError: On any other provider failure.
        """
        pass

    def supports_symbol(self, symbol: str) -> bool:
        """Check if this adapter has a feed for the given symbol.

        Override in subclasses with a fixed feed table.

        :param symbol: Token symbol.
        :returns: True if the symbol is supported.
        """
        return True

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises AdapterHTTPError: On non-2xx response.
        :raises AdapterTimeout: On request timeout.
        :raises AdapterError: On network errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise AdapterTimeout(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise AdapterError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise AdapterHTTPError(response.status_code, response.text[:200])
        return response

    def _json(self, response: httpx.Response) -> Any:
        """Decode a JSON body, mapping decode failures to AdapterError."""
        try:
            return response.json()
        except ValueError as e:
            raise AdapterError(f"[{self.name}] Invalid JSON response: {e}") from e


# Registry of available adapters (populated by subclass imports)
ADAPTER_REGISTRY: dict[str, type[BaseAdapter]] = {}


def register_adapter(cls: type[BaseAdapter]) -> type[BaseAdapter]:
    """Decorator to register an adapter class in the global registry.

    :param cls: Adapter class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If adapter has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Adapter {cls.__name__} must define a 'name' class variable")
    ADAPTER_REGISTRY[cls.name] = cls
    return cls


def get_adapter(
    name: str,
    api_key: str | None = None,
    timeout: float | None = None,
    **options: Any,
) -> BaseAdapter:
    """Get an adapter instance by name.

    :param name: Adapter name (e.g., "pyth", "coinbase").
    :param api_key: Optional API key.
    :param timeout: Optional request timeout in seconds.
    :param options: Adapter specific keyword arguments (e.g. ``feed_ids``).
    :returns: Adapter instance.
    :raises ValueError: If adapter name is unknown.
    """
    if name not in ADAPTER_REGISTRY:
        available = ", ".join(sorted(ADAPTER_REGISTRY.keys()))
        raise ValueError(f"Unknown adapter '{name}'. Available: {available}")
    return ADAPTER_REGISTRY[name](api_key=api_key, timeout=timeout, **options)


def get_available_adapters() -> list[str]:
    """Get list of available adapter names.

    :returns: Sorted list of registered adapter names.
    """
    return sorted(ADAPTER_REGISTRY.keys())
