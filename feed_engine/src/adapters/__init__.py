"""
Price source adapters.

This module provides a unified interface for fetching normalized price
samples from oracle networks and market data APIs.

Usage:
    from feed_engine.src.adapters import get_adapter, get_available_adapters

    # Get list of available adapters
    available = get_available_adapters()
    # ['coinbase', 'coingecko', 'pyth', 'simulated', 'switchboard']

    # Create an adapter instance
    adapter = get_adapter("pyth")
    sample = await adapter.fetch("SOL")

    # For adapters requiring API keys or options
    adapter = get_adapter("switchboard", feed_ids={"SOL": "<feed hash>"})
"""

# Import base classes and utilities
from .base import (
    ADAPTER_REGISTRY,
    AdapterConfigError,
    AdapterError,
    AdapterHTTPError,
    AdapterTimeout,
    BaseAdapter,
    PriceSample,
    get_adapter,
    get_available_adapters,
    register_adapter,
)

# Import all adapter implementations to trigger registration
from .coinbase import CoinbaseAdapter
from .coingecko import CoinGeckoAdapter
from .pyth import PythAdapter
from .simulated import SimulatedAdapter
from .switchboard import SwitchboardAdapter

__all__ = [
    # Base classes
    "BaseAdapter",
    "PriceSample",
    "AdapterError",
    "AdapterConfigError",
    "AdapterHTTPError",
    "AdapterTimeout",
    # Registry functions
    "register_adapter",
    "get_adapter",
    "get_available_adapters",
    "ADAPTER_REGISTRY",
    # Adapter implementations
    "CoinbaseAdapter",
    "CoinGeckoAdapter",
    "PythAdapter",
    "SimulatedAdapter",
    "SwitchboardAdapter",
]
