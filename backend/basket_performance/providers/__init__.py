"""External data providers."""

from .nav import (
    CachingPriceProvider,
    InMemoryPriceProvider,
    MfApiNavProvider,
    PriceDataProvider,
    build_price_provider,
)

__all__ = [
    "CachingPriceProvider",
    "InMemoryPriceProvider",
    "MfApiNavProvider",
    "PriceDataProvider",
    "build_price_provider",
]
