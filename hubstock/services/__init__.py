# Services module
from hubstock.services.stock_policy import StockPolicy, MarketplaceStockPolicy, get_stock_policy, can_supply
from hubstock.services.distribution_service import CacheKey, Visibility, DistributionService
from hubstock.services.enterprise_fee_calculator import EnterpriseFeeCalculator
from hubstock.services.cache_service import CacheBackend, InMemoryCache, RedisCache, get_cache_backend
from hubstock.services.products_cache_service import (
    AvailabilityCache, CacheEntry, EntryState, get_availability_cache,
)
from hubstock.services.variant_service import VariantService, ProductService
from hubstock.services.exchange_service import ExchangeService

__all__ = [
    "StockPolicy",
    "MarketplaceStockPolicy",
    "get_stock_policy",
    "can_supply",
    "CacheKey",
    "Visibility",
    "DistributionService",
    "EnterpriseFeeCalculator",
    "CacheBackend",
    "InMemoryCache",
    "RedisCache",
    "get_cache_backend",
    "AvailabilityCache",
    "CacheEntry",
    "EntryState",
    "get_availability_cache",
    "VariantService",
    "ProductService",
    "ExchangeService",
]
