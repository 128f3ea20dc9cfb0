from hubstock.schemas.distribution import (
    FeeLine, FeeBreakdown, PriceWithFees, AvailabilitySnapshot,
)
from hubstock.schemas.variant import VariantStockUpdate, VariantUpdate, ProductUnitUpdate

__all__ = [
    "FeeLine",
    "FeeBreakdown",
    "PriceWithFees",
    "AvailabilitySnapshot",
    "VariantStockUpdate",
    "VariantUpdate",
    "ProductUnitUpdate",
]
