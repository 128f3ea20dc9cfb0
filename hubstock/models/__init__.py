# Models module
from hubstock.models.enterprise import Enterprise, EnterpriseFee, FeeType, FeeCalculator
from hubstock.models.product import Product, Variant, VariantUnit
from hubstock.models.order_cycle import (
    OrderCycle, Schedule, OrderCycleSchedule,
    Exchange, ExchangeDirection, ExchangeVariant, ExchangeFee, CoordinatorFee,
)
from hubstock.models.inventory import InventoryItem

__all__ = [
    "Enterprise",
    "EnterpriseFee",
    "FeeType",
    "FeeCalculator",
    "Product",
    "Variant",
    "VariantUnit",
    "OrderCycle",
    "Schedule",
    "OrderCycleSchedule",
    "Exchange",
    "ExchangeDirection",
    "ExchangeVariant",
    "ExchangeFee",
    "CoordinatorFee",
    "InventoryItem",
]
