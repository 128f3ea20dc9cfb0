"""
Stock quantification.

The marketplace decides supply from a unit's own stock fields only:

1. on_demand units can always supply, whatever on_hand says
2. otherwise on_hand must cover the requested quantity
3. otherwise backorderable units still supply (the shortfall is backordered)
4. otherwise the unit cannot supply
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from hubstock.core.exceptions import InconsistentStateError


class StockPolicy(ABC):
    """Decides whether a unit can supply a requested quantity."""

    @abstractmethod
    def can_supply(self, variant: Any, quantity: int = 1) -> bool:
        pass

    def in_stock(self, variant: Any, quantity: int = 1) -> bool:
        return self.can_supply(variant, quantity)


class MarketplaceStockPolicy(StockPolicy):
    """
    On-demand / on-hand / backorder policy.

    Accepts any object exposing on_hand, on_demand and backorderable, so it
    works on ORM rows and plain records alike. Stateless and safe to share.
    """

    def can_supply(self, variant: Any, quantity: Optional[int] = 1) -> bool:
        if quantity is None:
            quantity = 1
        if quantity < 0:
            raise ValueError(f"Requested quantity must be >= 0, got {quantity}")

        on_hand = variant.on_hand or 0
        if on_hand < 0:
            raise InconsistentStateError(
                f"Variant {getattr(variant, 'id', None)} has negative on_hand ({on_hand})",
                details={"variant_id": str(getattr(variant, "id", None)), "on_hand": on_hand},
            )

        if variant.on_demand:
            return True
        if on_hand >= quantity:
            return True
        if variant.backorderable:
            return True
        return False


_default_policy = MarketplaceStockPolicy()


def get_stock_policy() -> StockPolicy:
    """Get the marketplace stock policy."""
    return _default_policy


def can_supply(variant: Any, quantity: int = 1) -> bool:
    """Shortcut for get_stock_policy().can_supply()."""
    return _default_policy.can_supply(variant, quantity)
