"""Result schemas for fee aggregation and storefront availability."""
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID

from pydantic import Field

from hubstock.schemas.base import BaseResponseSchema


class FeeLine(BaseResponseSchema):
    """A single fee applied to a unit, in application order."""
    enterprise_fee_id: UUID
    enterprise_id: UUID
    name: str
    fee_type: str
    calculator: str
    source: str = Field(description="INCOMING, OUTGOING or COORDINATOR")
    amount: Decimal


class FeeBreakdown(BaseResponseSchema):
    """Ordered fee lines for a unit in a storefront and order cycle."""
    variant_id: UUID
    storefront_id: UUID
    order_cycle_id: UUID
    quantity: int = 1
    lines: List[FeeLine] = Field(default_factory=list)
    by_type: Dict[str, Decimal] = Field(default_factory=dict)
    total: Decimal = Decimal("0")


class PriceWithFees(BaseResponseSchema):
    variant_id: UUID
    price: Decimal
    fees: Decimal
    price_with_fees: Decimal


class AvailabilitySnapshot(BaseResponseSchema):
    """
    Visible units and products for one (storefront, order cycle) key.

    stale=True is only ever returned to readers that opted into
    serve-stale for a key that is being rebuilt.
    """
    storefront_id: UUID
    order_cycle_id: UUID
    variant_ids: FrozenSet[UUID] = Field(default_factory=frozenset)
    product_ids: FrozenSet[UUID] = Field(default_factory=frozenset)
    built_at: datetime
    stale: bool = False

    def to_cache(self) -> dict:
        """Payload stored in the cache backend."""
        return {
            "storefront_id": str(self.storefront_id),
            "order_cycle_id": str(self.order_cycle_id),
            "variant_ids": sorted(str(v) for v in self.variant_ids),
            "product_ids": sorted(str(p) for p in self.product_ids),
            "built_at": self.built_at.isoformat(),
        }

    @classmethod
    def from_cache(cls, payload: Optional[dict]) -> Optional["AvailabilitySnapshot"]:
        if not payload:
            return None
        return cls.model_validate(payload)
