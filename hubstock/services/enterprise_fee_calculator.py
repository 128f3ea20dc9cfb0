"""
Fee Aggregator.

Computes the enterprise fees a buyer pays on top of a variant's base price
for a storefront and order cycle.

Fee sources, in application order:
1. INCOMING exchange(s) from the variant's supplier to the coordinator
2. OUTGOING exchange(s) from the coordinator to the storefront
3. Order cycle coordinator fees

Within a source, exchanges are taken in discovery order (created_at, id) and
fees in attachment order (position, id), so repeated calls on unchanged data
return identical totals and identical line ordering.
"""
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from hubstock.config import settings
from hubstock.core.enum_utils import to_enum
from hubstock.core.exceptions import InconsistentStateError, NotFoundError
from hubstock.models.enterprise import Enterprise, EnterpriseFee, FeeCalculator
from hubstock.models.order_cycle import (
    OrderCycle, Exchange, ExchangeDirection, ExchangeVariant, ExchangeFee, CoordinatorFee,
)
from hubstock.models.product import Product, Variant
from hubstock.schemas.distribution import FeeBreakdown, FeeLine, PriceWithFees

SOURCE_INCOMING = "INCOMING"
SOURCE_OUTGOING = "OUTGOING"
SOURCE_COORDINATOR = "COORDINATOR"


class EnterpriseFeeCalculator:
    """
    Stateless fee aggregation over exchange and order cycle fee data.

    Usage:
        calculator = EnterpriseFeeCalculator(db)
        total = await calculator.fees_for(variant_id, storefront_id, order_cycle_id)
    """

    def __init__(self, db: AsyncSession, decimal_places: Optional[int] = None):
        self.db = db
        places = settings.FEE_DECIMAL_PLACES if decimal_places is None else decimal_places
        self._quantum = Decimal(1).scaleb(-places)

    # ==================== Public API ====================

    async def fees_for(
        self,
        variant_id: uuid.UUID,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        quantity: int = 1
    ) -> Decimal:
        """Total fee amount. Zero when the variant is not distributed there."""
        breakdown = await self.fee_breakdown_for(variant_id, storefront_id, order_cycle_id, quantity)
        return breakdown.total

    async def fees_by_type_for(
        self,
        variant_id: uuid.UUID,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        quantity: int = 1
    ) -> Dict[str, Decimal]:
        """Fee totals grouped by fee type, in first-applied order."""
        breakdown = await self.fee_breakdown_for(variant_id, storefront_id, order_cycle_id, quantity)
        return breakdown.by_type

    async def price_with_fees(
        self,
        variant_id: uuid.UUID,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID
    ) -> Decimal:
        result = await self.price_breakdown(variant_id, storefront_id, order_cycle_id)
        return result.price_with_fees

    async def price_breakdown(
        self,
        variant_id: uuid.UUID,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID
    ) -> PriceWithFees:
        variant = await self._get_variant(variant_id)
        fees = await self.fees_for(variant_id, storefront_id, order_cycle_id)
        price = variant.price or Decimal("0")
        return PriceWithFees(
            variant_id=variant_id,
            price=price,
            fees=fees,
            price_with_fees=price + fees,
        )

    async def fee_breakdown_for(
        self,
        variant_id: uuid.UUID,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        quantity: int = 1
    ) -> FeeBreakdown:
        """
        Ordered fee lines, per-type totals and the total.

        Raises:
            NotFoundError: variant, storefront or order cycle does not exist
            InconsistentStateError: variant without product, unknown calculator
        """
        if quantity < 0:
            raise ValueError(f"Quantity must be >= 0, got {quantity}")

        variant = await self._get_variant(variant_id)
        if await self.db.get(Enterprise, storefront_id) is None:
            raise NotFoundError("Enterprise", storefront_id)
        order_cycle = await self.db.get(OrderCycle, order_cycle_id)
        if order_cycle is None:
            raise NotFoundError("OrderCycle", order_cycle_id)
        product = await self.db.get(Product, variant.product_id)
        if product is None:
            raise InconsistentStateError(
                f"Variant {variant_id} has no owning product",
                details={"variant_id": str(variant_id), "product_id": str(variant.product_id)},
            )

        breakdown = FeeBreakdown(
            variant_id=variant_id,
            storefront_id=storefront_id,
            order_cycle_id=order_cycle_id,
            quantity=quantity,
        )

        outgoing = await self._exchanges_carrying(
            variant_id,
            order_cycle_id,
            ExchangeDirection.OUTGOING,
            receiver_id=storefront_id,
        )
        if not outgoing:
            return breakdown

        incoming = await self._exchanges_carrying(
            variant_id,
            order_cycle_id,
            ExchangeDirection.INCOMING,
            sender_id=product.supplier_id,
            receiver_id=order_cycle.coordinator_id,
        )

        applicable: List[Tuple[str, EnterpriseFee]] = []
        applicable += [(SOURCE_INCOMING, fee) for fee in await self._exchange_fees(incoming)]
        applicable += [(SOURCE_OUTGOING, fee) for fee in await self._exchange_fees(outgoing)]
        applicable += [(SOURCE_COORDINATOR, fee) for fee in await self._coordinator_fees(order_cycle_id)]

        # Compute everything before touching the result so a failure never leaves a partial sum
        lines = [
            FeeLine(
                enterprise_fee_id=fee.id,
                enterprise_id=fee.enterprise_id,
                name=fee.name,
                fee_type=fee.fee_type,
                calculator=fee.calculator,
                source=source,
                amount=self.compute_fee(fee, variant.price or Decimal("0"), quantity),
            )
            for source, fee in applicable
        ]

        by_type: Dict[str, Decimal] = {}
        total = Decimal("0")
        for line in lines:
            by_type[line.fee_type] = by_type.get(line.fee_type, Decimal("0")) + line.amount
            total += line.amount

        breakdown.lines = lines
        breakdown.by_type = by_type
        breakdown.total = total
        return breakdown

    def compute_fee(self, fee: EnterpriseFee, price: Decimal, quantity: int = 1) -> Decimal:
        """Evaluate a fee's calculator against a unit price."""
        calculator = to_enum(fee.calculator, FeeCalculator)
        if calculator == FeeCalculator.FLAT_RATE:
            amount = Decimal(fee.amount or 0)
        elif calculator == FeeCalculator.FLAT_PERCENT:
            amount = Decimal(price) * Decimal(fee.percent or 0) / Decimal("100")
        elif calculator == FeeCalculator.PER_ITEM:
            amount = Decimal(fee.amount or 0) * quantity
        else:
            raise InconsistentStateError(
                f"Enterprise fee {fee.id} has unknown calculator '{fee.calculator}'",
                details={"enterprise_fee_id": str(fee.id), "calculator": fee.calculator},
            )
        return amount.quantize(self._quantum, rounding=ROUND_HALF_UP)

    # ==================== Queries ====================

    async def _get_variant(self, variant_id: uuid.UUID) -> Variant:
        variant = await self.db.get(Variant, variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        return variant

    async def _exchanges_carrying(
        self,
        variant_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        direction: ExchangeDirection,
        sender_id: Optional[uuid.UUID] = None,
        receiver_id: Optional[uuid.UUID] = None
    ) -> List[Exchange]:
        conditions = [
            Exchange.order_cycle_id == order_cycle_id,
            Exchange.direction == direction.value,
            ExchangeVariant.variant_id == variant_id,
        ]
        if sender_id is not None:
            conditions.append(Exchange.sender_id == sender_id)
        if receiver_id is not None:
            conditions.append(Exchange.receiver_id == receiver_id)

        result = await self.db.execute(
            select(Exchange)
            .join(ExchangeVariant, ExchangeVariant.exchange_id == Exchange.id)
            .where(and_(*conditions))
            .order_by(Exchange.created_at, Exchange.id)
        )
        return list(result.scalars().unique().all())

    async def _exchange_fees(self, exchanges: List[Exchange]) -> List[EnterpriseFee]:
        if not exchanges:
            return []
        discovery = {exchange.id: index for index, exchange in enumerate(exchanges)}
        result = await self.db.execute(
            select(ExchangeFee.exchange_id, ExchangeFee.position, ExchangeFee.id, EnterpriseFee)
            .join(EnterpriseFee, EnterpriseFee.id == ExchangeFee.enterprise_fee_id)
            .where(ExchangeFee.exchange_id.in_(list(discovery)))
        )
        rows = sorted(
            result.all(),
            key=lambda row: (discovery[row[0]], row[1], str(row[2]))
        )
        return [row[3] for row in rows]

    async def _coordinator_fees(self, order_cycle_id: uuid.UUID) -> List[EnterpriseFee]:
        result = await self.db.execute(
            select(EnterpriseFee)
            .join(CoordinatorFee, CoordinatorFee.enterprise_fee_id == EnterpriseFee.id)
            .where(CoordinatorFee.order_cycle_id == order_cycle_id)
            .order_by(CoordinatorFee.position, CoordinatorFee.id)
        )
        return list(result.scalars().all())
