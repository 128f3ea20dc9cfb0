"""Write payloads for variant and product changes."""
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from hubstock.core.enum_utils import create_uppercase_validator, VALID_VARIANT_UNITS
from hubstock.models.product import VariantUnit
from hubstock.schemas.base import BaseUpdateSchema


class VariantStockUpdate(BaseUpdateSchema):
    """Stock policy change for a variant."""
    on_hand: Optional[int] = Field(None, ge=0)
    on_demand: Optional[bool] = None
    backorderable: Optional[bool] = None


class VariantUpdate(BaseUpdateSchema):
    """Price and unit measurement change for a variant."""
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    unit_value: Optional[Decimal] = Field(None, gt=0)
    unit_description: Optional[str] = Field(None, max_length=255)
    display_name: Optional[str] = Field(None, max_length=255)

    @field_validator("price")
    @classmethod
    def price_not_null(cls, v):
        if v is None:
            raise ValueError("price cannot be cleared")
        return v


class ProductUnitUpdate(BaseUpdateSchema):
    """Change of a product's variant unit classification."""
    variant_unit: Optional[VariantUnit] = None
    variant_unit_scale: Optional[Decimal] = Field(None, gt=0)
    variant_unit_name: Optional[str] = Field(None, max_length=50)

    normalize_unit = create_uppercase_validator('variant_unit', VALID_VARIANT_UNITS)
