"""
Enum Utilities for VARCHAR-based enum columns.

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(20..50), never a native database ENUM
• SQLAlchemy: String(n) with Mapped[str]
• Pydantic / services: Python str Enum for validation and comparison
• Case: All enum values stored in UPPERCASE

Exchange directions, fee types, fee calculators and product variant units
all follow this convention.
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(ExchangeDirection.OUTGOING)
        'OUTGOING'
        >>> get_enum_value("OUTGOING")
        'OUTGOING'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a database string back to an enum instance.

    Returns None for unknown values instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(ExchangeDirection)
        'INCOMING, OUTGOING'
    """
    return ", ".join(enum_values(enum_class))


def is_status(db_value: Optional[str], enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return db_value == enum_value.value


def status_in(db_value: Optional[str], *enum_members: Enum) -> bool:
    """Check if a database value matches any of the given enums."""
    if db_value is None:
        return False
    return db_value in [e.value for e in enum_members]


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Invalid values are returned untouched so Pydantic raises the error.

    Examples:
        >>> normalize_to_uppercase('weight', {'WEIGHT', 'VOLUME', 'ITEMS'})
        'WEIGHT'
        >>> normalize_to_uppercase('litres', {'WEIGHT', 'VOLUME', 'ITEMS'})
        'litres'
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper()
        if upper_v in valid_values:
            return upper_v
    return value


def create_uppercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to UPPERCASE.

    Usage:
        class ProductUnitUpdate(BaseModel):
            variant_unit: Optional[VariantUnit] = None

            normalize_unit = create_uppercase_validator('variant_unit', VALID_VARIANT_UNITS)
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_uppercase(v, valid_values)

    return validate


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_VARIANT_UNITS = {"WEIGHT", "VOLUME", "ITEMS"}
