"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models or service results
inherit from BaseResponseSchema; all write payloads inherit from
BaseUpdateSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas.

    Features:
    - Enables from_attributes for ORM compatibility
    - JSON mode serializes UUIDs and Decimals as strings (no float rounding)
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional by default for partial updates.
    """
    model_config = ConfigDict(
        extra='ignore',
    )
