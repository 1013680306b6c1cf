"""
Base schema classes for pydantic models.

RULE: every response schema that reads from an ORM model inherits from
BaseResponseSchema so ``from_attributes`` is never forgotten.
"""
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM objects.

    Usage:
        class StockMovementResponse(BaseResponseSchema):
            id: UUID
            item_id: UUID
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base class for create/input schemas. Unknown fields are ignored."""
    model_config = ConfigDict(extra='ignore')


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional; services apply only the ones that were sent
    (``model_dump(exclude_unset=True)``).
    """
    model_config = ConfigDict(extra='ignore')
