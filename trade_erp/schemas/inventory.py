"""Stock movement schemas for API requests/responses."""
from pydantic import BaseModel, Field

from trade_erp.schemas.base import BaseCreateSchema, BaseResponseSchema
from typing import Optional
from datetime import datetime, date
from decimal import Decimal
import uuid


class StockMovementResponse(BaseResponseSchema):
    """Stock movement response schema."""
    id: uuid.UUID
    item_id: uuid.UUID
    movement_type: str
    quantity: Decimal
    reference_type: str
    reference_id: Optional[uuid.UUID] = None
    reversal_of_id: Optional[uuid.UUID] = None
    batch_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    movement_date: datetime
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class AdjustmentCreate(BaseCreateSchema):
    """Manual stock adjustment; quantity is signed (negative reduces stock)."""
    item_id: uuid.UUID
    quantity: Decimal = Field(..., decimal_places=3)
    reason: str = Field(..., min_length=1, max_length=500)
    movement_date: Optional[datetime] = None


class OpeningBalanceCreate(BaseCreateSchema):
    item_id: uuid.UUID
    quantity: Decimal = Field(..., decimal_places=3)
    movement_date: Optional[datetime] = None


class StockBalanceResponse(BaseModel):
    """Balance replayed from the movement ledger."""
    item_id: uuid.UUID
    as_of: datetime
    balance: Decimal
    unclamped_balance: Decimal


class MovementSummaryResponse(BaseModel):
    item_id: uuid.UUID
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    total_in: Decimal
    total_out: Decimal
    net: Decimal
    movement_count: int
