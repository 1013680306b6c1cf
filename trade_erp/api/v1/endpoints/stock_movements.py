"""API endpoints for the stock movement ledger."""
from typing import List, Optional, Union
from uuid import UUID
from datetime import date, datetime, timezone

from fastapi import APIRouter, Query, status

from trade_erp.api.deps import DB, CurrentUserId, StockLedgerDep
from trade_erp.core.exceptions import NotFoundError
from trade_erp.models.inventory import MovementReferenceType
from trade_erp.services.stock_ledger_service import utc_datetime
from trade_erp.schemas.inventory import (
    StockMovementResponse, AdjustmentCreate, OpeningBalanceCreate,
    StockBalanceResponse, MovementSummaryResponse,
)

router = APIRouter()


async def _ensure_item(ledger, item_id: UUID) -> None:
    if await ledger.items.get(item_id) is None:
        raise NotFoundError("Item not found", details={"item_id": str(item_id)})


@router.get("/items/{item_id}/balance", response_model=StockBalanceResponse)
async def get_item_balance(
    item_id: UUID,
    ledger: StockLedgerDep,
    as_of: Optional[Union[date, datetime]] = Query(None, description="Defaults to now; a bare date means end of that day"),
):
    """Balance replayed from movements dated on or before ``as_of``."""
    await _ensure_item(ledger, item_id)
    as_of = utc_datetime(as_of, end_of_day=True) or datetime.now(timezone.utc)
    return StockBalanceResponse(
        item_id=item_id,
        as_of=as_of,
        balance=await ledger.balance_as_of(item_id, as_of),
        unclamped_balance=await ledger.unclamped_balance_as_of(item_id, as_of),
    )


@router.get("/items/{item_id}/movements", response_model=List[StockMovementResponse])
async def get_item_movements(
    item_id: UUID,
    ledger: StockLedgerDep,
    limit: int = Query(50, ge=1, le=500),
):
    """Latest movements of an item, newest first."""
    await _ensure_item(ledger, item_id)
    return await ledger.find_by_item(item_id, limit)


@router.get("/items/{item_id}/summary", response_model=MovementSummaryResponse)
async def get_item_movement_summary(
    item_id: UUID,
    ledger: StockLedgerDep,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    await _ensure_item(ledger, item_id)
    return await ledger.item_movement_summary(item_id, start, end)


@router.get("/reference/{reference_type}/{reference_id}", response_model=List[StockMovementResponse])
async def get_movements_by_reference(
    reference_type: MovementReferenceType,
    reference_id: UUID,
    ledger: StockLedgerDep,
):
    """All movements of one document, in insertion order."""
    return await ledger.find_by_reference(reference_type.value, reference_id)


@router.post("/adjustments", response_model=StockMovementResponse, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    adjustment_in: AdjustmentCreate,
    ledger: StockLedgerDep,
    db: DB,
    user_id: CurrentUserId,
):
    """Manual signed stock adjustment."""
    movement = await ledger.record_adjustment(
        adjustment_in.item_id,
        adjustment_in.quantity,
        adjustment_in.reason,
        user_id=user_id,
        movement_date=adjustment_in.movement_date,
    )
    await db.commit()
    return movement


@router.post("/opening-balances", response_model=StockMovementResponse, status_code=status.HTTP_201_CREATED)
async def create_opening_balance(
    opening_in: OpeningBalanceCreate,
    ledger: StockLedgerDep,
    db: DB,
    user_id: CurrentUserId,
):
    movement = await ledger.record_opening_balance(
        opening_in.item_id,
        opening_in.quantity,
        user_id=user_id,
        movement_date=opening_in.movement_date,
    )
    await db.commit()
    return movement
