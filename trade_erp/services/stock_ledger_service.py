"""
Stock Movement Ledger.

Append-only record of every stock change. Each movement is written together
with a relative update of the item's running ``current_stock`` counter, on the
caller's session, so both become visible with the caller's commit.

Rules:
- quantity is never zero; ``in`` is positive, ``out`` negative, ``adjustment``
  either. A mismatched sign is rejected, never re-signed.
- movement dates may not lie in the future.
- a batch's manufacturing date may not follow its expiry date.
- originals are never changed; a reversal is a new row pointing back at the
  movement it undoes.
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, date, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trade_erp.core.exceptions import ValidationError
from trade_erp.core.money import ZERO, to_decimal, ensure_scale
from trade_erp.db_types import QUANTITY_PLACES
from trade_erp.models.inventory import StockMovement, MovementType, MovementReferenceType
from trade_erp.services.repositories import ItemRepository

logger = logging.getLogger(__name__)

MOVEMENT_TYPES = {m.value for m in MovementType}
REFERENCE_TYPES = {r.value for r in MovementReferenceType}

OPPOSITE_TYPE = {
    MovementType.IN.value: MovementType.OUT.value,
    MovementType.OUT.value: MovementType.IN.value,
    MovementType.ADJUSTMENT.value: MovementType.ADJUSTMENT.value,
}


@dataclass
class BatchInfo:
    batch_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None

    @classmethod
    def from_source(cls, source: Any) -> Optional["BatchInfo"]:
        """Copy batch fields off an invoice line (or anything shaped like one)."""
        info = cls(
            batch_number=getattr(source, "batch_number", None),
            manufacturing_date=getattr(source, "manufacturing_date", None),
            expiry_date=getattr(source, "expiry_date", None),
        )
        return None if info.is_empty else info

    @property
    def is_empty(self) -> bool:
        return not (self.batch_number or self.manufacturing_date or self.expiry_date)


# ==================== VALIDATORS ====================

def utc_datetime(value: Union[datetime, date, None], end_of_day: bool = False) -> Optional[datetime]:
    """Normalise to an aware UTC datetime. Naive values are taken as UTC; bare dates as midnight (or end of day)."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_movement_sign(movement_type: str, quantity: Decimal) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement type: {movement_type}",
            details={"allowed": sorted(MOVEMENT_TYPES)},
        )
    if quantity == ZERO:
        raise ValidationError("Quantity must be a non-zero number")
    if movement_type == MovementType.IN.value and quantity < ZERO:
        raise ValidationError(
            "Incoming movement must have a positive quantity",
            details={"movement_type": movement_type, "quantity": str(quantity)},
        )
    if movement_type == MovementType.OUT.value and quantity > ZERO:
        raise ValidationError(
            "Outgoing movement must have a negative quantity",
            details={"movement_type": movement_type, "quantity": str(quantity)},
        )


def validate_reference_type(reference_type: str) -> None:
    if reference_type not in REFERENCE_TYPES:
        raise ValidationError(
            f"Invalid reference type: {reference_type}",
            details={"allowed": sorted(REFERENCE_TYPES)},
        )


def validate_movement_date(movement_date: datetime, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    if movement_date > now:
        raise ValidationError(
            "Movement date cannot be in the future",
            details={"movement_date": movement_date.isoformat()},
        )


def validate_batch_dates(batch: Optional[BatchInfo]) -> None:
    if batch is None:
        return
    if batch.manufacturing_date and batch.expiry_date and batch.manufacturing_date > batch.expiry_date:
        raise ValidationError(
            "Manufacturing date cannot be after expiry date",
            details={
                "batch_number": batch.batch_number,
                "manufacturing_date": batch.manufacturing_date.isoformat(),
                "expiry_date": batch.expiry_date.isoformat(),
            },
        )


# ==================== LEDGER ====================

class StockMovementLedger:
    """Stock movement ledger bound to one session."""

    def __init__(self, db: AsyncSession, items: Optional[ItemRepository] = None):
        self.db = db
        self.items = items or ItemRepository(db)

    async def append_movement(
        self,
        item_id: uuid.UUID,
        movement_type: str,
        quantity: Any,
        reference_type: str,
        reference_id: Optional[uuid.UUID] = None,
        batch_info: Optional[BatchInfo] = None,
        movement_date: Optional[datetime] = None,
        created_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        reversal_of_id: Optional[uuid.UUID] = None,
        enforce_availability: bool = False,
    ) -> StockMovement:
        """Validate, move the item counter, and append one movement row."""
        quantity = ensure_scale(to_decimal(quantity, "quantity"), QUANTITY_PLACES, "quantity")
        validate_movement_sign(movement_type, quantity)
        validate_reference_type(reference_type)
        validate_batch_dates(batch_info)

        now = datetime.now(timezone.utc)
        movement_date = utc_datetime(movement_date) or now
        validate_movement_date(movement_date, now)

        new_balance = await self.items.adjust_stock(item_id, quantity, enforce_availability)

        batch = batch_info or BatchInfo()
        movement = StockMovement(
            item_id=item_id,
            movement_type=movement_type,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            reversal_of_id=reversal_of_id,
            batch_number=batch.batch_number,
            manufacturing_date=batch.manufacturing_date,
            expiry_date=batch.expiry_date,
            movement_date=movement_date,
            notes=notes,
            created_by=created_by,
            created_at=now,
        )
        self.db.add(movement)
        await self.db.flush()

        logger.debug(
            f"Stock movement {movement_type} {quantity} for item {item_id} "
            f"({reference_type}:{reference_id}), balance now {new_balance}"
        )
        return movement

    async def reverse(
        self,
        reference_type: str,
        reference_id: uuid.UUID,
        created_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> List[StockMovement]:
        """
        Append one opposite movement per original movement of the reference.

        Reversals of reversals are not produced: only rows with no
        ``reversal_of_id`` are reversed. Guarding against reversing the same
        reference twice is the caller's job (the invoice status CAS).
        """
        originals = [m for m in await self.find_by_reference(reference_type, reference_id) if not m.is_reversal]

        reversals = []
        for original in originals:
            reversal = await self.append_movement(
                item_id=original.item_id,
                movement_type=OPPOSITE_TYPE[original.movement_type],
                quantity=-original.quantity,
                reference_type=original.reference_type,
                reference_id=original.reference_id,
                batch_info=BatchInfo(
                    batch_number=original.batch_number,
                    manufacturing_date=original.manufacturing_date,
                    expiry_date=original.expiry_date,
                ),
                created_by=created_by,
                notes=notes or f"Reversal of movement {original.id}",
                reversal_of_id=original.id,
            )
            reversals.append(reversal)

        logger.info(f"Reversed {len(reversals)} stock movement(s) for {reference_type}:{reference_id}")
        return reversals

    # ==================== BALANCES ====================

    async def unclamped_balance_as_of(
        self,
        item_id: uuid.UUID,
        as_of: Union[datetime, date, None] = None,
    ) -> Decimal:
        """Replay signed quantities with ``movement_date <= as_of`` in date order. May be negative."""
        as_of = utc_datetime(as_of, end_of_day=True) or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(StockMovement.quantity)
            .where(
                StockMovement.item_id == item_id,
                StockMovement.movement_date <= as_of,
            )
            .order_by(StockMovement.movement_date.asc(), StockMovement.created_at.asc())
        )
        balance = ZERO
        for quantity in result.scalars().all():
            balance += quantity
        return balance

    async def balance_as_of(
        self,
        item_id: uuid.UUID,
        as_of: Union[datetime, date, None] = None,
    ) -> Decimal:
        """Reporting balance: the replayed balance, never below zero."""
        balance = await self.unclamped_balance_as_of(item_id, as_of)
        return max(balance, ZERO)

    async def check_availability(self, item_id: uuid.UUID, required: Any) -> Dict[str, Any]:
        required = to_decimal(required, "required")
        current = await self.items.get_current_stock(item_id)
        available = current >= required
        return {
            "item_id": item_id,
            "current_stock": current,
            "required_quantity": required,
            "is_available": available,
            "shortfall": ZERO if available else required - current,
        }

    # ==================== QUERIES ====================

    async def find_by_reference(self, reference_type: str, reference_id: uuid.UUID) -> List[StockMovement]:
        """Movements of one document, in insertion order."""
        result = await self.db.execute(
            select(StockMovement)
            .where(
                StockMovement.reference_type == reference_type,
                StockMovement.reference_id == reference_id,
            )
            .order_by(StockMovement.created_at.asc())
        )
        return list(result.scalars().all())

    async def find_by_item(self, item_id: uuid.UUID, limit: int = 50) -> List[StockMovement]:
        """Newest movements of an item first."""
        result = await self.db.execute(
            select(StockMovement)
            .where(StockMovement.item_id == item_id)
            .order_by(StockMovement.movement_date.desc(), StockMovement.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_expired_batches(self, as_of: Optional[date] = None) -> List[StockMovement]:
        """Incoming batch movements whose expiry date has passed."""
        as_of = as_of or datetime.now(timezone.utc).date()
        result = await self.db.execute(
            select(StockMovement)
            .where(
                StockMovement.batch_number.isnot(None),
                StockMovement.expiry_date < as_of,
                StockMovement.quantity > 0,
                StockMovement.reversal_of_id.is_(None),
            )
            .order_by(StockMovement.expiry_date.asc())
        )
        return list(result.scalars().all())

    async def item_movement_summary(
        self,
        item_id: uuid.UUID,
        start: Union[datetime, date, None] = None,
        end: Union[datetime, date, None] = None,
    ) -> Dict[str, Any]:
        """Total in, total out and net for an item over an optional date window."""
        stmt = select(StockMovement.quantity).where(StockMovement.item_id == item_id)
        if start is not None:
            stmt = stmt.where(StockMovement.movement_date >= utc_datetime(start))
        if end is not None:
            stmt = stmt.where(StockMovement.movement_date <= utc_datetime(end, end_of_day=True))

        quantities = (await self.db.execute(stmt)).scalars().all()
        total_in = sum((q for q in quantities if q > 0), ZERO)
        total_out = sum((-q for q in quantities if q < 0), ZERO)

        return {
            "item_id": item_id,
            "start": utc_datetime(start),
            "end": utc_datetime(end, end_of_day=True),
            "total_in": total_in,
            "total_out": total_out,
            "net": total_in - total_out,
            "movement_count": len(quantities),
        }

    # ==================== MANUAL MOVEMENTS ====================

    async def record_adjustment(
        self,
        item_id: uuid.UUID,
        quantity: Any,
        reason: str,
        user_id: Optional[uuid.UUID] = None,
        movement_date: Optional[datetime] = None,
    ) -> StockMovement:
        quantity = ensure_scale(to_decimal(quantity, "quantity"), QUANTITY_PLACES, "quantity")
        if quantity == ZERO:
            raise ValidationError("Adjustment quantity cannot be zero")
        if not reason:
            raise ValidationError("Adjustment reason is required")

        movement = await self.append_movement(
            item_id=item_id,
            movement_type=MovementType.ADJUSTMENT.value,
            quantity=quantity,
            reference_type=MovementReferenceType.ADJUSTMENT.value,
            movement_date=movement_date,
            created_by=user_id,
            notes=reason,
        )
        logger.info(f"Stock adjustment {quantity} recorded for item {item_id}: {reason}")
        return movement

    async def record_correction(
        self,
        item_id: uuid.UUID,
        actual_stock: Any,
        reason: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> StockMovement:
        """Adjust the item so its counter equals a physical count."""
        actual_stock = to_decimal(actual_stock, "actual_stock")
        current = await self.items.get_current_stock(item_id)
        difference = actual_stock - current
        if difference == ZERO:
            raise ValidationError("No correction needed - stock matches actual count")

        note = f"Stock correction: {reason}. Previous: {current}, Actual: {actual_stock}, Difference: {difference}"
        return await self.record_adjustment(item_id, difference, note, user_id)

    async def record_opening_balance(
        self,
        item_id: uuid.UUID,
        quantity: Any,
        user_id: Optional[uuid.UUID] = None,
        movement_date: Optional[datetime] = None,
    ) -> StockMovement:
        quantity = ensure_scale(to_decimal(quantity, "quantity"), QUANTITY_PLACES, "quantity")
        if quantity <= ZERO:
            raise ValidationError("Opening balance must be positive")

        return await self.append_movement(
            item_id=item_id,
            movement_type=MovementType.IN.value,
            quantity=quantity,
            reference_type=MovementReferenceType.OPENING_BALANCE.value,
            movement_date=movement_date,
            created_by=user_id,
            notes="Opening balance",
        )
