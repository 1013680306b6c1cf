"""Inventory models: items with a running stock counter and the stock-movement ledger."""
import uuid
from enum import Enum
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Text, Boolean, ForeignKey, DateTime, Date, Index
from sqlalchemy.orm import Mapped, mapped_column

from trade_erp.database import Base
from trade_erp.db_types import UUIDType, QuantityType, RateType


class MovementType(str, Enum):
    """Stock movement direction."""
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"  # Signed as given


class MovementReferenceType(str, Enum):
    """Document a stock movement belongs to."""
    SALES_INVOICE = "sales_invoice"
    PURCHASE_INVOICE = "purchase_invoice"
    ADJUSTMENT = "adjustment"
    OPENING_BALANCE = "opening_balance"
    TRANSFER = "transfer"


class Item(Base):
    """Stock-keeping item."""

    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    # Default GST rate offered when a line does not carry one
    gst_rate: Mapped[Decimal] = mapped_column(RateType, default=Decimal("18"))

    # Running counter, only ever changed by relative UPDATEs (current_stock = current_stock + delta)
    current_stock: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"), nullable=False)
    minimum_stock: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.minimum_stock

    def __repr__(self):
        return f"<Item {self.code}>"


class StockMovement(Base):
    """Append-only stock ledger row. Never updated or deleted; reversals are new rows."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_item_date", "item_id", "movement_date"),
        Index("ix_stock_movements_reference", "reference_type", "reference_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(UUIDType, ForeignKey("items.id"), nullable=False)

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="in, out, adjustment")
    quantity: Mapped[Decimal] = mapped_column(
        QuantityType, nullable=False, comment="Positive for in, negative for out"
    )

    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    reversal_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("stock_movements.id"), nullable=True, index=True
    )

    # Batch tracking
    batch_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    manufacturing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    movement_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def absolute_quantity(self) -> Decimal:
        return abs(self.quantity)

    def __repr__(self):
        return f"<StockMovement {self.movement_type} {self.quantity} item={self.item_id}>"
