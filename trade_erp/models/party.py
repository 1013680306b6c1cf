"""Counterparty models: customers (sales side) and suppliers (purchase side)."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from trade_erp.database import Base
from trade_erp.db_types import UUIDType, MoneyType


class Customer(Base):
    """Customer account invoiced through sales and sales-return invoices."""

    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    code: Mapped[Optional[str]] = mapped_column(String(30), unique=True, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Tax registration
    ntn: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    is_non_filer: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
        comment="Non-filers attract invoice-level non-filer GST and income tax"
    )

    # Credit control
    credit_limit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), comment="0 means no limit")
    payment_terms_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def __repr__(self):
        return f"<Customer {self.code or self.id}>"


class Supplier(Base):
    """Supplier account invoiced through purchase and purchase-return invoices."""

    __tablename__ = "suppliers"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    code: Mapped[Optional[str]] = mapped_column(String(30), unique=True, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    ntn: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    is_non_filer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_terms_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def __repr__(self):
        return f"<Supplier {self.code or self.id}>"
