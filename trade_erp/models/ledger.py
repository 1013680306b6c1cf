"""Double-entry ledger rows written by invoice postings."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from trade_erp.database import Base
from trade_erp.db_types import UUIDType, MoneyType


class LedgerEntry(Base):
    """
    One side of a double entry.

    Rows are only ever created in pairs sharing ``entry_group_id``; the debit
    row carries the amount in ``debit`` and the credit row in ``credit``.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_account", "account_type", "account_id"),
        Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    entry_group_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    account_type: Mapped[str] = mapped_column(String(30), nullable=False, comment="Customer, Supplier, Account")
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)

    debit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    credit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_by: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def __repr__(self):
        side = "Dr" if self.debit else "Cr"
        return f"<LedgerEntry {side} {self.account_type}:{self.account_id} {self.debit or self.credit}>"
