"""
Repositories used by the invoice core.

Each repository wraps the caller's AsyncSession and never commits: the
service that owns the unit of work decides when to commit or roll back.
Counterparties come back as plain ``CounterpartySnapshot`` values so the core
never holds a live ORM row for something it does not own.
"""
import uuid
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from trade_erp.core.exceptions import NotFoundError, ValidationError
from trade_erp.core.money import round_money
from trade_erp.models.inventory import Item
from trade_erp.models.invoice import Invoice, InvoiceNumberSequence, InvoiceType
from trade_erp.models.party import Customer, Supplier

logger = logging.getLogger(__name__)

# Statuses whose unpaid amount counts against a customer credit limit
OPEN_STATUSES = ["draft", "confirmed", "partial"]


# ==================== ITEMS ====================

class ItemRepository:
    """Item lookups and the running stock counter."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, item_id: uuid.UUID) -> Optional[Item]:
        result = await self.db.execute(select(Item).where(Item.id == item_id))
        return result.scalar_one_or_none()

    async def get_many(self, item_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Item]:
        ids = set(item_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(Item).where(Item.id.in_(ids)))
        return {item.id: item for item in result.scalars().all()}

    async def get_current_stock(self, item_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(select(Item.current_stock).where(Item.id == item_id))
        stock = result.scalar_one_or_none()
        if stock is None:
            raise NotFoundError("Item not found", details={"item_id": str(item_id)})
        return stock

    async def adjust_stock(
        self,
        item_id: uuid.UUID,
        delta: Decimal,
        enforce_availability: bool = False,
    ) -> Decimal:
        """
        Apply ``current_stock = current_stock + delta`` in one UPDATE.

        With ``enforce_availability`` a decrease that would take the counter
        below zero matches no row and raises ValidationError; the check and the
        write are the same statement.
        """
        stmt = update(Item).where(Item.id == item_id)
        if enforce_availability and delta < 0:
            stmt = stmt.where(Item.current_stock + delta >= 0)
        result = await self.db.execute(
            stmt.values(current_stock=Item.current_stock + delta)
        )

        if result.rowcount == 0:
            # Re-read only to pick the error
            current = await self.get_current_stock(item_id)
            logger.warning(f"Insufficient stock for item {item_id}: available {current}, change {delta}")
            raise ValidationError(
                f"Insufficient stock. Available: {current}, required: {abs(delta)}",
                details={"item_id": str(item_id), "available": str(current), "required": str(abs(delta))},
            )

        return await self.get_current_stock(item_id)


# ==================== COUNTERPARTIES ====================

class CounterpartyKind:
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


@dataclass(frozen=True)
class CounterpartySnapshot:
    """Read-only view of a customer or supplier at lookup time."""
    id: uuid.UUID
    kind: str
    name: str
    is_active: bool
    is_non_filer: bool
    credit_limit: Decimal
    payment_terms_days: Optional[int]


class CounterpartyRepository:

    MODELS = {
        CounterpartyKind.CUSTOMER: Customer,
        CounterpartyKind.SUPPLIER: Supplier,
    }

    def __init__(self, db: AsyncSession):
        self.db = db

    def _model(self, kind: str):
        try:
            return self.MODELS[kind]
        except KeyError:
            raise ValidationError(f"Unknown counterparty kind: {kind}")

    async def get_snapshot(self, kind: str, counterparty_id: uuid.UUID) -> Optional[CounterpartySnapshot]:
        model = self._model(kind)
        result = await self.db.execute(select(model).where(model.id == counterparty_id))
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return CounterpartySnapshot(
            id=row.id,
            kind=kind,
            name=row.name,
            is_active=row.is_active,
            is_non_filer=row.is_non_filer,
            credit_limit=getattr(row, "credit_limit", None) or Decimal("0"),
            payment_terms_days=row.payment_terms_days,
        )

    async def is_active(self, kind: str, counterparty_id: uuid.UUID) -> bool:
        snapshot = await self.get_snapshot(kind, counterparty_id)
        return bool(snapshot and snapshot.is_active)


# ==================== INVOICES ====================

class InvoiceRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_status(self, invoice_id: uuid.UUID) -> Optional[tuple]:
        """Fresh (status, payment_status) straight from the table, or None."""
        result = await self.db.execute(
            select(Invoice.status, Invoice.payment_status).where(Invoice.id == invoice_id)
        )
        row = result.one_or_none()
        return tuple(row) if row else None

    async def transition_status(
        self,
        invoice_id: uuid.UUID,
        from_statuses: List[str],
        to_status: str,
        expected: Optional[Dict[str, object]] = None,
        **values,
    ) -> bool:
        """
        Compare-and-set the status.

        ``UPDATE invoices SET status = :to, ... WHERE id = :id AND status IN (:from)``
        plus an equality condition per ``expected`` column. Returns False when
        no row matched, i.e. the invoice is missing or another writer got there
        first.
        """
        stmt = update(Invoice).where(
            Invoice.id == invoice_id,
            Invoice.status.in_(from_statuses),
        )
        for column, value in (expected or {}).items():
            stmt = stmt.where(getattr(Invoice, column) == value)

        result = await self.db.execute(stmt.values(status=to_status, **values))
        return result.rowcount == 1

    async def next_invoice_number(self, prefix: str, year: int) -> str:
        """Allocate the next number in the ``prefix``/``year`` series, e.g. SI2024000001."""
        result = await self.db.execute(
            select(InvoiceNumberSequence).where(
                InvoiceNumberSequence.prefix == prefix,
                InvoiceNumberSequence.year == year,
            )
        )
        sequence = result.scalar_one_or_none()

        if not sequence:
            sequence = InvoiceNumberSequence(prefix=prefix, year=year, current_number=0)
            self.db.add(sequence)
            await self.db.flush()

        await self.db.execute(
            update(InvoiceNumberSequence)
            .where(InvoiceNumberSequence.id == sequence.id)
            .values(current_number=InvoiceNumberSequence.current_number + 1)
        )
        number = (await self.db.execute(
            select(InvoiceNumberSequence.current_number).where(InvoiceNumberSequence.id == sequence.id)
        )).scalar_one()

        return f"{prefix}{year}{str(number).zfill(sequence.padding_length)}"

    async def outstanding_for_customer(
        self,
        customer_id: uuid.UUID,
        exclude_invoice_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Unpaid balance of the customer's live sales invoices (drafts included)."""
        stmt = select(
            func.coalesce(func.sum(Invoice.grand_total - Invoice.paid_amount), 0)
        ).where(
            Invoice.customer_id == customer_id,
            Invoice.invoice_type == InvoiceType.SALES.value,
            Invoice.status.in_(OPEN_STATUSES),
        )
        if exclude_invoice_id is not None:
            stmt = stmt.where(Invoice.id != exclude_invoice_id)
        total = (await self.db.execute(stmt)).scalar_one()
        return round_money(Decimal(str(total)))
