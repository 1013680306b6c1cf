"""Invoice models: sales / purchase invoices (and their returns) with embedded line items."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trade_erp.database import Base
from trade_erp.db_types import UUIDType, MoneyType, QuantityType, RateType


class InvoiceType(str, Enum):
    """Invoice type enumeration."""
    SALES = "sales"
    PURCHASE = "purchase"
    RETURN_SALES = "return_sales"          # Goods coming back from a customer
    RETURN_PURCHASE = "return_purchase"    # Goods going back to a supplier


SALES_SIDE_TYPES = (InvoiceType.SALES.value, InvoiceType.RETURN_SALES.value)
PURCHASE_SIDE_TYPES = (InvoiceType.PURCHASE.value, InvoiceType.RETURN_PURCHASE.value)


class Invoice(Base):
    """
    Sales or purchase invoice.

    Line items are owned by the invoice. Counterparty and item references are
    plain ids; nothing is resolved through ORM relationships except the lines.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_type_date", "invoice_type", "invoice_date"),
        Index("ix_invoices_customer_date", "customer_id", "invoice_date"),
        Index("ix_invoices_supplier_date", "supplier_id", "invoice_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    # Identification
    invoice_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True,
        comment="SI/PI/SR/PR + year + 6 digits, e.g. SI2024000001"
    )
    invoice_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False, index=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)

    # Counterparty (exactly one is set, depending on type)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, ForeignKey("customers.id"), nullable=True)
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, ForeignKey("suppliers.id"), nullable=True)

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    claim_account_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Account discount2 (scheme) amounts are charged back to"
    )
    dimension: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Totals (rounded once from full-precision line sums)
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    total_discount1: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    total_discount2: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    taxable_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    gst_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    gst18_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    gst4_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    advance_tax_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    non_filer_gst_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    income_tax_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    # Audit
    created_by: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Payment
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.line_number",
        lazy="selectin",
    )

    @property
    def counterparty_id(self) -> Optional[uuid.UUID]:
        return self.customer_id if self.invoice_type in SALES_SIDE_TYPES else self.supplier_id

    @property
    def amount_due(self) -> Decimal:
        return (self.grand_total or Decimal("0")) - (self.paid_amount or Decimal("0"))

    @property
    def totals(self) -> Dict[str, Decimal]:
        return {
            "subtotal": self.subtotal,
            "total_discount1": self.total_discount1,
            "total_discount2": self.total_discount2,
            "taxable_amount": self.taxable_amount,
            "total_tax": self.total_tax,
            "gst_total": self.gst_total,
            "gst18_total": self.gst18_total,
            "gst4_total": self.gst4_total,
            "advance_tax_total": self.advance_tax_total,
            "non_filer_gst_total": self.non_filer_gst_total,
            "income_tax_total": self.income_tax_total,
            "grand_total": self.grand_total,
            "paid_amount": self.paid_amount,
        }

    def __repr__(self):
        return f"<Invoice {self.invoice_number} {self.status}>"


class InvoiceItem(Base):
    """Invoice line item. Quantity is a magnitude; direction comes from the invoice type."""

    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[uuid.UUID] = mapped_column(UUIDType, ForeignKey("items.id"), nullable=False, index=True)

    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Discounts (discount2 applies on the amount left after discount1)
    discount1_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    discount1_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    discount2_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    discount2_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    # Amounts the caller entered in place of the percent; NULL when the percent drove the discount
    discount1_override: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    discount2_override: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    claim_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Taxes
    gst_rate: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    advance_tax_percent: Mapped[Decimal] = mapped_column(RateType, default=Decimal("0"))
    advance_tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    # Scheme (bonus) units, tracked apart from billed quantity
    scheme1_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))
    scheme2_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=Decimal("0"))

    # Batch
    batch_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    manufacturing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Amounts
    line_subtotal: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    taxable_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"))

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self):
        return f"<InvoiceItem {self.line_number} item={self.item_id} qty={self.quantity}>"


class InvoiceNumberSequence(Base):
    """Running invoice number per prefix and calendar year."""

    __tablename__ = "invoice_number_sequences"
    __table_args__ = (
        UniqueConstraint("prefix", "year", name="uq_invoice_sequence_prefix_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    prefix: Mapped[str] = mapped_column(String(5), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    padding_length: Mapped[int] = mapped_column(Integer, default=6, nullable=False)
