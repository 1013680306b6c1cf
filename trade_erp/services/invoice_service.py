"""
Invoice Service.

Runs the invoice lifecycle on top of the state machine rules:

    create   -> draft, priced by the tax engine, no stock or ledger effect
    confirm  -> draft -> confirmed, one stock movement per line + ledger posting
    cancel   -> draft/confirmed -> cancelled, reversal movements + reversing
                posting when it was confirmed
    payments -> confirmed/partial -> partial/paid, payment fields only

Every status change is a compare-and-set UPDATE on the invoice row, so two
callers racing on the same invoice cannot both win. The status change and all
of its side effects are flushed on one session and committed once; on any
failure the whole unit of work is rolled back.
"""
import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from trade_erp.config import settings
from trade_erp.core.exceptions import TradeERPError, NotFoundError, ValidationError, StateConflictError, InternalError
from trade_erp.core.money import ZERO, to_decimal, ensure_scale
from trade_erp.db_types import QUANTITY_PLACES
from trade_erp.models.inventory import StockMovement, MovementType
from trade_erp.models.invoice import Invoice, InvoiceItem, InvoiceType
from trade_erp.services.invoice_state_machine import (
    InvoiceStatus, PaymentStatus,
    ensure_can_confirm, ensure_can_cancel, ensure_can_receive_payment,
    ensure_items_editable, ensure_header_editable, ensure_can_delete,
    movement_type_for, reference_type_for, number_prefix_for, is_sales_side,
)
from trade_erp.services.ledger_posting_service import LedgerPostingService
from trade_erp.services.repositories import (
    ItemRepository, CounterpartyRepository, InvoiceRepository,
    CounterpartyKind, CounterpartySnapshot,
)
from trade_erp.services.stock_ledger_service import StockMovementLedger, BatchInfo, validate_batch_dates
from trade_erp.services.tax_calculation import TaxCalculationEngine, LineInput, InvoiceCalculation

logger = logging.getLogger(__name__)

HEADER_FIELDS = ("due_date", "claim_account_id", "dimension", "notes")


def _as_dict(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if hasattr(data, "model_dump"):
        return data.model_dump(exclude_unset=True)
    return dict(data)


class InvoiceService:
    """Invoice lifecycle operations bound to one session."""

    def __init__(
        self,
        db: AsyncSession,
        tax_engine: Optional[TaxCalculationEngine] = None,
        stock_ledger: Optional[StockMovementLedger] = None,
        ledger_poster: Optional[LedgerPostingService] = None,
        items: Optional[ItemRepository] = None,
        counterparties: Optional[CounterpartyRepository] = None,
        invoices: Optional[InvoiceRepository] = None,
        enforce_stock_availability: Optional[bool] = None,
        default_payment_terms_days: Optional[int] = None,
    ):
        self.db = db
        self.tax_engine = tax_engine or TaxCalculationEngine()
        self.items = items or ItemRepository(db)
        self.stock_ledger = stock_ledger or StockMovementLedger(db, self.items)
        self.ledger_poster = ledger_poster or LedgerPostingService(db)
        self.counterparties = counterparties or CounterpartyRepository(db)
        self.invoices = invoices or InvoiceRepository(db)
        self.enforce_stock_availability = (
            settings.ENFORCE_STOCK_AVAILABILITY if enforce_stock_availability is None
            else enforce_stock_availability
        )
        self.default_payment_terms_days = (
            settings.DEFAULT_PAYMENT_TERMS_DAYS if default_payment_terms_days is None
            else default_payment_terms_days
        )

    # ==================== Unit of work ====================

    @asynccontextmanager
    async def _unit_of_work(self, action: str, invoice_ref: Any = None):
        """Commit once on success; roll back and re-raise (unexpected errors as InternalError) on failure."""
        try:
            yield
            await self.db.commit()
        except TradeERPError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Invoice {action} failed for {invoice_ref}, rolled back: {e}", exc_info=True)
            raise InternalError(
                f"Failed to {action} invoice",
                details={"invoice": str(invoice_ref) if invoice_ref else None, "error": str(e)},
            ) from e

    async def _get_or_404(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found", details={"invoice_id": str(invoice_id)})
        return invoice

    async def _compare_and_set(
        self,
        invoice: Invoice,
        to_status: str,
        guard: Callable[..., None],
        expected: Optional[Dict[str, Any]] = None,
        **values,
    ) -> str:
        """
        Move ``invoice`` from the status it was read with to ``to_status``.

        Returns the status it moved from. When the row no longer matches, the
        row is re-read only to raise the error the current status calls for.
        """
        from_status = invoice.status
        ok = await self.invoices.transition_status(
            invoice.id, [from_status], to_status, expected=expected, **values
        )
        if ok:
            return from_status

        current = await self.invoices.get_status(invoice.id)
        if current is None:
            raise NotFoundError("Invoice not found", details={"invoice_id": str(invoice.id)})
        status, payment_status = current
        logger.warning(
            f"Invoice {invoice.invoice_number}: {from_status} -> {to_status} rejected, status is now {status}"
        )
        guard(status, payment_status)
        raise StateConflictError(
            "Invoice was modified by another request, reload and retry",
            details={"status": status, "requested": to_status},
        )

    # ==================== Validation helpers ====================

    def _counterparty_kind(self, invoice_type: str) -> str:
        return CounterpartyKind.CUSTOMER if is_sales_side(invoice_type) else CounterpartyKind.SUPPLIER

    async def _load_counterparty(self, invoice_type: str, data: Mapping[str, Any]) -> CounterpartySnapshot:
        kind = self._counterparty_kind(invoice_type)
        counterparty_id = data.get("customer_id") if kind == CounterpartyKind.CUSTOMER else data.get("supplier_id")
        if counterparty_id is None:
            raise ValidationError(
                f"{kind.title()} is required for {invoice_type} invoices",
                details={"invoice_type": invoice_type},
            )

        snapshot = await self.counterparties.get_snapshot(kind, counterparty_id)
        if snapshot is None:
            raise NotFoundError(f"{kind.title()} not found", details={f"{kind}_id": str(counterparty_id)})
        if not snapshot.is_active:
            raise ValidationError(
                f"{kind.title()} {snapshot.name} is not active",
                details={f"{kind}_id": str(counterparty_id)},
            )
        return snapshot

    def _resolve_due_date(
        self,
        invoice_date: date,
        due_date: Optional[date],
        counterparty: CounterpartySnapshot,
    ) -> date:
        if due_date is None:
            terms = counterparty.payment_terms_days
            if terms is None:
                terms = self.default_payment_terms_days
            return invoice_date + timedelta(days=terms)
        if due_date < invoice_date:
            raise ValidationError(
                "Due date cannot be before invoice date",
                details={"invoice_date": invoice_date.isoformat(), "due_date": due_date.isoformat()},
            )
        return due_date

    async def _price_lines(
        self,
        lines: List[Mapping[str, Any]],
        counterparty: CounterpartySnapshot,
        claim_account_id: Optional[str],
    ) -> tuple:
        """Check items and batches, fill default GST rates, run the tax engine."""
        if not lines:
            raise ValidationError("Invoice must have at least one line item")

        known = await self.items.get_many(l.get("item_id") for l in lines if l.get("item_id"))
        inputs = []
        for line_no, line in enumerate(lines, start=1):
            item_id = line.get("item_id")
            if item_id is not None:
                item = known.get(item_id)
                if item is None:
                    raise NotFoundError("Item not found", details={"item_id": str(item_id), "line": line_no})
                if not item.is_active:
                    raise ValidationError(
                        f"Item {item.code} is not active",
                        details={"item_id": str(item_id), "line": line_no},
                    )
                if line.get("gst_rate") is None:
                    line = {**line, "gst_rate": item.gst_rate}
            validate_batch_dates(BatchInfo(
                batch_number=line.get("batch_number"),
                manufacturing_date=line.get("manufacturing_date"),
                expiry_date=line.get("expiry_date"),
            ))
            inputs.append(LineInput.from_mapping(line))

        calculation = self.tax_engine.calculate_invoice(
            inputs,
            is_non_filer=counterparty.is_non_filer,
            claim_account_id=claim_account_id,
        )
        return inputs, calculation

    @staticmethod
    def _scheme_quantity(raw: Mapping[str, Any], name: str) -> Decimal:
        return ensure_scale(to_decimal(raw.get(name), name), QUANTITY_PLACES, name)

    def _build_items(
        self,
        lines: List[Mapping[str, Any]],
        inputs: List[LineInput],
        calculation: InvoiceCalculation,
    ) -> List[InvoiceItem]:
        built = []
        for line_no, (raw, line, calc) in enumerate(zip(lines, inputs, calculation.lines), start=1):
            built.append(InvoiceItem(
                line_number=line_no,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount1_percent=line.discount1_percent,
                discount2_percent=line.discount2_percent,
                discount1_override=line.discount1_amount,
                discount2_override=line.discount2_amount,
                claim_account_id=line.claim_account_id,
                gst_rate=line.gst_rate,
                advance_tax_percent=line.advance_tax_percent,
                scheme1_quantity=self._scheme_quantity(raw, "scheme1_quantity"),
                scheme2_quantity=self._scheme_quantity(raw, "scheme2_quantity"),
                batch_number=raw.get("batch_number"),
                manufacturing_date=raw.get("manufacturing_date"),
                expiry_date=raw.get("expiry_date"),
                **calc.rounded(),
            ))
        return built

    @staticmethod
    def _apply_totals(invoice: Invoice, calculation: InvoiceCalculation) -> None:
        for name, value in calculation.totals.as_dict().items():
            setattr(invoice, name, value)

    async def _check_credit_limit(
        self,
        invoice_type: str,
        counterparty: CounterpartySnapshot,
        grand_total: Decimal,
        exclude_invoice_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Sales only; a credit limit of 0 means unlimited."""
        if invoice_type != InvoiceType.SALES.value or counterparty.credit_limit <= ZERO:
            return
        outstanding = await self.invoices.outstanding_for_customer(counterparty.id, exclude_invoice_id)
        if outstanding + grand_total > counterparty.credit_limit:
            raise ValidationError(
                f"Credit limit exceeded for customer {counterparty.name}",
                details={
                    "credit_limit": str(counterparty.credit_limit),
                    "outstanding": str(outstanding),
                    "invoice_total": str(grand_total),
                },
            )

    @staticmethod
    def _line_dicts(invoice: Invoice) -> List[Dict[str, Any]]:
        """Stored lines in the shape ``_price_lines`` accepts."""
        return [
            {
                "item_id": line.item_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "discount1_percent": line.discount1_percent,
                "discount1_amount": line.discount1_override,
                "discount2_percent": line.discount2_percent,
                "discount2_amount": line.discount2_override,
                "claim_account_id": line.claim_account_id,
                "gst_rate": line.gst_rate,
                "advance_tax_percent": line.advance_tax_percent,
                "scheme1_quantity": line.scheme1_quantity,
                "scheme2_quantity": line.scheme2_quantity,
                "batch_number": line.batch_number,
                "manufacturing_date": line.manufacturing_date,
                "expiry_date": line.expiry_date,
            }
            for line in invoice.items
        ]

    # ==================== Operations ====================

    async def get(self, invoice_id: uuid.UUID) -> Invoice:
        return await self._get_or_404(invoice_id)

    async def create(self, data: Any, user_id: uuid.UUID) -> Invoice:
        """Validate, price and store a new draft invoice."""
        data = _as_dict(data)
        invoice_type = data.get("invoice_type")
        if isinstance(invoice_type, InvoiceType):
            invoice_type = invoice_type.value
        if invoice_type not in {t.value for t in InvoiceType}:
            raise ValidationError(f"Invalid invoice type: {invoice_type}")
        if user_id is None:
            raise ValidationError("Created by user is required")

        lines = [_as_dict(line) for line in data.get("items") or []]

        async with self._unit_of_work("create"):
            counterparty = await self._load_counterparty(invoice_type, data)
            inputs, calculation = await self._price_lines(lines, counterparty, data.get("claim_account_id"))

            invoice_date = data.get("invoice_date") or datetime.now(timezone.utc).date()
            due_date = self._resolve_due_date(invoice_date, data.get("due_date"), counterparty)

            await self._check_credit_limit(invoice_type, counterparty, calculation.totals.grand_total)

            invoice_number = await self.invoices.next_invoice_number(
                number_prefix_for(invoice_type), invoice_date.year
            )
            is_customer = counterparty.kind == CounterpartyKind.CUSTOMER
            invoice = Invoice(
                invoice_number=invoice_number,
                invoice_type=invoice_type,
                status=InvoiceStatus.DRAFT,
                payment_status=PaymentStatus.PENDING,
                customer_id=counterparty.id if is_customer else None,
                supplier_id=None if is_customer else counterparty.id,
                invoice_date=invoice_date,
                due_date=due_date,
                claim_account_id=data.get("claim_account_id"),
                dimension=data.get("dimension"),
                notes=data.get("notes"),
                paid_amount=ZERO,
                created_by=user_id,
                items=self._build_items(lines, inputs, calculation),
            )
            self._apply_totals(invoice, calculation)
            self.db.add(invoice)
            await self.db.flush()

        logger.info(
            f"Invoice {invoice.invoice_number} created as draft "
            f"({invoice_type}, {len(lines)} lines, total {invoice.grand_total})"
        )
        return await self.get(invoice.id)

    async def confirm(self, invoice_id: uuid.UUID, user_id: uuid.UUID) -> Invoice:
        """
        draft -> confirmed.

        Appends exactly one stock movement per line (direction from the
        invoice type, batch copied from the line) and posts the grand total to
        the ledger, all in the same commit as the status change.
        """
        async with self._unit_of_work("confirm", invoice_id):
            invoice = await self._get_or_404(invoice_id)
            ensure_can_confirm(invoice.status)

            now = datetime.now(timezone.utc)
            await self._compare_and_set(
                invoice, InvoiceStatus.CONFIRMED, ensure_can_confirm,
                confirmed_at=now, confirmed_by=user_id,
            )

            movement_type = movement_type_for(invoice.invoice_type)
            reference_type = reference_type_for(invoice.invoice_type)
            sign = Decimal("1") if movement_type == MovementType.IN.value else Decimal("-1")
            enforce = (
                self.enforce_stock_availability
                and movement_type == MovementType.OUT.value
                and is_sales_side(invoice.invoice_type)
            )

            for line in invoice.items:
                await self.stock_ledger.append_movement(
                    item_id=line.item_id,
                    movement_type=movement_type,
                    quantity=sign * abs(line.quantity),
                    reference_type=reference_type,
                    reference_id=invoice.id,
                    batch_info=BatchInfo.from_source(line),
                    movement_date=now,
                    created_by=user_id,
                    notes=f"{invoice.invoice_number} line {line.line_number}",
                    enforce_availability=enforce,
                )

            await self.ledger_poster.post_invoice(invoice, user_id)

        logger.info(
            f"Invoice {invoice.invoice_number} confirmed: draft -> confirmed, "
            f"{len(invoice.items)} stock movement(s) {movement_type}"
        )
        return await self.get(invoice_id)

    async def cancel(self, invoice_id: uuid.UUID, user_id: uuid.UUID, reason: Optional[str] = None) -> Invoice:
        """
        draft/confirmed -> cancelled.

        A confirmed invoice gets one reversal per stock movement and a
        reversing ledger posting. A draft has nothing to reverse.
        """
        async with self._unit_of_work("cancel", invoice_id):
            invoice = await self._get_or_404(invoice_id)
            ensure_can_cancel(invoice.status, invoice.payment_status)

            from_status = await self._compare_and_set(
                invoice, InvoiceStatus.CANCELLED, ensure_can_cancel,
                cancelled_at=datetime.now(timezone.utc),
                cancelled_by=user_id,
                cancellation_reason=reason,
            )

            reversed_count = 0
            if from_status == InvoiceStatus.CONFIRMED:
                reversals = await self.stock_ledger.reverse(
                    reference_type_for(invoice.invoice_type),
                    invoice.id,
                    created_by=user_id,
                    notes=f"Cancellation of {invoice.invoice_number}" + (f": {reason}" if reason else ""),
                )
                reversed_count = len(reversals)
                await self.ledger_poster.post_invoice_reversal(invoice, user_id)

        logger.info(
            f"Invoice {invoice.invoice_number} cancelled: {from_status} -> cancelled, "
            f"{reversed_count} stock movement(s) reversed"
        )
        return await self.get(invoice_id)

    async def mark_paid(self, invoice_id: uuid.UUID, payment_data: Any = None, user_id: Optional[uuid.UUID] = None) -> Invoice:
        """Settle the whole outstanding amount. No stock effect."""
        payment = _as_dict(payment_data)

        async with self._unit_of_work("mark paid", invoice_id):
            invoice = await self._get_or_404(invoice_id)
            ensure_can_receive_payment(invoice.status)

            from_status = await self._compare_and_set(
                invoice, InvoiceStatus.PAID, ensure_can_receive_payment,
                expected={"paid_amount": invoice.paid_amount},
                payment_status=PaymentStatus.PAID,
                paid_amount=invoice.grand_total,
                paid_at=payment.get("paid_at") or datetime.now(timezone.utc),
                payment_method=payment.get("payment_method"),
                payment_reference=payment.get("payment_reference"),
                payment_notes=payment.get("notes"),
            )

        logger.info(f"Invoice {invoice.invoice_number} paid: {from_status} -> paid")
        return await self.get(invoice_id)

    async def mark_partially_paid(
        self,
        invoice_id: uuid.UUID,
        amount: Any,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Invoice:
        """
        Record an instalment. Instalments accumulate in ``paid_amount``; the one
        that reaches the grand total moves the invoice to paid. Paying more
        than is due is rejected.
        """
        amount = to_decimal(amount, "amount")
        if amount <= ZERO:
            raise ValidationError("Payment amount must be positive", details={"amount": str(amount)})

        async with self._unit_of_work("record payment on", invoice_id):
            invoice = await self._get_or_404(invoice_id)
            ensure_can_receive_payment(invoice.status)

            paid_before = invoice.paid_amount or ZERO
            paid_after = paid_before + amount
            if paid_after > invoice.grand_total:
                raise ValidationError(
                    "Payment exceeds amount due",
                    details={"amount": str(amount), "amount_due": str(invoice.grand_total - paid_before)},
                )

            fully_paid = paid_after == invoice.grand_total
            to_status = InvoiceStatus.PAID if fully_paid else InvoiceStatus.PARTIAL
            from_status = await self._compare_and_set(
                invoice, to_status, ensure_can_receive_payment,
                expected={"paid_amount": paid_before},
                payment_status=PaymentStatus.PAID if fully_paid else PaymentStatus.PARTIAL,
                paid_amount=paid_after,
                paid_at=paid_at or datetime.now(timezone.utc),
                payment_method=payment_method,
                payment_reference=payment_reference,
                payment_notes=notes,
            )

        logger.info(
            f"Invoice {invoice.invoice_number} payment {amount}: {from_status} -> {to_status} "
            f"(paid {paid_after} of {invoice.grand_total})"
        )
        return await self.get(invoice_id)

    async def update(self, invoice_id: uuid.UUID, patch: Any, user_id: Optional[uuid.UUID] = None) -> Invoice:
        """
        Edit an invoice.

        Header fields can change until the invoice is cancelled. Line items
        can only be replaced while it is a draft; replacing them re-runs item
        checks, the tax engine and the credit limit.
        """
        patch = _as_dict(patch)
        new_lines = patch.pop("items", None)
        header = {k: v for k, v in patch.items() if k in HEADER_FIELDS}

        async with self._unit_of_work("update", invoice_id):
            invoice = await self._get_or_404(invoice_id)
            if new_lines is not None:
                ensure_items_editable(invoice.status)
                guard = ensure_items_editable
            else:
                ensure_header_editable(invoice.status)
                guard = ensure_header_editable

            # Status-preserving CAS: fails if another request moved the invoice on
            await self._compare_and_set(invoice, invoice.status, guard)

            if "due_date" in header:
                if header["due_date"] is None:
                    raise ValidationError("Due date cannot be cleared")
                if header["due_date"] < invoice.invoice_date:
                    raise ValidationError(
                        "Due date cannot be before invoice date",
                        details={
                            "invoice_date": invoice.invoice_date.isoformat(),
                            "due_date": header["due_date"].isoformat(),
                        },
                    )
            for name, value in header.items():
                setattr(invoice, name, value)

            reprice = new_lines is not None or (
                "claim_account_id" in header and invoice.status == InvoiceStatus.DRAFT
            )
            if reprice:
                lines = [_as_dict(l) for l in new_lines] if new_lines is not None else self._line_dicts(invoice)
                counterparty = await self.counterparties.get_snapshot(
                    self._counterparty_kind(invoice.invoice_type), invoice.counterparty_id
                )
                if counterparty is None:
                    raise NotFoundError("Counterparty not found")
                inputs, calculation = await self._price_lines(lines, counterparty, invoice.claim_account_id)
                if new_lines is not None:
                    await self._check_credit_limit(
                        invoice.invoice_type, counterparty, calculation.totals.grand_total,
                        exclude_invoice_id=invoice.id,
                    )
                    invoice.items.clear()
                    await self.db.flush()
                    invoice.items.extend(self._build_items(lines, inputs, calculation))
                self._apply_totals(invoice, calculation)

            await self.db.flush()

        logger.info(
            f"Invoice {invoice.invoice_number} updated "
            f"({'items and ' if new_lines is not None else ''}fields: {', '.join(header) or 'none'})"
        )
        return await self.get(invoice_id)

    async def delete(self, invoice_id: uuid.UUID) -> None:
        """Delete a draft invoice and its lines."""
        async with self._unit_of_work("delete", invoice_id):
            invoice = await self._get_or_404(invoice_id)
            ensure_can_delete(invoice.status)
            await self._compare_and_set(invoice, InvoiceStatus.DRAFT, ensure_can_delete)
            invoice_number = invoice.invoice_number
            await self.db.delete(invoice)

        logger.info(f"Draft invoice {invoice_number} deleted")

    async def get_stock_movements(self, invoice_id: uuid.UUID) -> List[StockMovement]:
        invoice = await self._get_or_404(invoice_id)
        return await self.stock_ledger.find_by_reference(reference_type_for(invoice.invoice_type), invoice.id)
