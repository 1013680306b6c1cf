"""
Tests for the invoice lifecycle service.

Verifies:
- Draft creation: pricing, numbering, due dates, counterparty / item / credit checks
- Confirm: one stock movement per line, ledger posting, all-or-nothing commit
- Cancel: exact reversals for confirmed invoices, nothing for drafts
- Payments, header / item edits and draft deletion
- Status compare-and-set against a stale read
"""
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from trade_erp.core.exceptions import NotFoundError, ValidationError, StateConflictError, InternalError
from trade_erp.models import Invoice
from trade_erp.services.invoice_service import InvoiceService
from trade_erp.services.ledger_posting_service import LedgerPostingService
from trade_erp.services.repositories import InvoiceRepository


class StaleReadRepository(InvoiceRepository):
    """Hands back an invoice read before another request changed it."""

    def __init__(self, db, stale):
        super().__init__(db)
        self.stale = stale

    async def get(self, invoice_id):
        return self.stale


class FailingLedgerPoster(LedgerPostingService):

    async def post_invoice(self, invoice, user_id):
        raise RuntimeError("ledger unavailable")


# ==================== Create ====================

class TestCreate:

    async def test_creates_priced_draft(self, service, sales_payload, user_id, stock_of, movement_count, seed):
        invoice = await service.create(sales_payload(), user_id)

        assert invoice.status == "draft"
        assert invoice.payment_status == "pending"
        assert invoice.invoice_number.startswith(f"SI{invoice.invoice_date.year}")
        assert len(invoice.items) == 2
        assert [line.line_number for line in invoice.items] == [1, 2]
        assert invoice.taxable_amount == Decimal("2000.00")
        assert invoice.gst18_total == Decimal("180.00")
        assert invoice.gst4_total == Decimal("40.00")
        assert invoice.grand_total == Decimal("2220.00")
        assert invoice.amount_due == Decimal("2220.00")
        assert invoice.created_by == user_id

        # Drafts have no stock effect
        assert await movement_count(invoice.id) == 0
        assert await stock_of(seed.item_a) == Decimal("100")

    async def test_line_takes_item_gst_rate_by_default(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)

        assert invoice.items[0].gst_rate == Decimal("18")
        assert invoice.items[1].gst_rate == Decimal("4")

    async def test_numbers_are_sequential_per_prefix_and_year(self, service, sales_payload, purchase_payload, user_id):
        first = await service.create(sales_payload(invoice_date=date(2024, 5, 1)), user_id)
        second = await service.create(sales_payload(invoice_date=date(2024, 6, 1)), user_id)
        purchase = await service.create(purchase_payload(invoice_date=date(2024, 6, 1)), user_id)

        assert first.invoice_number == "SI2024000001"
        assert second.invoice_number == "SI2024000002"
        assert purchase.invoice_number == "PI2024000001"

    async def test_due_date_from_payment_terms(self, service, sales_payload, purchase_payload, user_id, seed):
        default_terms = await service.create(sales_payload(invoice_date=date(2024, 5, 1)), user_id)
        customer_terms = await service.create(
            sales_payload(invoice_date=date(2024, 5, 1), customer_id=seed.limited_customer_id,
                          items=[{"item_id": seed.item_a, "quantity": 1, "unit_price": 100}]),
            user_id,
        )
        supplier_terms = await service.create(purchase_payload(invoice_date=date(2024, 5, 1)), user_id)

        assert default_terms.due_date == date(2024, 5, 31)
        assert customer_terms.due_date == date(2024, 5, 16)
        assert supplier_terms.due_date == date(2024, 6, 15)

    async def test_due_date_before_invoice_date(self, service, sales_payload, user_id):
        with pytest.raises(ValidationError, match="Due date cannot be before invoice date"):
            await service.create(
                sales_payload(invoice_date=date(2024, 5, 1), due_date=date(2024, 4, 1)), user_id
            )

    async def test_inactive_customer(self, service, sales_payload, user_id, seed):
        with pytest.raises(ValidationError, match="not active"):
            await service.create(sales_payload(customer_id=seed.inactive_customer_id), user_id)

    async def test_unknown_customer(self, service, sales_payload, user_id):
        with pytest.raises(NotFoundError):
            await service.create(sales_payload(customer_id=uuid.uuid4()), user_id)

    async def test_sales_invoice_needs_customer(self, service, sales_payload, user_id):
        with pytest.raises(ValidationError, match="Customer is required"):
            await service.create(sales_payload(customer_id=None), user_id)

    async def test_inactive_item(self, service, sales_payload, user_id, seed):
        items = [{"item_id": seed.inactive_item, "quantity": 1, "unit_price": 10}]
        with pytest.raises(ValidationError, match="not active"):
            await service.create(sales_payload(items=items), user_id)

    async def test_unknown_item(self, service, sales_payload, user_id):
        items = [{"item_id": uuid.uuid4(), "quantity": 1, "unit_price": 10}]
        with pytest.raises(NotFoundError, match="Item not found"):
            await service.create(sales_payload(items=items), user_id)

    async def test_line_without_item(self, service, sales_payload, user_id):
        with pytest.raises(ValidationError, match="Item is required"):
            await service.create(sales_payload(items=[{"quantity": 1, "unit_price": 10}]), user_id)

    async def test_no_lines(self, service, sales_payload, user_id):
        with pytest.raises(ValidationError, match="at least one line item"):
            await service.create(sales_payload(items=[]), user_id)

    async def test_batch_dates_checked_per_line(self, service, purchase_payload, user_id, seed):
        items = [{
            "item_id": seed.item_a, "quantity": 1, "unit_price": 10,
            "batch_number": "B9", "manufacturing_date": date(2025, 1, 1), "expiry_date": date(2024, 1, 1),
        }]
        with pytest.raises(ValidationError, match="Manufacturing date cannot be after expiry date"):
            await service.create(purchase_payload(items=items), user_id)

    async def test_invalid_invoice_type(self, service, sales_payload, user_id):
        with pytest.raises(ValidationError, match="Invalid invoice type"):
            await service.create(sales_payload(invoice_type="proforma"), user_id)

    async def test_non_filer_levies(self, service, sales_payload, user_id, seed):
        items = [{"item_id": seed.item_a, "quantity": 10, "unit_price": 100}]
        invoice = await service.create(sales_payload(customer_id=seed.non_filer_id, items=items), user_id)

        assert invoice.non_filer_gst_total == Decimal("1.00")
        assert invoice.income_tax_total == Decimal("55.00")
        assert invoice.grand_total == Decimal("1236.00")

    async def test_credit_limit(self, service, sales_payload, user_id, seed):
        payload = sales_payload(
            customer_id=seed.limited_customer_id,
            items=[{"item_id": seed.item_a, "quantity": 10, "unit_price": 100}],
        )
        first = await service.create(payload, user_id)
        first_id = first.id
        assert first.grand_total == Decimal("1180.00")

        with pytest.raises(ValidationError, match="Credit limit exceeded"):
            await service.create(payload, user_id)

        # Cancelled invoices no longer count against the limit
        await service.cancel(first_id, user_id)
        second = await service.create(payload, user_id)
        assert second.status == "draft"

    @pytest.mark.parametrize("field,value", [
        ("quantity", "1.2345"),
        ("unit_price", "10.005"),
        ("discount2_amount", "0.001"),
        ("scheme1_quantity", "0.0001"),
    ])
    async def test_values_finer_than_stored_are_rejected(self, service, sales_payload, user_id, session_factory, seed, field, value):
        line = {"item_id": seed.item_a, "quantity": "1", "unit_price": "10", field: value}

        with pytest.raises(ValidationError, match=f"{field} allows at most"):
            await service.create(sales_payload(items=[line], claim_account_id="SCHEME-01"), user_id)

        async with session_factory() as session:
            assert (await session.execute(select(Invoice))).scalars().all() == []

    async def test_stored_line_matches_what_was_billed_and_stocked(self, service, sales_payload, user_id, stock_of, seed):
        items = [{"item_id": seed.item_a, "quantity": "1.25", "unit_price": "10.01", "gst_rate": 0}]
        invoice = await service.create(sales_payload(items=items), user_id)
        invoice_id = invoice.id

        confirmed = await service.confirm(invoice_id, user_id)

        [line] = confirmed.items
        assert line.quantity == Decimal("1.25")
        assert line.unit_price == Decimal("10.01")
        assert line.line_subtotal == Decimal("12.51")
        assert confirmed.grand_total == Decimal("12.51")

        [movement] = await service.get_stock_movements(invoice_id)
        assert movement.quantity == Decimal("-1.25")
        assert await stock_of(seed.item_a) == Decimal("98.75")


# ==================== Confirm ====================

class TestConfirm:

    async def test_one_movement_per_line(self, service, sales_payload, user_id, stock_of, seed):
        invoice = await service.create(sales_payload(), user_id)

        confirmed = await service.confirm(invoice.id, user_id)

        assert confirmed.status == "confirmed"
        assert confirmed.confirmed_by == user_id
        assert confirmed.confirmed_at is not None

        movements = await service.get_stock_movements(invoice.id)
        assert len(movements) == len(invoice.items)
        quantities = {m.item_id: m for m in movements}
        for line in invoice.items:
            movement = quantities[line.item_id]
            assert movement.reference_id == invoice.id
            assert movement.reference_type == "sales_invoice"
            assert movement.movement_type == "out"
            assert abs(movement.quantity) == line.quantity

        assert await stock_of(seed.item_a) == Decimal("90")
        assert await stock_of(seed.item_b) == Decimal("45")

    @pytest.mark.parametrize("invoice_type,party,movement_type,reference_type,delta", [
        ("sales", "customer_id", "out", "sales_invoice", Decimal("-3")),
        ("return_sales", "customer_id", "in", "sales_invoice", Decimal("3")),
        ("purchase", "supplier_id", "in", "purchase_invoice", Decimal("3")),
        ("return_purchase", "supplier_id", "out", "purchase_invoice", Decimal("-3")),
    ])
    async def test_direction_by_invoice_type(
        self, service, user_id, stock_of, seed, invoice_type, party, movement_type, reference_type, delta,
    ):
        party_id = seed.customer_id if party == "customer_id" else seed.supplier_id
        invoice = await service.create({
            "invoice_type": invoice_type,
            party: party_id,
            "items": [{"item_id": seed.item_a, "quantity": 3, "unit_price": 50}],
        }, user_id)

        await service.confirm(invoice.id, user_id)

        [movement] = await service.get_stock_movements(invoice.id)
        assert movement.movement_type == movement_type
        assert movement.reference_type == reference_type
        assert movement.quantity == delta
        assert await stock_of(seed.item_a) == Decimal("100") + delta

    async def test_batch_copied_to_movement(self, service, purchase_payload, user_id, seed):
        items = [{
            "item_id": seed.item_b, "quantity": 12, "unit_price": 40,
            "batch_number": "B1", "manufacturing_date": date(2024, 1, 1), "expiry_date": date(2025, 12, 31),
        }]
        invoice = await service.create(purchase_payload(items=items), user_id)

        await service.confirm(invoice.id, user_id)

        [movement] = await service.get_stock_movements(invoice.id)
        assert movement.batch_number == "B1"
        assert movement.manufacturing_date == date(2024, 1, 1)
        assert movement.expiry_date == date(2025, 12, 31)

    async def test_scheme_quantities_do_not_move_stock(self, service, sales_payload, user_id, stock_of, seed):
        items = [{"item_id": seed.item_a, "quantity": 10, "unit_price": 100, "scheme1_quantity": 2}]
        invoice = await service.create(sales_payload(items=items), user_id)
        await service.confirm(invoice.id, user_id)

        assert await stock_of(seed.item_a) == Decimal("90")

    async def test_sales_posting(self, service, sales_payload, user_id, ledger_entries, seed):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        entries = await ledger_entries(invoice.id)
        assert len(entries) == 2
        debit = next(e for e in entries if e.debit > 0)
        credit = next(e for e in entries if e.credit > 0)
        assert (debit.account_type, debit.account_id) == ("Customer", str(seed.customer_id))
        assert (credit.account_type, credit.account_id) == ("Account", "SALES")
        assert debit.debit == credit.credit == Decimal("2220.00")
        assert debit.entry_group_id == credit.entry_group_id

    async def test_purchase_posting(self, service, purchase_payload, user_id, ledger_entries, seed):
        invoice = await service.create(purchase_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        entries = await ledger_entries(invoice.id)
        debit = next(e for e in entries if e.debit > 0)
        credit = next(e for e in entries if e.credit > 0)
        assert (debit.account_type, debit.account_id) == ("Account", "PURCHASES")
        assert (credit.account_type, credit.account_id) == ("Supplier", str(seed.supplier_id))

    async def test_zero_total_skips_posting(self, service, sales_payload, user_id, ledger_entries, movement_count, seed):
        items = [{"item_id": seed.item_a, "quantity": 1, "unit_price": 0}]
        invoice = await service.create(sales_payload(items=items), user_id)
        await service.confirm(invoice.id, user_id)

        assert await ledger_entries(invoice.id) == []
        assert await movement_count(invoice.id) == 1

    async def test_confirm_twice(self, service, sales_payload, user_id, movement_count):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)
        before = await movement_count()

        with pytest.raises(StateConflictError, match="Only draft invoices can be confirmed"):
            await service.confirm(invoice.id, user_id)

        assert await movement_count() == before

    async def test_confirm_cancelled(self, service, sales_payload, user_id, movement_count):
        invoice = await service.create(sales_payload(), user_id)
        invoice_id = invoice.id
        await service.cancel(invoice_id, user_id)

        with pytest.raises(StateConflictError):
            await service.confirm(invoice_id, user_id)
        assert await movement_count(invoice_id) == 0

    async def test_confirm_unknown_invoice(self, service, user_id):
        with pytest.raises(NotFoundError, match="Invoice not found"):
            await service.confirm(uuid.uuid4(), user_id)

    async def test_insufficient_stock_rolls_back(
        self, service, session_factory, sales_payload, user_id, stock_of, movement_count, ledger_entries, seed,
    ):
        items = [
            {"item_id": seed.item_a, "quantity": 5, "unit_price": 100},
            {"item_id": seed.item_c, "quantity": 1, "unit_price": 100},
        ]
        invoice = await service.create(sales_payload(items=items), user_id)
        invoice_id = invoice.id

        with pytest.raises(ValidationError, match="Insufficient stock"):
            await service.confirm(invoice_id, user_id)

        async with session_factory() as session:
            status = (await session.execute(select(Invoice.status).where(Invoice.id == invoice_id))).scalar_one()
        assert status == "draft"
        assert await stock_of(seed.item_a) == Decimal("100")
        assert await movement_count(invoice_id) == 0
        assert await ledger_entries(invoice_id) == []

    async def test_stock_not_enforced_for_purchase_returns(self, service, user_id, stock_of, seed):
        invoice = await service.create({
            "invoice_type": "return_purchase",
            "supplier_id": seed.supplier_id,
            "items": [{"item_id": seed.item_c, "quantity": 2, "unit_price": 10}],
        }, user_id)

        await service.confirm(invoice.id, user_id)

        assert await stock_of(seed.item_c) == Decimal("-2")

    async def test_ledger_failure_rolls_back_everything(
        self, db, service, session_factory, sales_payload, user_id, stock_of, movement_count, seed,
    ):
        invoice = await service.create(sales_payload(), user_id)
        invoice_id = invoice.id
        failing = InvoiceService(db, ledger_poster=FailingLedgerPoster(db))

        with pytest.raises(InternalError, match="Failed to confirm invoice"):
            await failing.confirm(invoice_id, user_id)

        async with session_factory() as session:
            status = (await session.execute(select(Invoice.status).where(Invoice.id == invoice_id))).scalar_one()
        assert status == "draft"
        assert await movement_count(invoice_id) == 0
        assert await stock_of(seed.item_a) == Decimal("100")

        # The whole operation can be retried
        confirmed = await service.confirm(invoice_id, user_id)
        assert confirmed.status == "confirmed"

    async def test_stale_confirm_loses_the_race(self, service, session_factory, sales_payload, user_id, movement_count):
        invoice = await service.create(sales_payload(), user_id)

        async with session_factory() as racer_session, session_factory() as winner_session:
            stale = await InvoiceRepository(racer_session).get(invoice.id)
            await InvoiceService(winner_session).confirm(invoice.id, user_id)

            racer = InvoiceService(racer_session, invoices=StaleReadRepository(racer_session, stale))
            with pytest.raises(StateConflictError, match="Only draft invoices can be confirmed"):
                await racer.confirm(invoice.id, user_id)

        assert await movement_count(invoice.id) == 2


# ==================== Cancel ====================

class TestCancel:

    async def test_cancel_draft_has_no_side_effects(self, service, sales_payload, user_id, movement_count, ledger_entries):
        invoice = await service.create(sales_payload(), user_id)

        cancelled = await service.cancel(invoice.id, user_id, "Duplicate order")

        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "Duplicate order"
        assert cancelled.cancelled_by == user_id
        assert await movement_count(invoice.id) == 0
        assert await ledger_entries(invoice.id) == []

    async def test_cancel_confirmed_reverses_each_movement(
        self, service, sales_payload, user_id, stock_of, ledger_entries, seed,
    ):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        await service.cancel(invoice.id, user_id, "Customer refused delivery")

        movements = await service.get_stock_movements(invoice.id)
        originals = [m for m in movements if m.reversal_of_id is None]
        reversals = {m.reversal_of_id: m for m in movements if m.reversal_of_id is not None}
        assert len(originals) == len(reversals) == 2
        for original in originals:
            assert reversals[original.id].quantity == -original.quantity
            assert reversals[original.id].item_id == original.item_id
            assert reversals[original.id].movement_type == "in"

        assert await stock_of(seed.item_a) == Decimal("100")
        assert await stock_of(seed.item_b) == Decimal("50")

        entries = await ledger_entries(invoice.id)
        assert len(entries) == 4
        customer_rows = [e for e in entries if e.account_type == "Customer"]
        assert sum(e.debit - e.credit for e in customer_rows) == Decimal("0")

    async def test_cancel_twice(self, service, sales_payload, user_id, movement_count):
        invoice = await service.create(sales_payload(), user_id)
        invoice_id = invoice.id
        await service.confirm(invoice_id, user_id)
        await service.cancel(invoice_id, user_id)
        before = await movement_count(invoice_id)

        with pytest.raises(StateConflictError, match="already cancelled"):
            await service.cancel(invoice_id, user_id)
        assert await movement_count(invoice_id) == before

    async def test_cancel_paid(self, service, sales_payload, user_id, movement_count):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)
        await service.mark_paid(invoice.id, {"payment_method": "cash"}, user_id)
        before = await movement_count()

        with pytest.raises(StateConflictError, match="Cannot cancel paid invoice"):
            await service.cancel(invoice.id, user_id)
        assert await movement_count() == before

    async def test_cancel_partially_paid(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)
        await service.mark_partially_paid(invoice.id, 500, user_id=user_id)

        with pytest.raises(StateConflictError):
            await service.cancel(invoice.id, user_id)

    async def test_stale_cancel_loses_the_race(self, service, session_factory, sales_payload, user_id, movement_count):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        async with session_factory() as racer_session, session_factory() as winner_session:
            stale = await InvoiceRepository(racer_session).get(invoice.id)
            await InvoiceService(winner_session).cancel(invoice.id, user_id)

            racer = InvoiceService(racer_session, invoices=StaleReadRepository(racer_session, stale))
            with pytest.raises(StateConflictError, match="already cancelled"):
                await racer.cancel(invoice.id, user_id)

        # One set of originals, one set of reversals
        assert await movement_count(invoice.id) == 4


# ==================== Payments ====================

class TestPayments:

    async def test_mark_paid(self, service, sales_payload, user_id, stock_of, seed):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        paid = await service.mark_paid(
            invoice.id, {"payment_method": "bank_transfer", "payment_reference": "TRX-1001"}, user_id
        )

        assert paid.status == "paid"
        assert paid.payment_status == "paid"
        assert paid.paid_amount == paid.grand_total
        assert paid.amount_due == Decimal("0")
        assert paid.payment_reference == "TRX-1001"
        assert paid.paid_at is not None
        assert await stock_of(seed.item_a) == Decimal("90")

    async def test_pay_before_confirm(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        invoice_id = invoice.id

        with pytest.raises(ValidationError, match="Confirm the invoice first"):
            await service.mark_paid(invoice_id, None, user_id)
        with pytest.raises(ValidationError, match="Confirm the invoice first"):
            await service.mark_partially_paid(invoice_id, 100, user_id=user_id)

    async def test_instalments_accumulate_until_paid(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        first = await service.mark_partially_paid(invoice.id, "1000", payment_method="cash", user_id=user_id)
        assert first.status == "partial"
        assert first.payment_status == "partial"
        assert first.paid_amount == Decimal("1000.00")
        assert first.amount_due == Decimal("1220.00")

        second = await service.mark_partially_paid(invoice.id, "1220", user_id=user_id)
        assert second.status == "paid"
        assert second.payment_status == "paid"
        assert second.paid_amount == Decimal("2220.00")

    async def test_mark_paid_after_instalment(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)
        await service.mark_partially_paid(invoice.id, 200, user_id=user_id)

        paid = await service.mark_paid(invoice.id, None, user_id)

        assert paid.status == "paid"
        assert paid.paid_amount == Decimal("2220.00")

    async def test_overpayment(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        with pytest.raises(ValidationError, match="Payment exceeds amount due"):
            await service.mark_partially_paid(invoice.id, "2220.01", user_id=user_id)

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_payment(self, service, sales_payload, user_id, amount):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        with pytest.raises(ValidationError, match="Payment amount must be positive"):
            await service.mark_partially_paid(invoice.id, amount, user_id=user_id)

    async def test_pay_cancelled(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.cancel(invoice.id, user_id)

        with pytest.raises(StateConflictError):
            await service.mark_paid(invoice.id, None, user_id)

    async def test_pay_twice(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)
        await service.mark_paid(invoice.id, None, user_id)

        with pytest.raises(StateConflictError):
            await service.mark_paid(invoice.id, None, user_id)


# ==================== Update / Delete ====================

class TestUpdate:

    async def test_replace_items_on_draft(self, service, sales_payload, user_id, seed):
        invoice = await service.create(sales_payload(), user_id)

        updated = await service.update(
            invoice.id,
            {"items": [{"item_id": seed.item_b, "quantity": 2, "unit_price": 100}], "notes": "Revised"},
            user_id,
        )

        assert len(updated.items) == 1
        assert updated.items[0].item_id == seed.item_b
        assert updated.grand_total == Decimal("208.00")
        assert updated.notes == "Revised"

    async def test_items_locked_after_confirm(self, service, sales_payload, user_id, seed):
        invoice = await service.create(sales_payload(), user_id)
        invoice_id = invoice.id
        await service.confirm(invoice_id, user_id)

        with pytest.raises(StateConflictError, match="Cannot modify confirmed invoice items"):
            await service.update(
                invoice_id, {"items": [{"item_id": seed.item_a, "quantity": 1, "unit_price": 1}]}, user_id
            )

        unchanged = await service.get(invoice_id)
        assert len(unchanged.items) == 2
        assert unchanged.grand_total == Decimal("2220.00")

    async def test_header_editable_after_confirm(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(invoice_date=date(2024, 5, 1)), user_id)
        await service.confirm(invoice.id, user_id)

        updated = await service.update(invoice.id, {"notes": "Deliver to gate 2", "due_date": date(2024, 7, 1)}, user_id)

        assert updated.notes == "Deliver to gate 2"
        assert updated.due_date == date(2024, 7, 1)
        assert updated.status == "confirmed"

    async def test_cancelled_is_read_only(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.cancel(invoice.id, user_id)

        with pytest.raises(StateConflictError, match="cancelled"):
            await service.update(invoice.id, {"notes": "late note"}, user_id)

    async def test_due_date_rules(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(invoice_date=date(2024, 5, 1)), user_id)
        invoice_id = invoice.id

        with pytest.raises(ValidationError, match="Due date cannot be before invoice date"):
            await service.update(invoice_id, {"due_date": date(2024, 4, 30)}, user_id)
        with pytest.raises(ValidationError, match="Due date cannot be cleared"):
            await service.update(invoice_id, {"due_date": None}, user_id)

    async def test_removing_claim_account_reprices_draft(self, service, sales_payload, user_id, seed):
        items = [{"item_id": seed.item_a, "quantity": 1, "unit_price": 100, "discount2_percent": 5}]
        invoice = await service.create(sales_payload(items=items, claim_account_id="SCHEME-01"), user_id)
        assert invoice.total_discount2 == Decimal("5.00")

        with pytest.raises(ValidationError, match="Claim account is required"):
            await service.update(invoice.id, {"claim_account_id": None}, user_id)

    async def test_claim_account_change_keeps_percent_discount_totals(self, service, sales_payload, user_id, seed):
        # 10% of 0.05 is 0.005; the totals must come from that, not from a stored 0.01
        items = [{"item_id": seed.item_a, "quantity": 1, "unit_price": "0.05",
                  "discount1_percent": 10, "gst_rate": 0}]
        invoice = await service.create(sales_payload(items=items), user_id)
        invoice_id = invoice.id
        assert invoice.grand_total == Decimal("0.05")

        updated = await service.update(invoice_id, {"claim_account_id": "CLAIM-1"}, user_id)

        assert updated.claim_account_id == "CLAIM-1"
        assert updated.grand_total == Decimal("0.05")
        assert updated.items[0].discount1_override is None

    async def test_claim_account_switch_reprices_at_full_precision(self, service, sales_payload, user_id, seed):
        items = [
            {"item_id": seed.item_a, "quantity": "3", "unit_price": "33.33",
             "discount1_percent": "12.5", "discount2_percent": "7"},
            {"item_id": seed.item_b, "quantity": "1.333", "unit_price": "19.99",
             "discount1_percent": "3.333", "discount2_percent": "1.5", "advance_tax_percent": "0.5"},
        ]
        invoice = await service.create(sales_payload(items=items, claim_account_id="SCHEME-01"), user_id)
        invoice_id = invoice.id
        before = {name: getattr(invoice, name) for name in (
            "subtotal", "total_discount1", "total_discount2", "taxable_amount",
            "gst_total", "advance_tax_total", "grand_total",
        )}

        updated = await service.update(invoice_id, {"claim_account_id": "SCHEME-02"}, user_id)

        assert {name: getattr(updated, name) for name in before} == before

    async def test_explicit_discount_amount_survives_repricing(self, service, sales_payload, user_id, seed):
        items = [{"item_id": seed.item_a, "quantity": 2, "unit_price": 100,
                  "discount1_percent": 50, "discount1_amount": "15", "gst_rate": 0}]
        invoice = await service.create(sales_payload(items=items), user_id)
        invoice_id = invoice.id
        assert invoice.total_discount1 == Decimal("15.00")

        updated = await service.update(invoice_id, {"claim_account_id": "CLAIM-1"}, user_id)

        assert updated.items[0].discount1_override == Decimal("15.00")
        assert updated.total_discount1 == Decimal("15.00")
        assert updated.grand_total == Decimal("185.00")

    async def test_replaced_items_checked_against_credit_limit(self, service, sales_payload, user_id, seed):
        invoice = await service.create(
            sales_payload(customer_id=seed.limited_customer_id,
                          items=[{"item_id": seed.item_a, "quantity": 1, "unit_price": 100}]),
            user_id,
        )

        with pytest.raises(ValidationError, match="Credit limit exceeded"):
            await service.update(
                invoice.id, {"items": [{"item_id": seed.item_a, "quantity": 20, "unit_price": 100}]}, user_id
            )


class TestDelete:

    async def test_delete_draft(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        invoice_id = invoice.id

        await service.delete(invoice_id)

        with pytest.raises(NotFoundError):
            await service.get(invoice_id)

    async def test_delete_confirmed(self, service, sales_payload, user_id):
        invoice = await service.create(sales_payload(), user_id)
        await service.confirm(invoice.id, user_id)

        with pytest.raises(StateConflictError, match="Only draft invoices can be deleted"):
            await service.delete(invoice.id)
