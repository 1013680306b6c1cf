"""
Tax Calculation Engine.

Computes line and invoice totals for trading invoices:

1. Two discount tiers. Discount 2 (scheme discount) applies to the amount left
   after discount 1 and must be charged to a claim account.
2. GST per line at the line's rate (18% and 4% are reported separately).
3. Advance tax per line (0%, 0.5% registered, 2.5% unregistered are usual).
4. Invoice-level non-filer GST and income tax on the taxable amount when the
   counterparty is a non-filer.

Everything is computed at full Decimal precision. Values handed back to
callers are rounded once to 2 dp (half away from zero); invoice totals are
rounded from full-precision sums, never re-summed from rounded lines.

No I/O. The engine is safe to share.
"""
import uuid
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from trade_erp.config import settings
from trade_erp.core.exceptions import ValidationError
from trade_erp.core.money import ZERO, HUNDRED, to_decimal, round_money, percent_of, ensure_scale
from trade_erp.db_types import MONEY_PLACES, QUANTITY_PLACES, RATE_PLACES

GST_RATE_18 = Decimal("18")
GST_RATE_4 = Decimal("4")


@dataclass
class LineInput:
    """One invoice line as the engine sees it."""
    item_id: Optional[uuid.UUID]
    quantity: Decimal
    unit_price: Decimal
    discount1_percent: Decimal = ZERO
    discount1_amount: Optional[Decimal] = None
    discount2_percent: Decimal = ZERO
    discount2_amount: Optional[Decimal] = None
    gst_rate: Decimal = ZERO
    advance_tax_percent: Decimal = ZERO
    claim_account_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LineInput":
        """Build a line, rejecting values finer than the invoice columns store."""
        def number(name, places):
            return ensure_scale(to_decimal(data.get(name), name), places, name)

        def optional(name):
            value = data.get(name)
            return None if value is None else number(name, MONEY_PLACES)

        return cls(
            item_id=data.get("item_id"),
            quantity=number("quantity", QUANTITY_PLACES),
            unit_price=number("unit_price", MONEY_PLACES),
            discount1_percent=number("discount1_percent", RATE_PLACES),
            discount1_amount=optional("discount1_amount"),
            discount2_percent=number("discount2_percent", RATE_PLACES),
            discount2_amount=optional("discount2_amount"),
            gst_rate=number("gst_rate", RATE_PLACES),
            advance_tax_percent=number("advance_tax_percent", RATE_PLACES),
            claim_account_id=data.get("claim_account_id"),
        )


@dataclass
class LineCalculation:
    """Full-precision result for one line."""
    line_subtotal: Decimal
    discount1_amount: Decimal
    discount2_amount: Decimal
    taxable_amount: Decimal
    gst_rate: Decimal
    gst_amount: Decimal
    advance_tax_amount: Decimal
    line_total: Decimal

    def rounded(self) -> Dict[str, Decimal]:
        return {
            "line_subtotal": round_money(self.line_subtotal),
            "discount1_amount": round_money(self.discount1_amount),
            "discount2_amount": round_money(self.discount2_amount),
            "taxable_amount": round_money(self.taxable_amount),
            "gst_amount": round_money(self.gst_amount),
            "advance_tax_amount": round_money(self.advance_tax_amount),
            "line_total": round_money(self.line_total),
        }


@dataclass
class InvoiceTotals:
    """Invoice totals, rounded to 2 dp."""
    subtotal: Decimal = ZERO
    total_discount1: Decimal = ZERO
    total_discount2: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    gst_total: Decimal = ZERO
    gst18_total: Decimal = ZERO
    gst4_total: Decimal = ZERO
    advance_tax_total: Decimal = ZERO
    non_filer_gst_total: Decimal = ZERO
    income_tax_total: Decimal = ZERO
    total_tax: Decimal = ZERO
    grand_total: Decimal = ZERO

    def as_dict(self) -> Dict[str, Decimal]:
        return asdict(self)


@dataclass
class InvoiceCalculation:
    lines: List[LineCalculation] = field(default_factory=list)
    totals: InvoiceTotals = field(default_factory=InvoiceTotals)


class TaxCalculationEngine:
    """Line and invoice tax/discount calculator."""

    def __init__(
        self,
        non_filer_gst_rate: Optional[Decimal] = None,
        income_tax_rate: Optional[Decimal] = None,
    ):
        self.non_filer_gst_rate = to_decimal(
            settings.NON_FILER_GST_RATE if non_filer_gst_rate is None else non_filer_gst_rate
        )
        self.income_tax_rate = to_decimal(
            settings.INCOME_TAX_RATE if income_tax_rate is None else income_tax_rate
        )

    # ==================== VALIDATION ====================

    @staticmethod
    def _check_percent(value: Decimal, name: str, line_no: Optional[int]) -> None:
        if value < ZERO or value > HUNDRED:
            raise ValidationError(
                f"{name} must be between 0 and 100",
                details={"field": name, "value": str(value), "line": line_no},
            )

    def validate_line(self, line: LineInput, line_no: Optional[int] = None) -> None:
        """Raise ValidationError for a line the engine cannot price."""
        details = {"line": line_no}
        if line.item_id is None:
            raise ValidationError("Item is required", details=details)
        if line.quantity <= ZERO:
            raise ValidationError("Quantity must be positive", details={**details, "quantity": str(line.quantity)})
        if line.unit_price < ZERO:
            raise ValidationError("Unit price cannot be negative", details={**details, "unit_price": str(line.unit_price)})

        self._check_percent(line.discount1_percent, "discount1_percent", line_no)
        self._check_percent(line.discount2_percent, "discount2_percent", line_no)
        for name in ("discount1_amount", "discount2_amount"):
            amount = getattr(line, name)
            if amount is not None and amount < ZERO:
                raise ValidationError(f"{name} cannot be negative", details={**details, "field": name})

        if line.gst_rate < ZERO:
            raise ValidationError("GST rate cannot be negative", details=details)
        if line.advance_tax_percent < ZERO:
            raise ValidationError("Advance tax rate cannot be negative", details=details)

    # ==================== CALCULATION ====================

    def calculate_line(self, line: LineInput, line_no: Optional[int] = None) -> LineCalculation:
        """Price one line at full precision."""
        self.validate_line(line, line_no)

        line_subtotal = abs(line.quantity) * line.unit_price

        if line.discount1_amount is not None:
            discount1 = line.discount1_amount
        else:
            discount1 = percent_of(line_subtotal, line.discount1_percent)
        after_discount1 = line_subtotal - discount1

        if line.discount2_amount is not None:
            discount2 = line.discount2_amount
        else:
            discount2 = percent_of(after_discount1, line.discount2_percent)
        taxable = after_discount1 - discount2

        if taxable < ZERO:
            raise ValidationError(
                "Discounts cannot exceed the line amount",
                details={"line": line_no, "line_subtotal": str(line_subtotal)},
            )

        gst_amount = percent_of(taxable, line.gst_rate)
        advance_tax = percent_of(taxable, line.advance_tax_percent)

        return LineCalculation(
            line_subtotal=line_subtotal,
            discount1_amount=discount1,
            discount2_amount=discount2,
            taxable_amount=taxable,
            gst_rate=line.gst_rate,
            gst_amount=gst_amount,
            advance_tax_amount=advance_tax,
            line_total=taxable + gst_amount + advance_tax,
        )

    def calculate_invoice(
        self,
        lines: List[LineInput],
        is_non_filer: bool = False,
        claim_account_id: Optional[str] = None,
    ) -> InvoiceCalculation:
        """
        Price every line and derive invoice totals.

        ``claim_account_id`` is the invoice-level claim account; a line with a
        discount 2 needs either its own or this one.
        """
        if not lines:
            raise ValidationError("Invoice must have at least one line item")

        calculated = []
        for line_no, line in enumerate(lines, start=1):
            calc = self.calculate_line(line, line_no)
            if calc.discount2_amount > ZERO and not (line.claim_account_id or claim_account_id):
                raise ValidationError(
                    "Claim account is required for discount 2",
                    details={"line": line_no},
                )
            calculated.append(calc)

        return InvoiceCalculation(lines=calculated, totals=self.calculate_totals(calculated, is_non_filer))

    def calculate_totals(self, lines: List[LineCalculation], is_non_filer: bool = False) -> InvoiceTotals:
        """Sum full-precision lines, apply non-filer levies, round once."""
        subtotal = sum((l.line_subtotal for l in lines), ZERO)
        discount1 = sum((l.discount1_amount for l in lines), ZERO)
        discount2 = sum((l.discount2_amount for l in lines), ZERO)
        taxable = sum((l.taxable_amount for l in lines), ZERO)
        gst = sum((l.gst_amount for l in lines), ZERO)
        gst18 = sum((l.gst_amount for l in lines if l.gst_rate == GST_RATE_18), ZERO)
        gst4 = sum((l.gst_amount for l in lines if l.gst_rate == GST_RATE_4), ZERO)
        advance = sum((l.advance_tax_amount for l in lines), ZERO)

        non_filer_gst = ZERO
        income_tax = ZERO
        if is_non_filer:
            non_filer_gst = percent_of(taxable, self.non_filer_gst_rate)
            income_tax = percent_of(taxable, self.income_tax_rate)

        total_tax = gst + advance + non_filer_gst + income_tax

        return InvoiceTotals(
            subtotal=round_money(subtotal),
            total_discount1=round_money(discount1),
            total_discount2=round_money(discount2),
            taxable_amount=round_money(taxable),
            gst_total=round_money(gst),
            gst18_total=round_money(gst18),
            gst4_total=round_money(gst4),
            advance_tax_total=round_money(advance),
            non_filer_gst_total=round_money(non_filer_gst),
            income_tax_total=round_money(income_tax),
            total_tax=round_money(total_tax),
            grand_total=round_money(taxable + total_tax),
        )
