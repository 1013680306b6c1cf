"""
Ledger Posting Service.

Writes balanced debit/credit pairs for invoice events:
- Sales             -> Debit Customer,         Credit Sales account
- Sales return      -> Debit Sales account,    Credit Customer
- Purchase          -> Debit Purchases account, Credit Supplier
- Purchase return   -> Debit Supplier,         Credit Purchases account

Cancelling a confirmed invoice posts the same pair with the sides swapped.
Rows are added to the caller's session; the caller commits.
"""
import uuid
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trade_erp.config import settings
from trade_erp.core.exceptions import ValidationError
from trade_erp.core.money import ZERO, to_decimal, round_money
from trade_erp.models.invoice import Invoice, InvoiceType
from trade_erp.models.ledger import LedgerEntry
from trade_erp.services.invoice_state_machine import reference_type_for

logger = logging.getLogger(__name__)


class AccountType:
    CUSTOMER = "Customer"
    SUPPLIER = "Supplier"
    ACCOUNT = "Account"


@dataclass(frozen=True)
class LedgerParty:
    """One side of a posting: what kind of account and which one."""
    account_type: str
    account_id: str

    @classmethod
    def customer(cls, customer_id: uuid.UUID) -> "LedgerParty":
        return cls(AccountType.CUSTOMER, str(customer_id))

    @classmethod
    def supplier(cls, supplier_id: uuid.UUID) -> "LedgerParty":
        return cls(AccountType.SUPPLIER, str(supplier_id))

    @classmethod
    def account(cls, account_id: str) -> "LedgerParty":
        return cls(AccountType.ACCOUNT, account_id)


@dataclass
class DoubleEntry:
    debit_entry: LedgerEntry
    credit_entry: LedgerEntry

    @property
    def entry_group_id(self) -> uuid.UUID:
        return self.debit_entry.entry_group_id


class LedgerPostingService:
    """Double-entry poster bound to one session."""

    def __init__(
        self,
        db: AsyncSession,
        sales_account_id: Optional[str] = None,
        purchase_account_id: Optional[str] = None,
    ):
        self.db = db
        self.sales_account = LedgerParty.account(sales_account_id or settings.SALES_ACCOUNT_ID)
        self.purchase_account = LedgerParty.account(purchase_account_id or settings.PURCHASE_ACCOUNT_ID)

    async def create_double_entry(
        self,
        debit_party: LedgerParty,
        credit_party: LedgerParty,
        amount: Any,
        description: str,
        reference_type: str,
        reference_id: Optional[uuid.UUID],
        user_id: uuid.UUID,
    ) -> DoubleEntry:
        """Add one debit row and one credit row for ``amount``, sharing a group id."""
        amount = round_money(to_decimal(amount, "amount"))
        if amount <= ZERO:
            raise ValidationError("Amount must be greater than zero", details={"amount": str(amount)})
        if not description:
            raise ValidationError("Description is required")
        if not reference_type:
            raise ValidationError("Reference type is required")
        if user_id is None:
            raise ValidationError("Created by user is required")

        group_id = uuid.uuid4()
        common = dict(
            entry_group_id=group_id,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=user_id,
        )
        debit_entry = LedgerEntry(
            account_type=debit_party.account_type,
            account_id=debit_party.account_id,
            debit=amount,
            credit=ZERO,
            **common,
        )
        credit_entry = LedgerEntry(
            account_type=credit_party.account_type,
            account_id=credit_party.account_id,
            debit=ZERO,
            credit=amount,
            **common,
        )
        self.db.add_all([debit_entry, credit_entry])
        await self.db.flush()

        logger.debug(
            f"Posted {amount}: Dr {debit_party.account_type}:{debit_party.account_id} / "
            f"Cr {credit_party.account_type}:{credit_party.account_id} ({reference_type}:{reference_id})"
        )
        return DoubleEntry(debit_entry=debit_entry, credit_entry=credit_entry)

    # ==================== Business Event Handlers ====================

    def invoice_parties(self, invoice: Invoice) -> tuple:
        """(debit_party, credit_party) for confirming ``invoice``."""
        if invoice.invoice_type == InvoiceType.SALES.value:
            return LedgerParty.customer(invoice.customer_id), self.sales_account
        if invoice.invoice_type == InvoiceType.RETURN_SALES.value:
            return self.sales_account, LedgerParty.customer(invoice.customer_id)
        if invoice.invoice_type == InvoiceType.PURCHASE.value:
            return self.purchase_account, LedgerParty.supplier(invoice.supplier_id)
        if invoice.invoice_type == InvoiceType.RETURN_PURCHASE.value:
            return LedgerParty.supplier(invoice.supplier_id), self.purchase_account
        raise ValidationError(f"Unknown invoice type: {invoice.invoice_type}")

    async def post_invoice(self, invoice: Invoice, user_id: uuid.UUID) -> Optional[DoubleEntry]:
        """Post the grand total of a confirmed invoice. Zero-value invoices post nothing."""
        if invoice.grand_total <= ZERO:
            logger.info(f"Invoice {invoice.invoice_number} has zero total, no ledger posting")
            return None

        debit, credit = self.invoice_parties(invoice)
        return await self.create_double_entry(
            debit_party=debit,
            credit_party=credit,
            amount=invoice.grand_total,
            description=f"{invoice.invoice_type.replace('_', ' ').title()} invoice {invoice.invoice_number}",
            reference_type=reference_type_for(invoice.invoice_type),
            reference_id=invoice.id,
            user_id=user_id,
        )

    async def post_invoice_reversal(self, invoice: Invoice, user_id: uuid.UUID) -> Optional[DoubleEntry]:
        """Swap the sides of the confirm posting when a confirmed invoice is cancelled."""
        if invoice.grand_total <= ZERO:
            return None

        debit, credit = self.invoice_parties(invoice)
        return await self.create_double_entry(
            debit_party=credit,
            credit_party=debit,
            amount=invoice.grand_total,
            description=f"Cancellation of invoice {invoice.invoice_number}",
            reference_type=reference_type_for(invoice.invoice_type),
            reference_id=invoice.id,
            user_id=user_id,
        )

    # ==================== Queries ====================

    async def entries_for_reference(self, reference_type: str, reference_id: uuid.UUID) -> List[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.reference_type == reference_type,
                LedgerEntry.reference_id == reference_id,
            )
            .order_by(LedgerEntry.created_at.asc())
        )
        return list(result.scalars().all())

    async def account_balance(self, party: LedgerParty) -> Decimal:
        """Debits minus credits for one account."""
        result = await self.db.execute(
            select(LedgerEntry.debit, LedgerEntry.credit).where(
                LedgerEntry.account_type == party.account_type,
                LedgerEntry.account_id == party.account_id,
            )
        )
        balance = ZERO
        for debit, credit in result.all():
            balance += debit - credit
        return balance
