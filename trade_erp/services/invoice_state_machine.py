"""
Invoice State Machine

This module is the SINGLE SOURCE OF TRUTH for invoice status transitions and
for the stock direction each invoice type implies. InvoiceService never
compares status strings itself; it asks the helpers below.

    draft -> confirmed -> paid
                       -> partial -> partial / paid
    draft -> cancelled
    confirmed -> cancelled
"""

from typing import List, Dict, Optional, Tuple

from trade_erp.core.exceptions import StateConflictError, ValidationError
from trade_erp.models.inventory import MovementType, MovementReferenceType
from trade_erp.models.invoice import InvoiceType


# =============================================================================
# STATUS DEFINITIONS
# =============================================================================

class InvoiceStatus:
    """Invoice status constants - use these instead of strings."""
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"

    @classmethod
    def all(cls) -> List[str]:
        return [cls.DRAFT, cls.CONFIRMED, cls.PARTIAL, cls.PAID, cls.CANCELLED]


class PaymentStatus:
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
INVOICE_TRANSITIONS: Dict[str, List[str]] = {
    InvoiceStatus.DRAFT: [
        InvoiceStatus.CONFIRMED,    # Confirm (stock + ledger)
        InvoiceStatus.CANCELLED,    # Cancel draft, no side effects
    ],
    InvoiceStatus.CONFIRMED: [
        InvoiceStatus.PAID,         # Full settlement
        InvoiceStatus.PARTIAL,      # First instalment
        InvoiceStatus.CANCELLED,    # Cancel with reversal
    ],
    InvoiceStatus.PARTIAL: [
        InvoiceStatus.PARTIAL,      # Further instalment
        InvoiceStatus.PAID,         # Final instalment
    ],
    InvoiceStatus.PAID: [],         # Terminal (refunds are a separate document)
    InvoiceStatus.CANCELLED: [],    # Terminal
}

TRANSITION_ACTIONS: Dict[Tuple[str, str], str] = {
    (InvoiceStatus.DRAFT, InvoiceStatus.CONFIRMED): "Confirm",
    (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED): "Cancel",
    (InvoiceStatus.CONFIRMED, InvoiceStatus.PAID): "Mark Paid",
    (InvoiceStatus.CONFIRMED, InvoiceStatus.PARTIAL): "Record Partial Payment",
    (InvoiceStatus.CONFIRMED, InvoiceStatus.CANCELLED): "Cancel",
    (InvoiceStatus.PARTIAL, InvoiceStatus.PARTIAL): "Record Partial Payment",
    (InvoiceStatus.PARTIAL, InvoiceStatus.PAID): "Mark Paid",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in INVOICE_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return INVOICE_TRANSITIONS.get(current_status, [])


def get_source_statuses(new_status: str) -> List[str]:
    """Statuses from which ``new_status`` can be reached; the WHERE clause of the status CAS."""
    return [s for s, targets in INVOICE_TRANSITIONS.items() if new_status in targets]


def get_transition_action(current_status: str, new_status: str) -> str:
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def validate_transition(current_status: str, new_status: str) -> None:
    """Raise StateConflictError if ``current_status -> new_status`` is not allowed."""
    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise StateConflictError(
                f"Invoice in '{current_status}' status cannot be modified. This is a terminal state.",
                details={"status": current_status, "requested": new_status},
            )
        raise StateConflictError(
            f"Cannot change invoice from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            details={"status": current_status, "requested": new_status},
        )


# =============================================================================
# STATUS CHECK HELPERS
# =============================================================================

def can_confirm(status: str) -> bool:
    return status == InvoiceStatus.DRAFT


def can_cancel(status: str) -> bool:
    return can_transition(status, InvoiceStatus.CANCELLED)


def can_receive_payment(status: str) -> bool:
    return status in [InvoiceStatus.CONFIRMED, InvoiceStatus.PARTIAL]


def can_edit_items(status: str) -> bool:
    return status == InvoiceStatus.DRAFT


def can_edit_header(status: str) -> bool:
    return status != InvoiceStatus.CANCELLED


def can_delete(status: str) -> bool:
    return status == InvoiceStatus.DRAFT


def has_stock_effect(status: str) -> bool:
    """Stock has been moved for invoices in these statuses."""
    return status in [InvoiceStatus.CONFIRMED, InvoiceStatus.PARTIAL, InvoiceStatus.PAID]


# =============================================================================
# GUARDS (raise the error a caller sees for a rejected operation)
# =============================================================================

# Every guard takes (status, payment_status) so callers can re-check any of
# them against a freshly read row.

def ensure_can_confirm(status: str, payment_status: Optional[str] = None) -> None:
    if not can_confirm(status):
        raise StateConflictError(
            f"Cannot confirm invoice with status: {status}. Only draft invoices can be confirmed.",
            details={"status": status},
        )


def ensure_can_cancel(status: str, payment_status: Optional[str] = None) -> None:
    if status == InvoiceStatus.PAID or payment_status == PaymentStatus.PAID:
        raise StateConflictError(
            "Cannot cancel paid invoice. Please process a refund instead.",
            details={"status": status},
        )
    if status == InvoiceStatus.CANCELLED:
        raise StateConflictError("Invoice is already cancelled", details={"status": status})
    if not can_cancel(status):
        raise StateConflictError(
            f"Cannot cancel invoice with status: {status}. Payments have been recorded against it.",
            details={"status": status},
        )


def ensure_can_receive_payment(status: str, payment_status: Optional[str] = None) -> None:
    if status == InvoiceStatus.DRAFT:
        raise ValidationError("Confirm the invoice first", details={"status": status})
    if not can_receive_payment(status):
        raise StateConflictError(
            f"Cannot record payment on invoice with status: {status}",
            details={"status": status},
        )


def ensure_items_editable(status: str, payment_status: Optional[str] = None) -> None:
    if not can_edit_items(status):
        raise StateConflictError("Cannot modify confirmed invoice items", details={"status": status})


def ensure_header_editable(status: str, payment_status: Optional[str] = None) -> None:
    if not can_edit_header(status):
        raise StateConflictError("Cannot modify a cancelled invoice", details={"status": status})


def ensure_can_delete(status: str, payment_status: Optional[str] = None) -> None:
    if not can_delete(status):
        raise StateConflictError(
            f"Only draft invoices can be deleted (status: {status})",
            details={"status": status},
        )


# =============================================================================
# INVOICE TYPE -> STOCK / NUMBERING
# =============================================================================

# invoice_type -> (movement_type, reference_type, number prefix)
INVOICE_TYPE_RULES: Dict[str, Tuple[str, str, str]] = {
    InvoiceType.SALES.value: (
        MovementType.OUT.value, MovementReferenceType.SALES_INVOICE.value, "SI"
    ),
    InvoiceType.RETURN_SALES.value: (
        MovementType.IN.value, MovementReferenceType.SALES_INVOICE.value, "SR"
    ),
    InvoiceType.PURCHASE.value: (
        MovementType.IN.value, MovementReferenceType.PURCHASE_INVOICE.value, "PI"
    ),
    InvoiceType.RETURN_PURCHASE.value: (
        MovementType.OUT.value, MovementReferenceType.PURCHASE_INVOICE.value, "PR"
    ),
}


def _rules(invoice_type: str) -> Tuple[str, str, str]:
    try:
        return INVOICE_TYPE_RULES[invoice_type]
    except KeyError:
        raise ValidationError(f"Unknown invoice type: {invoice_type}")


def movement_type_for(invoice_type: str) -> str:
    return _rules(invoice_type)[0]


def reference_type_for(invoice_type: str) -> str:
    return _rules(invoice_type)[1]


def number_prefix_for(invoice_type: str) -> str:
    return _rules(invoice_type)[2]


def is_sales_side(invoice_type: str) -> bool:
    return reference_type_for(invoice_type) == MovementReferenceType.SALES_INVOICE.value


def print_state_diagram():
    """Print a text representation of the state machine."""
    print("\n=== Invoice State Machine ===\n")
    for status in InvoiceStatus.all():
        transitions = get_allowed_transitions(status)
        if transitions:
            print(f"{status}:")
            for t in transitions:
                print(f"  -> {t} ({get_transition_action(status, t)})")
        else:
            print(f"{status}: [TERMINAL STATE]")
        print()


if __name__ == "__main__":
    print_state_diagram()
