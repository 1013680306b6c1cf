"""SQLAlchemy models. Importing this package registers every table on ``Base.metadata``."""
from trade_erp.models.party import Customer, Supplier
from trade_erp.models.inventory import Item, StockMovement, MovementType, MovementReferenceType
from trade_erp.models.invoice import (
    Invoice, InvoiceItem, InvoiceNumberSequence,
    InvoiceType,
)
from trade_erp.models.ledger import LedgerEntry

__all__ = [
    "Customer",
    "Supplier",
    "Item",
    "StockMovement",
    "MovementType",
    "MovementReferenceType",
    "Invoice",
    "InvoiceItem",
    "InvoiceNumberSequence",
    "InvoiceType",
    "LedgerEntry",
]
