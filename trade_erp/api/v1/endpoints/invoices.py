"""API endpoints for sales / purchase invoices and their lifecycle."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, status

from trade_erp.api.deps import CurrentUserId, InvoiceServiceDep
from trade_erp.schemas.invoice import (
    InvoiceCreate, InvoiceUpdate, InvoiceResponse,
    CancelRequest, PaymentCreate, PartialPaymentCreate,
)
from trade_erp.schemas.inventory import StockMovementResponse

router = APIRouter()


# ==================== Invoice ====================

@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_in: InvoiceCreate,
    service: InvoiceServiceDep,
    user_id: CurrentUserId,
):
    """Create a draft invoice. Totals are computed server-side."""
    return await service.create(invoice_in, user_id)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: UUID, service: InvoiceServiceDep):
    """Get invoice by ID."""
    return await service.get(invoice_id)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: UUID,
    invoice_in: InvoiceUpdate,
    service: InvoiceServiceDep,
    user_id: CurrentUserId,
):
    """Update header fields (until cancelled) or replace line items (draft only)."""
    return await service.update(invoice_id, invoice_in, user_id)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(invoice_id: UUID, service: InvoiceServiceDep, user_id: CurrentUserId):
    """Delete a draft invoice."""
    await service.delete(invoice_id)


# ==================== Lifecycle ====================

@router.post("/{invoice_id}/confirm", response_model=InvoiceResponse)
async def confirm_invoice(invoice_id: UUID, service: InvoiceServiceDep, user_id: CurrentUserId):
    """Confirm a draft: moves stock and posts to the ledger."""
    return await service.confirm(invoice_id, user_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: UUID,
    service: InvoiceServiceDep,
    user_id: CurrentUserId,
    cancel_in: Optional[CancelRequest] = None,
):
    """Cancel a draft or confirmed invoice. Confirmed invoices are reversed."""
    reason = cancel_in.reason if cancel_in else None
    return await service.cancel(invoice_id, user_id, reason)


@router.post("/{invoice_id}/payments", response_model=InvoiceResponse)
async def record_payment(
    invoice_id: UUID,
    payment_in: PartialPaymentCreate,
    service: InvoiceServiceDep,
    user_id: CurrentUserId,
):
    """Record a (partial) payment. The payment that settles the total marks the invoice paid."""
    return await service.mark_partially_paid(
        invoice_id,
        payment_in.amount,
        payment_method=payment_in.payment_method,
        payment_reference=payment_in.payment_reference,
        notes=payment_in.notes,
        paid_at=payment_in.paid_at,
        user_id=user_id,
    )


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceResponse)
async def mark_invoice_paid(
    invoice_id: UUID,
    service: InvoiceServiceDep,
    user_id: CurrentUserId,
    payment_in: Optional[PaymentCreate] = None,
):
    """Settle the full outstanding amount."""
    return await service.mark_paid(invoice_id, payment_in, user_id)


@router.get("/{invoice_id}/stock-movements", response_model=List[StockMovementResponse])
async def get_invoice_stock_movements(invoice_id: UUID, service: InvoiceServiceDep):
    """Stock movements (and reversals) written for this invoice."""
    return await service.get_stock_movements(invoice_id)
