from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from trade_erp.database import get_db
from trade_erp.services.invoice_service import InvoiceService
from trade_erp.services.stock_ledger_service import StockMovementLedger


logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> uuid.UUID:
    """
    Acting user for audit fields.

    Authentication happens upstream; the gateway forwards the authenticated
    user's id in the ``X-User-Id`` header.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid X-User-Id header",
    )
    if not x_user_id:
        raise credentials_exception
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        logger.warning(f"Invalid X-User-Id header: {x_user_id}")
        raise credentials_exception


DB = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


def get_invoice_service(db: DB) -> InvoiceService:
    return InvoiceService(db)


def get_stock_ledger(db: DB) -> StockMovementLedger:
    return StockMovementLedger(db)


InvoiceServiceDep = Annotated[InvoiceService, Depends(get_invoice_service)]
StockLedgerDep = Annotated[StockMovementLedger, Depends(get_stock_ledger)]
