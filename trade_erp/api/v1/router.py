from fastapi import APIRouter

from trade_erp.api.v1.endpoints import (
    invoices,
    stock_movements,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["Invoices"]
)

api_router.include_router(
    stock_movements.router,
    prefix="/stock-movements",
    tags=["Stock Movements"]
)
