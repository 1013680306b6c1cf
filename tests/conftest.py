"""
Pytest fixtures for the invoice core test suite.

Provides:
- A throwaway SQLite database per test (aiosqlite, tables created from the models)
- Seeded customers, suppliers and items
- Service instances bound to a session
- An httpx client against the FastAPI app with the session dependency overridden
"""
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, func

from trade_erp.database import build_engine, build_session_factory, create_tables, get_db
from trade_erp.models import Customer, Supplier, Item, StockMovement, LedgerEntry
from trade_erp.services.invoice_service import InvoiceService
from trade_erp.services.stock_ledger_service import StockMovementLedger


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
async def seed(session_factory):
    """Counterparties and items most tests need."""
    customer = Customer(code="C-001", name="Al Noor Traders")
    limited_customer = Customer(
        code="C-002", name="Karachi Mart", credit_limit=Decimal("2000"), payment_terms_days=15
    )
    non_filer = Customer(code="C-003", name="Street Retail", is_non_filer=True)
    inactive_customer = Customer(code="C-004", name="Closed Account", is_active=False)
    supplier = Supplier(code="S-001", name="National Foods", payment_terms_days=45)
    item_a = Item(code="ITM-A", name="Cooking Oil 5L", gst_rate=Decimal("18"), current_stock=Decimal("100"))
    item_b = Item(code="ITM-B", name="Flour 10kg", gst_rate=Decimal("4"), current_stock=Decimal("50"))
    item_c = Item(code="ITM-C", name="Tea 900g", gst_rate=Decimal("18"), current_stock=Decimal("0"))
    inactive_item = Item(code="ITM-X", name="Discontinued", is_active=False, current_stock=Decimal("10"))

    async with session_factory() as session:
        session.add_all([
            customer, limited_customer, non_filer, inactive_customer, supplier,
            item_a, item_b, item_c, inactive_item,
        ])
        await session.commit()

    return SimpleNamespace(
        customer_id=customer.id,
        limited_customer_id=limited_customer.id,
        non_filer_id=non_filer.id,
        inactive_customer_id=inactive_customer.id,
        supplier_id=supplier.id,
        item_a=item_a.id,
        item_b=item_b.id,
        item_c=item_c.id,
        inactive_item=inactive_item.id,
    )


@pytest.fixture
def service(db):
    return InvoiceService(db)


@pytest.fixture
def ledger(db):
    return StockMovementLedger(db)


@pytest.fixture
def stock_of(session_factory):
    """Read an item's running counter in a fresh session."""
    async def _stock_of(item_id):
        async with session_factory() as session:
            result = await session.execute(select(Item.current_stock).where(Item.id == item_id))
            return result.scalar_one()
    return _stock_of


@pytest.fixture
def movement_count(session_factory):
    async def _movement_count(reference_id=None):
        async with session_factory() as session:
            stmt = select(func.count(StockMovement.id))
            if reference_id is not None:
                stmt = stmt.where(StockMovement.reference_id == reference_id)
            return (await session.execute(stmt)).scalar_one()
    return _movement_count


@pytest.fixture
def ledger_entries(session_factory):
    async def _ledger_entries(reference_id):
        async with session_factory() as session:
            result = await session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.reference_id == reference_id)
                .order_by(LedgerEntry.created_at.asc())
            )
            return list(result.scalars().all())
    return _ledger_entries


@pytest.fixture
def sales_payload(seed):
    """Factory for a two-line sales invoice (item A at 18%, item B at 4%)."""
    def _payload(**overrides):
        payload = {
            "invoice_type": "sales",
            "customer_id": seed.customer_id,
            "items": [
                {"item_id": seed.item_a, "quantity": "10", "unit_price": "100"},
                {"item_id": seed.item_b, "quantity": "5", "unit_price": "200"},
            ],
        }
        payload.update(overrides)
        return payload
    return _payload


@pytest.fixture
def purchase_payload(seed):
    def _payload(**overrides):
        payload = {
            "invoice_type": "purchase",
            "supplier_id": seed.supplier_id,
            "items": [
                {"item_id": seed.item_a, "quantity": "20", "unit_price": "80"},
            ],
        }
        payload.update(overrides)
        return payload
    return _payload


@pytest.fixture
async def client(session_factory):
    from trade_erp.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
