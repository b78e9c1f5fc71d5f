"""
Pytest configuration and shared test fixtures.

This module provides the test environment (settings, SQLite database),
principals and tokens for each role, order data builders and an async HTTP
client for the FastAPI application with its dependencies overridden.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")
os.environ.setdefault("APP_PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("APP_PAYSTACK_PUBLIC_KEY", "pk_test_public")
os.environ.setdefault("APP_PAYSTACK_MAX_RETRIES", "2")
os.environ.setdefault("APP_PAYSTACK_INITIAL_BACKOFF", "0")
os.environ.setdefault("APP_PAYSTACK_MAX_BACKOFF", "0")

import uuid  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from typing import Any, AsyncGenerator, Callable, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from storefront.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from storefront.core.security import (  # noqa: E402
    Principal,
    UserRole,
    create_access_token,
    system_principal,
)
from storefront.database.models import Base  # noqa: E402
from storefront.schemas.orders import (  # noqa: E402
    AuditEntry,
    OrderItem,
    OrderRecord,
    OrderTotals,
    PaymentInfo,
    ShippingAddress,
)
from storefront.services.orders.enums import (  # noqa: E402
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
)
from storefront.services.payments.paystack_client import PaystackClient  # noqa: E402

FIXED_NOW = datetime(2024, 6, 11, 10, 30, tzinfo=timezone.utc)


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(tmp_path):
    """
    File-backed SQLite engine with the schema created.

    Each connection is independent so separate sessions see each other's
    committed data only, as they would on PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding and inspecting data directly."""
    async with session_factory() as session:
        yield session


# ============================================================================
# Principals
# ============================================================================


@pytest.fixture
def customer() -> Principal:
    return Principal(
        id="user-123",
        email="ada@example.com",
        name="Ada Obi",
        role=UserRole.USER,
    )


@pytest.fixture
def other_customer() -> Principal:
    return Principal(id="user-456", email="tunde@example.com", name="Tunde Bello")


@pytest.fixture
def admin() -> Principal:
    return Principal(
        id="admin-1",
        email="admin@example.com",
        name="Store Admin",
        role=UserRole.ADMIN,
    )


@pytest.fixture
def system() -> Principal:
    return system_principal("Paystack Webhook")


def _auth_headers(principal: Principal) -> dict[str, str]:
    """Bearer header with a token shaped like the auth platform's."""
    token = create_access_token(
        principal.id,
        email=principal.email,
        role=principal.role.value,
        name=principal.name,
    )
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Order data
# ============================================================================


@pytest.fixture
def items() -> list[OrderItem]:
    return [
        OrderItem(product_id="p-1", name="Ankara Dress", price=15000, quantity=2),
        OrderItem(product_id="p-2", name="Leather Bag", price=12500, quantity=1),
    ]


@pytest.fixture
def address() -> ShippingAddress:
    return ShippingAddress(
        name="Ada Obi",
        phone="+2348012345678",
        address="12 Admiralty Way",
        city="Lekki",
        state="Lagos",
        country="Nigeria",
    )


@pytest.fixture
def totals() -> OrderTotals:
    return OrderTotals(
        subtotal=42500, shipping=5000, fees=0, grand_total=47500, currency="NGN"
    )


def _build_order(
    user_id: str = "user-123",
    status: OrderStatus = OrderStatus.PENDING_PAYMENT,
    payment: Optional[PaymentInfo] = None,
    order_no: str = "BW-20240611-ABC123",
    created_at: datetime = FIXED_NOW,
    **overrides: Any,
) -> OrderRecord:
    """Build a valid order record with one creation audit entry."""
    payment = payment or PaymentInfo(
        status=PaymentStatus.PENDING,
        provider=PaymentProvider.PAYSTACK,
        reference="bwitty_1718101800000",
    )
    data: dict[str, Any] = {
        "id": uuid.uuid4(),
        "order_no": order_no,
        "user_id": user_id,
        "customer_name": "Ada Obi",
        "customer_email": "ada@example.com",
        "items": (
            OrderItem(product_id="p-1", name="Ankara Dress", price=15000, quantity=1),
        ),
        "totals": OrderTotals(
            subtotal=15000, shipping=2500, grand_total=17500, currency="NGN"
        ),
        "shipping_address": ShippingAddress(
            name="Ada Obi",
            phone="08012345678",
            address="12 Admiralty Way",
            city="Lekki",
            state="Lagos",
            country="Nigeria",
        ),
        "shipping_method": "Standard Delivery (5-7 days)",
        "payment": payment,
        "status": status,
        "audit_log": (
            AuditEntry(
                id=str(uuid.uuid4()),
                action="Order Created",
                details="Order placed successfully",
                timestamp=created_at,
                user_id=user_id,
                user_name="Ada Obi",
            ),
        ),
        "created_at": created_at,
        "updated_at": created_at,
    }
    data.update(overrides)
    return OrderRecord(**data)


@pytest.fixture
def build_order() -> Callable[..., OrderRecord]:
    return _build_order


@pytest.fixture
def store_order(session_factory):
    """Persist an order record and commit it."""
    from storefront.services.orders.repository import OrderRepository

    async def _store(record: OrderRecord) -> OrderRecord:
        async with session_factory() as session:
            stored = await OrderRepository(session).create(record)
            await session.commit()
            return stored

    return _store


@pytest.fixture
def load_order(session_factory):
    """Read an order back through a fresh session."""
    from storefront.services.orders.repository import OrderRepository

    async def _load(order_id: uuid.UUID) -> Optional[OrderRecord]:
        async with session_factory() as session:
            return await OrderRepository(session).get_by_id(order_id)

    return _load


# ============================================================================
# Gateway
# ============================================================================


class GatewayStub:
    """
    Scriptable Paystack API behind an httpx MockTransport.

    ``transactions`` maps references to the body returned by the verify
    endpoint; unknown references get the gateway's 400 response.
    """

    def __init__(self) -> None:
        self.transactions: dict[str, dict[str, Any]] = {}
        self.failures: list[int] = []
        self.requests: list[httpx.Request] = []

    def paid(
        self, reference: str, amount_minor: int, currency: str = "NGN"
    ) -> None:
        self.transactions[reference] = {
            "status": True,
            "message": "Verification successful",
            "data": {
                "status": "success",
                "reference": reference,
                "amount": amount_minor,
                "currency": currency,
                "paid_at": "2024-06-11T10:31:00.000Z",
            },
        }

    def abandoned(self, reference: str, amount_minor: int) -> None:
        self.transactions[reference] = {
            "status": True,
            "message": "Verification successful",
            "data": {
                "status": "abandoned",
                "reference": reference,
                "amount": amount_minor,
                "currency": "NGN",
            },
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            return httpx.Response(self.failures.pop(0), json={"status": False})

        path = request.url.path
        if path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            body = self.transactions.get(reference)
            if body is None:
                return httpx.Response(
                    400,
                    json={"status": False, "message": "Transaction reference not found"},
                )
            return httpx.Response(200, json=body)

        if path == "/transaction/initialize":
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": "https://checkout.paystack.com/abc",
                        "access_code": "abc",
                        "reference": "ignored",
                    },
                },
            )

        return httpx.Response(404, json={"status": False, "message": "Not found"})


@pytest.fixture
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
async def paystack_client(gateway) -> AsyncGenerator[PaystackClient, None]:
    client = PaystackClient(
        secret_key="sk_test_secret",
        base_url="https://api.paystack.test",
        max_retries=2,
        initial_backoff=0,
        max_backoff=0,
        transport=httpx.MockTransport(gateway.handler),
    )
    yield client
    await client.aclose()


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
async def api_client(session_factory, gateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Async client for the FastAPI app.

    The database dependency uses the test engine and the Paystack client
    talks to the gateway stub.
    """
    from storefront.api.deps import get_paystack_client
    from storefront.core.rate_limit import limiter
    from storefront.database.connection import get_db
    from storefront.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_paystack_client() -> AsyncGenerator[PaystackClient, None]:
        async with PaystackClient(
            secret_key="sk_test_secret",
            base_url="https://api.paystack.test",
            max_retries=0,
            transport=httpx.MockTransport(gateway.handler),
        ) as client:
            yield client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_paystack_client] = override_get_paystack_client
    limiter.reset()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[Principal], dict[str, str]]:
    return _auth_headers
