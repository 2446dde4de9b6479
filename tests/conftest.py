"""
Pytest configuration and fixtures.
"""
import itertools
import json
import uuid
from datetime import date, datetime, timedelta
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from catering_payments.api.main import create_app
from catering_payments.config import Settings
from catering_payments.core.clock import FixedClock
from catering_payments.core.payment_service import PaymentService
from catering_payments.core.transaction_ids import TransactionIdFactory
from catering_payments.core.webhook import WebhookReconciler
from catering_payments.database.connection import create_session_factory
from catering_payments.database.models import Base, MenuItem, Order, OrderItem, Recipient
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.midtrans_client import MidtransClient
from catering_payments.integrations.signature import compute_signature

SERVER_KEY = "SB-Mid-server-test-key"
JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!!"
JAKARTA = ZoneInfo("Asia/Jakarta")
NOW = datetime(2026, 3, 2, 9, 30, tzinfo=JAKARTA)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        midtrans_server_key=SERVER_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
        auth_jwt_secret=JWT_SECRET,
        app_name="catering-payments-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> FixedClock:
    """Monday morning in Jakarta."""
    return FixedClock(NOW)


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """Per-test SQLite database; NullPool gives every session its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def repository(test_db: AsyncSession) -> OrderRepository:
    return OrderRepository(test_db, timeout_seconds=5.0)


OrderFactory = Callable[..., Awaitable[str]]


@pytest.fixture
def make_order(
    session_factory: async_sessionmaker[AsyncSession], clock: FixedClock
) -> OrderFactory:
    """Insert an order with one line item and return its id."""
    counter = itertools.count(1)

    async def _make(
        total_amount: int = 500000,
        status: str = "pending",
        user_id: Optional[str] = None,
        guest_name: Optional[str] = "Budi Santoso",
        guest_phone: Optional[str] = "081234567890",
        recipient_name: Optional[str] = None,
        delivery_date: Optional[date] = None,
        menu_name: Optional[str] = "Nasi Box Ayam Bakar",
        snap_token: Optional[str] = None,
        payment_url: Optional[str] = None,
        transaction_id: Optional[str] = None,
        admin_fee: Optional[int] = 0,
        payment_method: Optional[str] = None,
        updated_at: Optional[datetime] = None,
        order_id: Optional[str] = None,
    ) -> str:
        order_id = order_id or str(uuid.uuid4())
        line = next(counter)
        async with session_factory() as session:
            recipient_id = None
            if recipient_name is not None:
                recipient = Recipient(id=str(uuid.uuid4()), user_id=user_id, name=recipient_name)
                session.add(recipient)
                recipient_id = recipient.id

            menu_item_id = None
            if menu_name is not None:
                menu_item = MenuItem(id=str(uuid.uuid4()), name=menu_name, price=total_amount)
                session.add(menu_item)
                menu_item_id = menu_item.id

            session.add(
                Order(
                    id=order_id,
                    user_id=user_id,
                    recipient_id=recipient_id,
                    guest_name=None if user_id else guest_name,
                    guest_phone=None if user_id else guest_phone,
                    status=status,
                    total_amount=total_amount,
                    admin_fee=admin_fee,
                    payment_method=payment_method,
                    transaction_id=transaction_id,
                    snap_token=snap_token,
                    payment_url=payment_url,
                    delivery_date=delivery_date or clock.today(),
                    created_at=clock.now(),
                    updated_at=updated_at or clock.now(),
                )
            )
            session.add(
                OrderItem(
                    id=f"line-{line:04d}",
                    order_id=order_id,
                    menu_item_id=menu_item_id,
                    quantity=1,
                    unit_price=total_amount,
                    subtotal=total_amount,
                )
            )
            await session.commit()
        return order_id

    return _make


@pytest.fixture
def load_order(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[Order]]:
    """Read an order back through a fresh session."""

    async def _load(order_id: str) -> Order:
        async with session_factory() as session:
            result = await session.execute(select(Order).where(Order.id == order_id))
            return result.scalar_one()

    return _load


class FakeMidtrans:
    """
    In-process stand-in for the Midtrans Snap and Core APIs.

    Records every request; ``statuses`` maps transaction ids to the status
    documents returned by the status endpoint.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.created: List[Dict[str, Any]] = []
        self.statuses: Dict[str, Dict[str, Any]] = {}
        self.fail_create_with: Optional[int] = None
        self.raise_network_error = False
        self.before_create: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None
        self._tokens = itertools.count(1)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_network_error:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "POST" and request.url.path.endswith("/snap/v1/transactions"):
            payload = json.loads(request.content)
            if self.fail_create_with is not None:
                return httpx.Response(
                    self.fail_create_with,
                    json={"error_messages": ["transaction_details.gross_amount is not equal"]},
                )
            if self.before_create is not None:
                await self.before_create(payload)
            self.created.append(payload)
            token = f"snap-token-{next(self._tokens)}"
            return httpx.Response(
                201,
                json={
                    "token": token,
                    "redirect_url": f"https://app.sandbox.midtrans.com/snap/v4/redirection/{token}",
                },
            )

        if request.method == "GET" and request.url.path.endswith("/status"):
            transaction_id = request.url.path.split("/")[-2]
            document = self.statuses.get(transaction_id)
            if document is None:
                return httpx.Response(
                    404,
                    json={"status_code": "404", "status_message": "Transaction doesn't exist."},
                )
            return httpx.Response(200, json=document)

        return httpx.Response(404, json={"status_message": "unexpected call"})

    @property
    def create_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "POST")


@pytest.fixture
def fake_midtrans() -> FakeMidtrans:
    return FakeMidtrans()


@pytest.fixture
def gateway(test_settings: Settings, fake_midtrans: FakeMidtrans) -> MidtransClient:
    return MidtransClient(
        test_settings.gateway_config(), transport=httpx.MockTransport(fake_midtrans.handler)
    )


@pytest.fixture
def id_factory(test_settings: Settings, clock: FixedClock) -> TransactionIdFactory:
    return TransactionIdFactory(test_settings.transaction_prefix, clock)


@pytest.fixture
def payment_service(
    test_settings: Settings,
    gateway: MidtransClient,
    clock: FixedClock,
    id_factory: TransactionIdFactory,
) -> PaymentService:
    return PaymentService(test_settings, gateway, clock, id_factory=id_factory)


@pytest.fixture
def webhook_reconciler(
    clock: FixedClock, id_factory: TransactionIdFactory
) -> WebhookReconciler:
    return WebhookReconciler(SERVER_KEY, id_factory, clock)


def signed_notification(
    order_id: str,
    transaction_status: str,
    status_code: str = "200",
    gross_amount: str = "503500.00",
    fraud_status: Optional[str] = None,
    server_key: str = SERVER_KEY,
) -> Dict[str, Any]:
    """Notification body signed the way Midtrans signs it."""
    body: Dict[str, Any] = {
        "order_id": order_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "signature_key": compute_signature(order_id, status_code, gross_amount, server_key),
        "transaction_status": transaction_status,
        "transaction_id": str(uuid.uuid4()),
        "payment_type": "qris",
        "transaction_time": "2026-03-02 09:45:00",
    }
    if fraud_status is not None:
        body["fraud_status"] = fraud_status
    return body


def bearer_token(user_id: str, secret: str = JWT_SECRET, **claims: Any) -> str:
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": datetime.now(tz=ZoneInfo("UTC")) + timedelta(hours=1),
        **claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FixedClock,
    fake_midtrans: FakeMidtrans,
) -> Any:
    return create_app(
        test_settings,
        session_factory=session_factory,
        clock=clock,
        gateway_transport=httpx.MockTransport(fake_midtrans.handler),
    )


@pytest_asyncio.fixture
async def client(app: Any) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """Create test HTTP client."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
