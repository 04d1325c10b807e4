"""
Тестовая инфраструктура: SQLite in-memory, FastAPI TestClient, фейковый шлюз и управляемые часы.
"""
import os

# Настройки окружения: должны быть ДО импорта notifier
os.environ["API_KEY"] = "test-api-key"
os.environ["DISPATCH_TRIGGER_TOKEN"] = "test-trigger-token"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GATEWAY_BASE_URL"] = "http://gateway.test/api"
os.environ["DISPATCH_LOOP_INTERVAL"] = "0"

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from notifier.api.dependencies import get_dispatcher, get_gateway, get_monitor
from notifier.clients.gateway_client import DeliveryResult, GatewayStatus
from notifier.core.database import Base, get_db
from notifier.core.templates import TemplateCatalog
from notifier.core.utils import utcnow
from notifier.main import app as fastapi_app
from notifier.services.connection_monitor import ConnectionMonitor
from notifier.services.dispatcher import Dispatcher
from notifier.services.notification_store import NotificationStore

# Импортируем все модели чтобы Base.metadata знал о них
import notifier.models.notification  # noqa: F401


# SQLite in-memory с StaticPool: одна БД для всех connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(bind=engine)


class FakeClock:
    """Управляемые часы: тест сам двигает время."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Фейковый шлюз сообщений с тем же интерфейсом, что и GatewayClient."""

    def __init__(self, clock):
        self.clock = clock
        self.connected = True
        self.identity = "+5491100000000"
        self.fail_phones: set[str] = set()
        self.raise_on_send = False
        self.remote_success = True
        self.sent: list[tuple[str, str]] = []
        self.bulk_calls: list[list[tuple[str, str]]] = []
        self.scheduled: list[tuple[str, str, int]] = []
        self.status_checks = 0
        self.sync_calls = 0

    async def check_status(self) -> GatewayStatus:
        self.status_checks += 1
        return GatewayStatus(
            connected=self.connected,
            identity=self.identity if self.connected else None,
            checked_at=self.clock(),
            error=None if self.connected else "gateway reports disconnected",
        )

    async def send_one(self, phone: str, message: str) -> DeliveryResult:
        if self.raise_on_send:
            raise RuntimeError("gateway exploded")
        self.sent.append((phone, message))
        if phone in self.fail_phones:
            return DeliveryResult.failure("number is not on the messaging network")
        return DeliveryResult(success=True, provider_message_id=f"msg-{len(self.sent)}")

    async def send_bulk(self, items):
        self.bulk_calls.append(list(items))
        results = []
        for phone, message in items:
            if phone in self.fail_phones:
                results.append(DeliveryResult.failure("number is not on the messaging network"))
            else:
                results.append(DeliveryResult(success=True, provider_message_id=f"bulk-{len(results)}"))
        return results

    async def schedule_remote(self, phone: str, message: str, delay_minutes: int) -> DeliveryResult:
        self.scheduled.append((phone, message, delay_minutes))
        if self.remote_success:
            return DeliveryResult(success=True, provider_message_id="remote-1")
        return DeliveryResult.failure("scheduling not supported")

    async def sync_notifications(self) -> DeliveryResult:
        self.sync_calls += 1
        return DeliveryResult(success=True)


@pytest.fixture(autouse=True)
def setup_database():
    """Создаёт все таблицы перед каждым тестом и удаляет после."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    """Фабрика сессий тестовой БД (для кода, открывающего свои сессии)."""
    return TestingSessionLocal


@pytest.fixture
def db_session() -> Session:
    """Фикстура тестовой сессии БД."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(utcnow().replace(microsecond=0))


@pytest.fixture
def gateway(clock) -> FakeGateway:
    return FakeGateway(clock)


@pytest.fixture
def monitor(gateway, clock) -> ConnectionMonitor:
    return ConnectionMonitor(gateway, clock=clock)


@pytest.fixture
def store(db_session, clock) -> NotificationStore:
    return NotificationStore(db_session, clock=clock)


@pytest.fixture
def dispatcher(store, gateway, monitor, clock) -> Dispatcher:
    return Dispatcher(
        store,
        gateway,
        monitor,
        catalog=TemplateCatalog(),
        clock=clock,
        remote_scheduling=False,
        send_interval=0,
    )


def _override_dependencies(db_session, gateway, monitor, dispatcher):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_monitor] = lambda: monitor
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher


@pytest.fixture
def client_no_auth(db_session, gateway, monitor, dispatcher) -> TestClient:
    """FastAPI TestClient БЕЗ API-ключа (для тестов безопасности)."""
    _override_dependencies(db_session, gateway, monitor, dispatcher)
    with TestClient(fastapi_app, raise_server_exceptions=False) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(db_session, gateway, monitor, dispatcher) -> TestClient:
    """FastAPI TestClient с подменёнными БД, шлюзом и API-ключом."""
    _override_dependencies(db_session, gateway, monitor, dispatcher)
    with TestClient(
        fastapi_app,
        raise_server_exceptions=False,
        headers={"X-API-Key": "test-api-key"},
    ) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


# --- Вспомогательные функции для создания тестовых данных ---

def create_notification(
    c: TestClient,
    phone: str = "1123456789",
    notification_type: str = "appointment_reminder",
    delay_minutes: int = 0,
    **extra,
) -> dict:
    """Создаёт уведомление через API."""
    payload = {
        "recipient_phone": phone,
        "notification_type": notification_type,
        "delay_minutes": delay_minutes,
        "variables": extra.pop("variables", {"date": "2024-06-01", "time": "10:00"}),
        **extra,
    }
    resp = c.post("/api/v1/notifications", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()
