"""
Test fixtures for ambassador backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with per-request sessions and fake transports
- Factories for users, tasks, reports and shop items
- Telegram init data / bearer token helpers
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os
import tempfile

# Test bot token - used for init data signature verification
TEST_BOT_TOKEN = "1234567890:ABCdefGHIjklMNOpqrsTUVwxyz"

os.environ["BOT_TOKEN"] = TEST_BOT_TOKEN
os.environ["TELEGRAM_DATA_MAX_AGE"] = "86400"
os.environ["JWT_SECRET"] = "test_jwt_secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="ambassador-uploads-")
os.environ["MINI_APP_URL"] = "https://app.test"
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ["ENVIRONMENT"] = "development"

import json
import time
from typing import AsyncGenerator, Optional
from urllib.parse import urlencode

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from ambassador.app.core.auth import create_access_token, sign_init_data_fields
from ambassador.app.core.base import Base
from ambassador.app.core.constants import (
    ROLE_AMBASSADOR,
    ROLE_MANAGER,
    ROLE_ADMIN,
    USER_ACTIVE,
    USER_PENDING,
    TASK_ACTIVE,
    TASK_GENERAL,
    TASK_PERSONAL,
    REPORT_VIDEO_LINK,
    REPORT_PENDING,
)
from ambassador.app.core.limiter import limiter
from ambassador.app.main import app
from ambassador.app.api.deps import get_session, get_notifier, get_report_sync, get_blob_store
from ambassador.app.models.user import User
from ambassador.app.models.task import Task, TaskAssignment
from ambassador.app.models.report import Report, VideoLink
from ambassador.app.models.shop import ShopItem
from ambassador.app.services.ledger import LedgerService
from ambassador.app.services.notifications import Notifier
from ambassador.app.services.report_sync import ReportSync
from ambassador.app.services.storage import LocalBlobStore


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# StaticPool keeps the single in-memory database alive across sessions
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

limiter.enabled = False


class FakeNotifier(Notifier):
    """Records every message instead of calling Telegram."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send_message(self, chat_id, text, button_text=None, button_url=None) -> bool:
        if chat_id in self.fail_for:
            raise RuntimeError("telegram is down")
        self.sent.append({"chat_id": chat_id, "text": text, "button_text": button_text, "button_url": button_url})
        return True

    def to(self, chat_id):
        return [m for m in self.sent if m["chat_id"] == chat_id]


class FakeReportSync(ReportSync):
    def __init__(self):
        self.rows = []
        self.fail = False

    async def push_report(self, row):
        if self.fail:
            raise RuntimeError("sheet unavailable")
        self.rows.append(row)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Fresh database for each test.
    Creates all tables before and drops after each test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def report_sync() -> FakeReportSync:
    return FakeReportSync()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "uploads"), "/uploads", max_bytes=1024 * 1024)


@pytest.fixture
async def client(
    test_session: AsyncSession,
    notifier: FakeNotifier,
    report_sync: FakeReportSync,
    blob_store: LocalBlobStore,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.

    Each request gets its own session so fixture data and request
    transactions do not interfere.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_report_sync] = lambda: report_sync
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def fresh_session() -> AsyncGenerator[AsyncSession, None]:
    """Separate session for asserting on state written by API calls."""
    async with TestSessionLocal() as session:
        yield session


# --- Test Data Factories ---

async def create_user(
    session: AsyncSession,
    telegram_id: Optional[int] = None,
    role: str = ROLE_AMBASSADOR,
    status: str = USER_ACTIVE,
    complete_profile: bool = True,
    **fields,
) -> User:
    values = dict(
        telegram_id=telegram_id,
        username=f"user{telegram_id}" if telegram_id else None,
        first_name="Test",
        last_name="User",
        role=role,
        status=status,
    )
    if complete_profile:
        values.update(phone="+79001234567", cdek_pvz="MSK-123")
    values.update(fields)
    user = User(**values)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def create_task(
    session: AsyncSession,
    title: str = "Снять обзор",
    task_type: str = TASK_GENERAL,
    status: str = TASK_ACTIVE,
    reward: Optional[int] = 100,
    assignees: Optional[list[int]] = None,
    **fields,
) -> Task:
    task = Task(title=title, type=task_type, status=status, reward_flariki=reward, **fields)
    task.assignments = [TaskAssignment(user_id=uid) for uid in (assignees or [])]
    session.add(task)
    await session.commit()
    await session.refresh(task)
    return task


async def create_report(
    session: AsyncSession,
    user: User,
    task: Task,
    status: str = REPORT_PENDING,
    views: int = 100,
    likes: int = 10,
    comments: int = 1,
    **fields,
) -> Report:
    report = Report(user_id=user.id, task_id=task.id, type=REPORT_VIDEO_LINK, status=status, **fields)
    report.video_links = [
        VideoLink(position=0, url="https://youtube.com/watch?v=1", views=views, likes=likes, comments=comments)
    ]
    session.add(report)
    await session.commit()
    await session.refresh(report)
    return report


async def create_shop_item(
    session: AsyncSession,
    name: str = "Футболка",
    price: int = 50,
    stock: Optional[int] = 10,
    is_active: bool = True,
) -> ShopItem:
    item = ShopItem(name=name, price=price, stock=stock, is_active=is_active)
    session.add(item)
    await session.commit()
    await session.refresh(item)
    return item


async def assert_ledger_consistent(session: AsyncSession, user_id: int):
    """Stored balance must equal the sum of the user's ledger rows."""
    ledger = LedgerService(session)
    assert await ledger.get_balance(user_id) == await ledger.ledger_sum(user_id)


@pytest.fixture
async def ambassador(test_session: AsyncSession) -> User:
    """Active ambassador with a complete profile."""
    return await create_user(test_session, telegram_id=111111, first_name="Анна", last_name="Иванова")


@pytest.fixture
async def pending_ambassador(test_session: AsyncSession) -> User:
    return await create_user(test_session, telegram_id=222222, status=USER_PENDING, complete_profile=False)


@pytest.fixture
async def manager(test_session: AsyncSession) -> User:
    return await create_user(
        test_session, telegram_id=333333, role=ROLE_MANAGER, email="manager@example.com"
    )


@pytest.fixture
async def admin_user(test_session: AsyncSession) -> User:
    return await create_user(test_session, role=ROLE_ADMIN, email="admin@example.com")


@pytest.fixture
async def general_task(test_session: AsyncSession) -> Task:
    return await create_task(test_session, title="Общее задание", reward=100)


@pytest.fixture
async def personal_task(test_session: AsyncSession, ambassador: User) -> Task:
    return await create_task(
        test_session, title="Личное задание", task_type=TASK_PERSONAL, reward=200, assignees=[ambassador.id]
    )


# --- Auth Helpers ---

def generate_telegram_init_data(
    user_id: int,
    first_name: str = "Test",
    last_name: str = "User",
    username: str = "testuser",
    bot_token: str = TEST_BOT_TOKEN,
    auth_date: Optional[int] = None,
) -> str:
    """Properly signed Telegram WebApp init data."""
    fields = {
        "user": json.dumps({
            "id": user_id,
            "first_name": first_name,
            "last_name": last_name,
            "username": username,
            "language_code": "ru",
        }),
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "test_query_id",
    }
    fields["hash"] = sign_init_data_fields(fields, bot_token)
    return urlencode(fields)


def tg_headers(user: User) -> dict:
    """Init data header for a stored user, keeping its names unchanged."""
    init_data = generate_telegram_init_data(
        user_id=user.telegram_id,
        first_name=user.first_name or "Test",
        last_name=user.last_name,
        username=user.username,
    )
    return {"X-Telegram-Init-Data": init_data}


def bearer_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
