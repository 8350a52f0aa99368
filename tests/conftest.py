"""Shared pytest fixtures for database-backed service tests."""

import os

os.environ["BOT_TOKEN"] = "123456:TEST"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["ADMIN_CHAT_IDS"] = "-1001"
os.environ["ADMIN_TG_IDS"] = "42"
os.environ["NOWPAYMENTS_IPN_SECRET"] = "test-ipn-secret"
os.environ["DISCORD_INVITE_URL"] = "https://discord.gg/afina"
os.environ["DEFAULT_GRACE_DAYS"] = "5"
for name in (
    "DISCORD_BOT_TOKEN",
    "NOTION_SCIM_TOKEN",
    "NOWPAYMENTS_API_KEY",
    "GOOGLE_DRIVE_FOLDER_ID",
    "GOOGLE_SERVICE_ACCOUNT_JSON",
):
    os.environ[name] = ""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from afina.db.base import Base
from afina.db.models import (
    SETTINGS_ROW_ID,
    Subscription,
    SubscriptionStatus,
    SubscriptionTariffSettings,
    Tariff,
    TariffPrice,
    User,
    UserAvailableTariff,
)


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeBot:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail_for: set[int] = set()

    async def send_message(self, chat_id, text, reply_markup=None, **kwargs):
        if chat_id in self.fail_for:
            from aiogram.exceptions import TelegramBadRequest

            raise TelegramBadRequest(method=None, message="chat not found")
        self.sent.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup})

    async def send_photo(self, chat_id, photo, caption=None, **kwargs):
        if chat_id in self.fail_for:
            from aiogram.exceptions import TelegramForbiddenError

            raise TelegramForbiddenError(method=None, message="bot was blocked by the user")
        self.sent.append(
            {"chat_id": chat_id, "text": caption, "photo": photo, "reply_markup": None}
        )

    def messages_to(self, chat_id) -> list[str]:
        return [item["text"] for item in self.sent if item["chat_id"] == chat_id]


@pytest.fixture(autouse=True)
def _no_admin_delay(monkeypatch):
    async def _noop(delay):
        return None

    monkeypatch.setattr("afina.access_control.service.asyncio.sleep", _noop)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def bot():
    return FakeBot()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session):
    counter = {"value": 1000}

    async def _make(**kwargs) -> User:
        counter["value"] += 1
        kwargs.setdefault("telegram_id", counter["value"])
        user = User(**kwargs)
        session.add(user)
        await session.flush()
        return user

    return _make


@pytest.fixture
def make_tariff(session):
    async def _make(name="Base", prices=((1, "50.00"),), **kwargs) -> Tariff:
        tariff = Tariff(name=name, **kwargs)
        session.add(tariff)
        await session.flush()
        for period, amount in prices:
            session.add(
                TariffPrice(
                    tariff_id=tariff.id, period_months=period, price=Decimal(amount)
                )
            )
        await session.flush()
        return tariff

    return _make


@pytest.fixture
def make_subscription(session):
    async def _make(user, end_date, status=SubscriptionStatus.ACTIVE, **kwargs):
        if "start_date" not in kwargs and end_date is not None:
            kwargs["start_date"] = end_date - timedelta(days=30)
        subscription = Subscription(
            user_id=user.id, status=status, end_date=end_date, **kwargs
        )
        session.add(subscription)
        await session.flush()
        return subscription

    return _make


@pytest.fixture
def set_tariff_settings(session):
    async def _set(**kwargs) -> SubscriptionTariffSettings:
        row = SubscriptionTariffSettings(id=SETTINGS_ROW_ID, **kwargs)
        session.add(row)
        await session.flush()
        return row

    return _set


@pytest.fixture
def entitle(session):
    async def _entitle(user, *tariffs) -> None:
        for tariff in tariffs:
            session.add(UserAvailableTariff(user_id=user.id, tariff_id=tariff.id))
        await session.flush()

    return _entitle
