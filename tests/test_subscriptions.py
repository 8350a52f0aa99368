from datetime import timedelta

import pytest
from sqlalchemy import select

from afina.access_control import discord_api, notion_api
from afina.db.models import BotText, Subscription, SubscriptionLog, SubscriptionStatus
from afina.repositories.bot_texts import NOTIFICATIONS_SECTION
from afina.services import subscriptions as subscription_service
from afina.services.subscriptions import (
    activate_subscription,
    cancel_subscription,
    expire_subscriptions,
    update_subscription,
)
from afina.utils.dates import ensure_utc


@pytest.fixture
def remote_calls(monkeypatch):
    calls = []

    async def _grant_role(discord_id):
        calls.append(("grant_role", discord_id))
        return True

    async def _revoke_role(discord_id):
        calls.append(("revoke_role", discord_id))
        return True

    async def _revoke_notion(email):
        calls.append(("revoke_notion", email))
        return True

    async def _send_dm(discord_id, text):
        calls.append(("send_dm", discord_id))
        return True

    monkeypatch.setattr(discord_api, "grant_role", _grant_role)
    monkeypatch.setattr(discord_api, "revoke_role", _revoke_role)
    monkeypatch.setattr(discord_api, "send_dm", _send_dm)
    monkeypatch.setattr(notion_api, "revoke_access", _revoke_notion)
    return calls


async def _actions(session, subscription_id):
    result = await session.execute(
        select(SubscriptionLog.action).where(
            SubscriptionLog.subscription_id == subscription_id
        )
    )
    return [row[0] for row in result.all()]


@pytest.mark.asyncio
async def test_expire_sweep_revokes_access(
    session, bot, now, make_user, make_subscription, remote_calls
):
    user = await make_user(discord_id="111", email="member@example.com")
    subscription = await make_subscription(
        user,
        end_date=now - timedelta(minutes=5),
        discord_role_granted=True,
        notion_access_granted=True,
    )

    expired = await expire_subscriptions(session, bot, now)

    assert expired == 1
    assert subscription.status == SubscriptionStatus.EXPIRED
    assert subscription.discord_role_granted is False
    assert subscription.notion_access_granted is False
    assert ("revoke_role", "111") in remote_calls
    assert ("revoke_notion", "member@example.com") in remote_calls
    assert len(bot.messages_to(user.telegram_id)) == 1
    admin_messages = bot.messages_to(-1001)
    assert len(admin_messages) == 1
    assert "member@example.com" in admin_messages[0]
    actions = await _actions(session, subscription.id)
    assert "subscription_expired" in actions
    assert "expired_notification_sent" in actions


@pytest.mark.asyncio
async def test_expire_keeps_access_with_other_active_subscription(
    session, bot, now, make_user, make_subscription, remote_calls
):
    user = await make_user(discord_id="222")
    old = await make_subscription(
        user, end_date=now - timedelta(minutes=5), discord_role_granted=True
    )
    renewal = await make_subscription(user, end_date=now + timedelta(days=30))

    await expire_subscriptions(session, bot, now)

    assert old.status == SubscriptionStatus.EXPIRED
    assert old.discord_role_granted is False
    assert renewal.status == SubscriptionStatus.ACTIVE
    assert renewal.discord_role_granted is True
    assert ("revoke_role", "222") not in remote_calls
    assert bot.messages_to(user.telegram_id) == []


@pytest.mark.asyncio
async def test_future_subscriptions_are_not_expired(
    session, bot, now, make_user, make_subscription
):
    user = await make_user()
    subscription = await make_subscription(user, end_date=now + timedelta(seconds=1))

    assert await expire_subscriptions(session, bot, now) == 0
    assert subscription.status == SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_update_to_cancelled_revokes_access(
    session, bot, now, make_user, make_subscription, remote_calls
):
    user = await make_user(discord_id="333")
    subscription = await make_subscription(
        user, end_date=now + timedelta(days=10), discord_role_granted=True
    )

    await update_subscription(
        session, bot, subscription, {"status": SubscriptionStatus.CANCELLED}, now
    )

    assert subscription.status == SubscriptionStatus.CANCELLED
    assert subscription.discord_role_granted is False
    assert ("revoke_role", "333") in remote_calls
    assert "subscription_updated" in await _actions(session, subscription.id)


@pytest.mark.asyncio
async def test_update_to_active_grants_access_and_warns(
    session, bot, now, make_user, make_subscription, remote_calls
):
    session.add(
        BotText(
            key="expiring_3_days",
            section=NOTIFICATIONS_SECTION,
            value="Осталось {{daysLeft}} дн. до {{endDate}}",
            notification_condition={"type": "days_before_expiry", "days": 3},
        )
    )
    user = await make_user(discord_id="444")
    subscription = await make_subscription(
        user, end_date=now - timedelta(days=1), status=SubscriptionStatus.EXPIRED
    )

    await update_subscription(
        session,
        bot,
        subscription,
        {"status": SubscriptionStatus.ACTIVE, "end_date": now + timedelta(days=3)},
        now,
    )

    assert subscription.discord_role_granted is True
    assert ("grant_role", "444") in remote_calls
    assert bot.messages_to(user.telegram_id) == ["Осталось 3 дн. до 13.03.2026"]
    assert "expiring_3_days_sent" in await _actions(session, subscription.id)


@pytest.mark.asyncio
async def test_cancel_subscription_logs_and_revokes(
    session, now, make_user, make_subscription, remote_calls
):
    user = await make_user(discord_id="555")
    subscription = await make_subscription(
        user, end_date=now + timedelta(days=10), discord_role_granted=True
    )

    await cancel_subscription(session, subscription, now)

    assert subscription.status == SubscriptionStatus.CANCELLED
    assert subscription.discord_role_granted is False
    assert "subscription_cancelled" in await _actions(session, subscription.id)


@pytest.mark.asyncio
async def test_activation_extends_from_current_subscription(
    session, now, make_user, make_subscription, remote_calls
):
    user = await make_user()
    current = await make_subscription(user, end_date=now + timedelta(days=10))
    pending = await make_subscription(
        user, end_date=None, start_date=None, status=SubscriptionStatus.PENDING,
        period_months=1,
    )

    await activate_subscription(session, pending, user, now)

    assert pending.status == SubscriptionStatus.ACTIVE
    assert ensure_utc(pending.start_date) == ensure_utc(current.end_date)
    assert ensure_utc(pending.end_date).month == 4
    assert ensure_utc(pending.end_date).day == 20


@pytest.mark.asyncio
async def test_expire_sweep_skips_failing_subscription(
    session, session_factory, bot, now, make_user, make_subscription, remote_calls,
    monkeypatch,
):
    first_user = await make_user()
    broken = await make_subscription(first_user, end_date=now - timedelta(days=2))
    second_user = await make_user()
    healthy = await make_subscription(second_user, end_date=now - timedelta(days=1))
    await session.commit()
    broken_id, healthy_id = broken.id, healthy.id
    healthy_chat = second_user.telegram_id

    original = subscription_service.expire_subscription

    async def _expire(session, bot, subscription, now):
        if subscription.id == broken_id:
            subscription.status = SubscriptionStatus.EXPIRED
            raise RuntimeError("lost connection to Discord proxy")
        await original(session, bot, subscription, now)

    monkeypatch.setattr(subscription_service, "expire_subscription", _expire)

    expired = await expire_subscriptions(session, bot, now)

    assert expired == 1
    async with session_factory() as fresh:
        assert (await fresh.get(Subscription, healthy_id)).status == (
            SubscriptionStatus.EXPIRED
        )
        assert (await fresh.get(Subscription, broken_id)).status == (
            SubscriptionStatus.ACTIVE
        )
    assert len(bot.messages_to(healthy_chat)) == 1
