from datetime import timedelta

import pytest
from sqlalchemy import select

from afina.db.models import BotText, SubscriptionLog
from afina.repositories.bot_texts import NOTIFICATIONS_SECTION
from afina.services import notifications
from afina.services.notifications import (
    build_expired_message,
    check_expiring_subscriptions,
    send_expired_notification,
    send_expiring_in_days_notification,
)


GRACE_SENTENCE = "чтобы оплатить и сохранить текущий тариф"


async def _add_expiry_text(session, key, days, value):
    session.add(
        BotText(
            key=key,
            section=NOTIFICATIONS_SECTION,
            value=value,
            notification_condition={"type": "days_before_expiry", "days": days},
        )
    )
    await session.flush()


async def _log_actions(session, subscription_id):
    result = await session.execute(
        select(SubscriptionLog.action).where(
            SubscriptionLog.subscription_id == subscription_id
        )
    )
    return [row[0] for row in result.all()]


@pytest.mark.asyncio
async def test_expired_message_skips_grace_when_user_has_actual_tariff(
    session, make_user, make_tariff, set_tariff_settings, entitle
):
    tariff = await make_tariff("Base")
    await set_tariff_settings(actual_tariff_id=tariff.id, days_after_expiry_switch=7)
    user = await make_user()
    await entitle(user, tariff)

    text = await build_expired_message(session, user.id)

    assert GRACE_SENTENCE not in text
    assert "Используйте /start чтобы продлить подписку." in text


@pytest.mark.asyncio
async def test_expired_message_includes_grace_days_on_mismatch(
    session, make_user, make_tariff, set_tariff_settings, entitle
):
    old = await make_tariff("Legacy", sort_order=1)
    actual = await make_tariff("Current", sort_order=0)
    await set_tariff_settings(actual_tariff_id=actual.id, days_after_expiry_switch=7)
    user = await make_user()
    await entitle(user, old)

    text = await build_expired_message(session, user.id)

    assert GRACE_SENTENCE in text
    assert "<b>7</b>" in text


@pytest.mark.asyncio
async def test_expired_message_uses_default_grace_without_settings(session, make_user):
    user = await make_user()

    text = await build_expired_message(session, user.id)

    assert "<b>5</b>" in text


@pytest.mark.asyncio
async def test_expired_notification_is_logged(
    session, bot, now, make_user, make_subscription
):
    user = await make_user(discord_id="998877")
    subscription = await make_subscription(user, end_date=now - timedelta(hours=1))

    sent = await send_expired_notification(session, bot, subscription, user)

    assert sent is True
    assert len(bot.messages_to(user.telegram_id)) == 1
    assert bot.sent[0]["reply_markup"].inline_keyboard[0][0].callback_data == (
        "buy_subscription"
    )
    assert "expired_notification_sent" in await _log_actions(session, subscription.id)


@pytest.mark.asyncio
async def test_expired_notification_not_logged_when_delivery_fails(
    session, bot, now, make_user, make_subscription
):
    user = await make_user()
    subscription = await make_subscription(user, end_date=now - timedelta(hours=1))
    bot.fail_for.add(user.telegram_id)

    sent = await send_expired_notification(session, bot, subscription, user)

    assert sent is False
    assert await _log_actions(session, subscription.id) == []


@pytest.mark.asyncio
async def test_warning_sent_once_for_configured_day_count(
    session, bot, now, make_user, make_subscription
):
    await _add_expiry_text(
        session,
        "expiring_3_days",
        3,
        "До конца подписки {{daysLeft}} дн., окончание {{endDate}}",
    )
    user = await make_user()
    due = await make_subscription(user, end_date=now + timedelta(days=2, hours=12))
    other_user = await make_user()
    await make_subscription(other_user, end_date=now + timedelta(days=5))

    first = await check_expiring_subscriptions(session, bot, now)
    second = await check_expiring_subscriptions(session, bot, now)

    assert first == 1
    assert second == 0
    messages = bot.messages_to(user.telegram_id)
    assert messages == ["До конца подписки 3 дн., окончание 13.03.2026"]
    assert bot.messages_to(other_user.telegram_id) == []
    assert (await _log_actions(session, due.id)).count("expiring_3_days_sent") == 1


@pytest.mark.asyncio
async def test_no_warnings_without_configured_texts(
    session, bot, now, make_user, make_subscription
):
    user = await make_user()
    await make_subscription(user, end_date=now + timedelta(days=2, hours=12))

    assert await check_expiring_subscriptions(session, bot, now) == 0
    assert bot.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "condition",
    [
        {"type": "days_before_expiry", "days": 0},
        {"type": "days_before_expiry", "days": True},
        {"type": "days_before_expiry", "days": "3"},
        {"type": "after_payment", "days": 3},
    ],
)
async def test_invalid_conditions_are_ignored(
    session, bot, now, make_user, make_subscription, condition
):
    session.add(
        BotText(
            key="broken",
            section=NOTIFICATIONS_SECTION,
            value="text",
            notification_condition=condition,
        )
    )
    await session.flush()
    user = await make_user()
    await make_subscription(user, end_date=now + timedelta(days=2, hours=12))

    assert await check_expiring_subscriptions(session, bot, now) == 0


@pytest.mark.asyncio
async def test_admin_edit_warning_only_for_exact_day_count(
    session, bot, now, make_user, make_subscription
):
    await _add_expiry_text(session, "expiring_7_days", 7, "Осталось {{daysLeft}} дн.")
    user = await make_user()
    subscription = await make_subscription(user, end_date=now + timedelta(days=7))

    assert await send_expiring_in_days_notification(
        session, bot, subscription, user, 6
    ) is False
    assert await send_expiring_in_days_notification(
        session, bot, subscription, user, 7
    ) is True
    assert bot.messages_to(user.telegram_id) == ["Осталось 7 дн."]


@pytest.mark.asyncio
async def test_failed_warning_does_not_undo_delivered_ones(
    session, session_factory, bot, now, make_user, make_subscription, monkeypatch
):
    await _add_expiry_text(session, "expiring_3_days", 3, "Осталось {{daysLeft}} дн.")
    first_user = await make_user()
    delivered = await make_subscription(
        first_user, end_date=now + timedelta(days=2, hours=6)
    )
    second_user = await make_user()
    broken = await make_subscription(
        second_user, end_date=now + timedelta(days=2, hours=18)
    )
    await session.commit()
    delivered_id, broken_id = delivered.id, broken.id

    original = notifications.send_expiring_notification

    async def _send(session, bot, subscription, user, block, days, source):
        if subscription.id == broken_id:
            raise RuntimeError("template storage unavailable")
        return await original(session, bot, subscription, user, block, days, source)

    monkeypatch.setattr(notifications, "send_expiring_notification", _send)

    sent = await check_expiring_subscriptions(session, bot, now)

    assert sent == 1
    async with session_factory() as fresh:
        assert "expiring_3_days_sent" in await _log_actions(fresh, delivered_id)
        assert await _log_actions(fresh, broken_id) == []
