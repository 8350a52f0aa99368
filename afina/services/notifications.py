"""Expiry notifications for subscriptions.

Two kinds of messages are sent:

* the "subscription expired" message, whose wording depends on whether the
  user is already entitled to exactly the actual tariff set (no grace warning)
  or not (the grace period to repurchase is spelled out);
* "N days before expiry" warnings, sent only for the day counts an admin has
  configured a notification text for.

Delivery failures are logged and reported as ``False``; they never raise.
"""
import logging
from datetime import datetime, timedelta

from aiogram import Bot
from sqlalchemy.ext.asyncio import AsyncSession

from afina.access_control import discord_api
from afina.access_control.service import safe_send_message
from afina.db.models import Subscription, User
from afina.repositories import subscriptions as subscription_repo
from afina.repositories import tariffs as tariff_repo
from afina.repositories.subscription_logs import add_subscription_log
from afina.repositories.users import get_user_by_id
from afina.services.tariffs import get_actual_tariffs, has_actual_tariff
from afina.services.texts import (
    ExpiryNotificationBlock,
    get_expiry_notification_block,
    list_expiry_notification_blocks,
    render_expiry_text,
)
from afina.ui.keyboards import renew_subscription_kb
from afina.utils.dates import format_date, utcnow
from config import settings


logger = logging.getLogger(__name__)

EXPIRED_HEADER = (
    "❌ <b>Ваша подписка истекла</b>\n\n"
    "Доступ к Discord и Notion снят.\n\n"
)
EXPIRED_RENEW_HINT = "Используйте /start чтобы продлить подписку."
EXPIRED_GRACE_HINT = (
    "У вас есть <b>{days}</b> дн. чтобы оплатить и сохранить текущий тариф. "
    "Используйте /start для продления."
)
EXPIRED_DISCORD_DM = (
    "❌ **Ваша подписка Afina DAO истекла**\n\n"
    "Доступ к приватным каналам был отозван.\n\n"
    "Продлите подписку через Telegram бота."
)


async def build_expired_message(session: AsyncSession, user_id: int) -> str:
    actual = await get_actual_tariffs(session)
    user_tariff_ids = await tariff_repo.get_user_tariff_ids(session, user_id)
    if has_actual_tariff(user_tariff_ids, actual):
        return EXPIRED_HEADER + EXPIRED_RENEW_HINT
    days_to_pay = actual.days_to_pay if actual is not None else settings.default_grace_days
    return EXPIRED_HEADER + EXPIRED_GRACE_HINT.format(days=days_to_pay)


async def send_expired_notification(
    session: AsyncSession, bot: Bot, subscription: Subscription, user: User
) -> bool:
    sent = False
    if user.telegram_id:
        text = await build_expired_message(session, user.id)
        sent = await safe_send_message(
            bot, user.telegram_id, text, reply_markup=renew_subscription_kb()
        )
        if sent:
            await add_subscription_log(
                session,
                action="expired_notification_sent",
                details={"sentAt": utcnow().isoformat()},
                user_id=user.id,
                subscription_id=subscription.id,
            )
    if user.discord_id:
        await discord_api.send_dm(user.discord_id, EXPIRED_DISCORD_DM)
    return sent


async def send_expiring_notification(
    session: AsyncSession,
    bot: Bot,
    subscription: Subscription,
    user: User,
    block: ExpiryNotificationBlock,
    days: int,
    source: str,
) -> bool:
    text = await render_expiry_text(
        session, block, format_date(subscription.end_date), days
    )
    sent = await safe_send_message(
        bot, user.telegram_id, text, reply_markup=renew_subscription_kb()
    )
    if not sent:
        return False
    await add_subscription_log(
        session,
        action=block.log_action,
        details={"sentAt": utcnow().isoformat(), "source": source, "daysLeft": days},
        user_id=user.id,
        subscription_id=subscription.id,
    )
    return True


async def send_expiring_in_days_notification(
    session: AsyncSession,
    bot: Bot,
    subscription: Subscription,
    user: User | None,
    days_left: int,
    source: str = "admin_edit",
) -> bool:
    if user is None or not user.telegram_id or days_left < 1:
        return False
    block = await get_expiry_notification_block(session, days_left)
    if block is None:
        return False
    return await send_expiring_notification(
        session, bot, subscription, user, block, days_left, source
    )


async def check_expiring_subscriptions(
    session: AsyncSession, bot: Bot, now: datetime
) -> int:
    blocks = await list_expiry_notification_blocks(session)
    total_sent = 0
    for block in blocks:
        subscriptions = await subscription_repo.list_subscriptions_ending_between(
            session,
            window_start=now + timedelta(days=block.days - 1),
            window_end=now + timedelta(days=block.days),
            exclude_logged_action=block.log_action,
        )
        subscription_ids = [subscription.id for subscription in subscriptions]
        for subscription_id in subscription_ids:
            subscription = await session.get(Subscription, subscription_id)
            try:
                user = await get_user_by_id(session, subscription.user_id)
                if user is None or not user.telegram_id:
                    continue
                if await send_expiring_notification(
                    session, bot, subscription, user, block, block.days, source="scheduler"
                ):
                    total_sent += 1
                # Delivered warnings stay logged even if a later one fails.
                await session.commit()
            except Exception:
                logger.exception(
                    "Failed to send expiry warning",
                    extra={"subscription_id": subscription_id, "days": block.days},
                )
                await session.rollback()
    if blocks:
        logger.info(
            "Expiry warnings processed",
            extra={"blocks": len(blocks), "sent": total_sent},
        )
    return total_sent
