import logging
from datetime import datetime

from aiogram import Bot
from sqlalchemy.ext.asyncio import AsyncSession

from afina.access_control.service import (
    grant_access,
    notify_admins,
    revoke_access,
    transfer_access,
)
from afina.db.models import Subscription, SubscriptionStatus, User
from afina.repositories import subscriptions as subscription_repo
from afina.repositories import tariffs as tariff_repo
from afina.repositories.subscription_logs import add_subscription_log
from afina.repositories.users import get_user_by_id
from afina.services.notifications import (
    send_expired_notification,
    send_expiring_in_days_notification,
)
from afina.utils.dates import add_months, days_left, ensure_utc, format_date, format_datetime


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "status",
    "start_date",
    "end_date",
    "discord_role_granted",
    "notion_access_granted",
    "google_drive_access_granted",
    "auto_renew",
    "notes",
    "is_free",
)


async def release_access(
    session: AsyncSession, subscription: Subscription, user: User | None, now: datetime
) -> Subscription | None:
    """Take access away from a subscription that stopped being active.

    When the user holds another active, unexpired subscription nothing is
    revoked remotely: the granted flags move to that subscription, which is
    returned. Otherwise access is revoked and ``None`` is returned.
    """
    other = await subscription_repo.get_other_active_subscription(
        session, subscription.user_id, subscription.id, now
    )
    if other is not None:
        transfer_access(subscription, other)
        logger.info(
            "Access kept by another active subscription",
            extra={"subscription_id": subscription.id, "kept_by": other.id},
        )
        return other
    await revoke_access(subscription, user)
    return None


def _code(value) -> str:
    return f"<code>{value}</code>" if value else "—"


async def _expired_admin_message(
    session: AsyncSession,
    subscription: Subscription,
    user: User | None,
    kept_by: Subscription | None,
    now: datetime,
) -> str:
    tariff_name = "—"
    if subscription.tariff_id is not None:
        tariff = await tariff_repo.get_tariff_by_id(session, subscription.tariff_id)
        tariff_name = tariff.name if tariff else str(subscription.tariff_id)

    if user is None:
        user_info = "N/A"
    elif user.telegram_username:
        user_info = f"@{user.telegram_username}"
    else:
        user_info = user.telegram_first_name or f"ID: {user.telegram_id}"

    lines = [
        "❌ <b>Подписка истекла</b>",
        "",
        f"<b>Пользователь:</b> {user_info}",
        f"<b>Telegram ID:</b> {_code(user.telegram_id if user else None)}",
        f"<b>Тариф:</b> {tariff_name}",
        f"<b>Окончание:</b> {format_date(subscription.end_date)}",
        f"<b>Когда:</b> {format_datetime(now)}",
        "",
        "<b>Email (Notion), отозвать доступ вручную:</b> "
        + _code(user.email if user else None),
        f"<b>Email (Google Drive):</b> {_code(user.google_drive_email if user else None)}",
        f"<b>Discord ID:</b> {_code(user.discord_id if user else None)}",
    ]
    if kept_by is not None:
        lines += ["", f"Доступ сохранён: активна подписка #{kept_by.id}"]
    return "\n".join(lines)


async def expire_subscription(
    session: AsyncSession, bot: Bot, subscription: Subscription, now: datetime
) -> None:
    subscription.status = SubscriptionStatus.EXPIRED
    had_discord = subscription.discord_role_granted
    had_notion = subscription.notion_access_granted
    user = await get_user_by_id(session, subscription.user_id)

    kept_by = await release_access(session, subscription, user, now)
    notified = False
    if kept_by is None and user is not None:
        notified = await send_expired_notification(session, bot, subscription, user)

    await add_subscription_log(
        session,
        action="subscription_expired",
        details={
            "discordRevoked": had_discord and kept_by is None,
            "notionRevoked": had_notion and kept_by is None,
            "keptBySubscriptionId": kept_by.id if kept_by else None,
            "notified": notified,
        },
        user_id=subscription.user_id,
        subscription_id=subscription.id,
    )
    await notify_admins(
        bot, await _expired_admin_message(session, subscription, user, kept_by, now)
    )


async def expire_subscriptions(session: AsyncSession, bot: Bot, now: datetime) -> int:
    subscriptions = await subscription_repo.list_subscriptions_to_expire(session, now)
    logger.info("Found expired subscriptions", extra={"count": len(subscriptions)})
    subscription_ids = [subscription.id for subscription in subscriptions]
    expired = 0
    for subscription_id in subscription_ids:
        # A rollback expires loaded rows, so each one is fetched again.
        subscription = await session.get(Subscription, subscription_id)
        try:
            await expire_subscription(session, bot, subscription, now)
            await session.commit()
            expired += 1
        except Exception:
            logger.exception(
                "Failed to process expired subscription",
                extra={"subscription_id": subscription_id},
            )
            await session.rollback()
    return expired


async def update_subscription(
    session: AsyncSession,
    bot: Bot,
    subscription: Subscription,
    changes: dict,
    now: datetime,
) -> Subscription:
    """Apply an admin edit and react to the resulting status change.

    Access is granted when the subscription becomes active and released when
    an active or pending subscription is expired or cancelled. An active
    subscription that ends exactly N days from now gets the N-day warning if
    one is configured.
    """
    old_status = subscription.status
    for field in UPDATABLE_FIELDS:
        if field in changes:
            setattr(subscription, field, changes[field])
    new_status = subscription.status

    await add_subscription_log(
        session,
        action="subscription_updated",
        details={
            "changes": {
                key: value.isoformat() if isinstance(value, datetime) else value
                for key, value in changes.items()
            },
            "oldStatus": old_status,
            "newStatus": new_status,
        },
        user_id=subscription.user_id,
        subscription_id=subscription.id,
    )

    user = await get_user_by_id(session, subscription.user_id)
    if old_status != new_status:
        if new_status == SubscriptionStatus.ACTIVE and user is not None:
            await grant_access(subscription, user)
        elif new_status in (
            SubscriptionStatus.EXPIRED,
            SubscriptionStatus.CANCELLED,
        ) and old_status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING):
            await release_access(session, subscription, user, now)

    if new_status == SubscriptionStatus.ACTIVE and subscription.end_date is not None:
        remaining = days_left(subscription.end_date, now)
        await send_expiring_in_days_notification(
            session, bot, subscription, user, remaining, source="admin_edit"
        )
    return subscription


async def cancel_subscription(
    session: AsyncSession, subscription: Subscription, now: datetime
) -> None:
    old_status = subscription.status
    subscription.status = SubscriptionStatus.CANCELLED
    if old_status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING):
        user = await get_user_by_id(session, subscription.user_id)
        await release_access(session, subscription, user, now)
    await add_subscription_log(
        session,
        action="subscription_cancelled",
        details={"oldStatus": old_status},
        user_id=subscription.user_id,
        subscription_id=subscription.id,
    )


async def activate_subscription(
    session: AsyncSession, subscription: Subscription, user: User, now: datetime
) -> dict[str, bool]:
    # Renewals start where the user's current active subscription ends.
    current = await subscription_repo.get_other_active_subscription(
        session, user.id, subscription.id, now
    )
    start = now
    if current is not None and current.end_date is not None:
        start = max(now, ensure_utc(current.end_date))

    subscription.status = SubscriptionStatus.ACTIVE
    subscription.start_date = start
    subscription.end_date = add_months(start, subscription.period_months or 1)
    return await grant_access(subscription, user)
