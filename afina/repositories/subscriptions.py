from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import Subscription, SubscriptionLog, SubscriptionStatus


async def get_subscription_by_id(
    session: AsyncSession, subscription_id: int
) -> Subscription | None:
    result = await session.execute(
        select(Subscription).where(Subscription.id == subscription_id)
    )
    return result.scalar_one_or_none()


async def get_user_subscription(
    session: AsyncSession, user_id: int, subscription_id: int
) -> Subscription | None:
    result = await session.execute(
        select(Subscription).where(
            Subscription.id == subscription_id, Subscription.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def get_active_subscription(
    session: AsyncSession, user_id: int, now: datetime
) -> Subscription | None:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(Subscription.status == SubscriptionStatus.ACTIVE)
        .where(Subscription.end_date > now)
        .order_by(Subscription.end_date.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_other_active_subscription(
    session: AsyncSession, user_id: int, exclude_subscription_id: int, now: datetime
) -> Subscription | None:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(Subscription.id != exclude_subscription_id)
        .where(Subscription.status == SubscriptionStatus.ACTIVE)
        .where(Subscription.end_date > now)
        .order_by(Subscription.end_date.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_subscriptions_to_expire(
    session: AsyncSession, now: datetime
) -> list[Subscription]:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.status == SubscriptionStatus.ACTIVE)
        .where(Subscription.end_date <= now)
        .order_by(Subscription.end_date.asc())
    )
    return list(result.scalars().all())


async def list_subscriptions_ending_between(
    session: AsyncSession,
    window_start: datetime,
    window_end: datetime,
    exclude_logged_action: str,
) -> list[Subscription]:
    already_sent = (
        select(SubscriptionLog.id)
        .where(SubscriptionLog.subscription_id == Subscription.id)
        .where(SubscriptionLog.action == exclude_logged_action)
        .exists()
    )
    result = await session.execute(
        select(Subscription)
        .where(Subscription.status == SubscriptionStatus.ACTIVE)
        .where(Subscription.end_date > window_start)
        .where(Subscription.end_date <= window_end)
        .where(~already_sent)
        .order_by(Subscription.end_date.asc())
    )
    return list(result.scalars().all())
