from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import SubscriptionLog


async def add_subscription_log(
    session: AsyncSession,
    action: str,
    details: dict,
    user_id: int | None = None,
    subscription_id: int | None = None,
) -> SubscriptionLog:
    entry = SubscriptionLog(
        action=action,
        details=details,
        user_id=user_id,
        subscription_id=subscription_id,
    )
    session.add(entry)
    return entry


async def list_subscription_logs(
    session: AsyncSession, subscription_id: int, limit: int = 50
) -> list[SubscriptionLog]:
    result = await session.execute(
        select(SubscriptionLog)
        .where(SubscriptionLog.subscription_id == subscription_id)
        .order_by(SubscriptionLog.created_at.desc(), SubscriptionLog.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
