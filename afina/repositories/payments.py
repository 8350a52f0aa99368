from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import Payment, PaymentStatus


async def get_payment_by_external_ids(
    session: AsyncSession, external_ids: list[str]
) -> Payment | None:
    if not external_ids:
        return None
    result = await session.execute(
        select(Payment)
        .where(Payment.external_id.in_(external_ids))
        .order_by(Payment.id.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_pending_payments(session: AsyncSession) -> list[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.status == PaymentStatus.PENDING)
        .where(Payment.external_id.is_not(None))
        .order_by(Payment.created_at.asc())
    )
    return list(result.scalars().all())


async def list_subscription_payments(
    session: AsyncSession, subscription_id: int
) -> list[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.subscription_id == subscription_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return list(result.scalars().all())
