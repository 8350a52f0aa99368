import logging
from typing import Awaitable, Callable

from aiogram import Bot
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from afina.payments.adapter import PaymentAdapter
from afina.services.notifications import check_expiring_subscriptions
from afina.services.payments import check_pending_payments
from afina.services.subscriptions import expire_subscriptions
from afina.services.tariffs import switch_expired_users_to_actual_tariff
from afina.utils.dates import utcnow


logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


async def _run_task(
    name: str,
    session_factory: SessionFactory,
    task: Callable[[AsyncSession], Awaitable[int]],
) -> int | None:
    async with session_factory() as session:
        try:
            result = await task(session)
            await session.commit()
        except Exception:
            logger.exception("Scheduled task failed", extra={"task": name})
            await session.rollback()
            return None
    return result


async def run_scheduled_tasks(bot: Bot, session_factory: SessionFactory) -> dict:
    """Expire due subscriptions, send expiry warnings, then switch tariffs.

    Each task runs in its own session; a failing task does not stop the next.
    """
    now = utcnow()
    logger.info("Running scheduled tasks", extra={"now": now.isoformat()})
    results = {
        "expired": await _run_task(
            "expire_subscriptions",
            session_factory,
            lambda s: expire_subscriptions(s, bot, now),
        ),
        "notified": await _run_task(
            "check_expiring_subscriptions",
            session_factory,
            lambda s: check_expiring_subscriptions(s, bot, now),
        ),
        "switched": await _run_task(
            "switch_expired_users_to_actual_tariff",
            session_factory,
            lambda s: switch_expired_users_to_actual_tariff(s, now),
        ),
    }
    logger.info("Scheduled tasks finished", extra=results)
    return results


async def poll_pending_payments(
    bot: Bot, session_factory: SessionFactory, adapter: PaymentAdapter
) -> int | None:
    return await _run_task(
        "check_pending_payments",
        session_factory,
        lambda s: check_pending_payments(s, bot, adapter, utcnow()),
    )
