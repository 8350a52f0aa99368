import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import distinct, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from afina.db.models import Subscription, SubscriptionStatus, Tariff, TariffPrice
from afina.repositories import tariffs as tariff_repo
from config import settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActualTariffs:
    ids: list[int]
    days_to_pay: int


async def _resolve_actual_ids(session: AsyncSession, tariff_settings) -> list[int] | None:
    if tariff_settings.use_all_active_tariffs:
        return await tariff_repo.list_purchasable_tariff_ids(session)
    actual_id = tariff_settings.actual_tariff_id
    if actual_id is None:
        actual_id = await tariff_repo.get_default_tariff_id(session)
        if actual_id is None:
            return None
    return [actual_id]


async def get_actual_tariffs(session: AsyncSession) -> ActualTariffs | None:
    tariff_settings = await tariff_repo.get_tariff_settings(session)
    if tariff_settings is None:
        return None
    ids = await _resolve_actual_ids(session, tariff_settings)
    if ids is None:
        return None
    # Zero or unset grace reads as the default for user-facing messages.
    days_to_pay = max(
        0, tariff_settings.days_after_expiry_switch or settings.default_grace_days
    )
    return ActualTariffs(ids=ids, days_to_pay=days_to_pay)


def has_actual_tariff(user_tariff_ids: list[int], actual: ActualTariffs | None) -> bool:
    if actual is None:
        return False
    return set(user_tariff_ids) == set(actual.ids)


async def switch_expired_users_to_actual_tariff(
    session: AsyncSession, now: datetime
) -> int:
    """Give users whose subscription lapsed more than the grace period ago the
    actual tariff set instead of whatever they were entitled to before."""
    tariff_settings = await tariff_repo.get_tariff_settings(session)
    if tariff_settings is None:
        return 0
    days = tariff_settings.days_after_expiry_switch or 0
    tariff_ids = await _resolve_actual_ids(session, tariff_settings)
    if not tariff_ids:
        return 0

    other = aliased(Subscription)
    has_active = (
        select(other.id)
        .where(other.user_id == Subscription.user_id)
        .where(other.status == SubscriptionStatus.ACTIVE)
        .exists()
    )
    result = await session.execute(
        select(distinct(Subscription.user_id))
        .where(Subscription.status == SubscriptionStatus.EXPIRED)
        .where(Subscription.end_date <= now - timedelta(days=days))
        .where(~has_active)
    )
    user_ids = [row[0] for row in result.all()]

    switched = 0
    for user_id in user_ids:
        current = await tariff_repo.get_user_tariff_ids(session, user_id)
        if set(current) == set(tariff_ids):
            continue
        await tariff_repo.replace_user_tariffs(session, user_id, tariff_ids)
        switched += 1

    if switched:
        logger.info(
            "Switched users to actual tariffs",
            extra={"count": switched, "tariff_ids": tariff_ids, "days": days},
        )
    return switched


async def list_purchasable_prices(
    session: AsyncSession, user_id: int
) -> list[tuple[Tariff, TariffPrice]]:
    tariff_ids = await tariff_repo.get_user_tariff_ids(session, user_id)
    if not tariff_ids:
        actual = await get_actual_tariffs(session)
        if actual is not None:
            tariff_ids = actual.ids
        else:
            tariff_ids = await tariff_repo.list_purchasable_tariff_ids(session)
    return await tariff_repo.list_active_prices(session, tariff_ids)
