from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import (
    SETTINGS_ROW_ID,
    SubscriptionTariffSettings,
    Tariff,
    TariffPrice,
    UserAvailableTariff,
)


def _purchasable_tariffs_query():
    return (
        select(Tariff.id)
        .where(Tariff.is_active.is_(True))
        .where(Tariff.is_archived.is_(False))
        .where(Tariff.is_custom.is_(False))
        .order_by(Tariff.sort_order.asc(), Tariff.created_at.desc(), Tariff.id.desc())
    )


async def get_tariff_settings(
    session: AsyncSession,
) -> SubscriptionTariffSettings | None:
    result = await session.execute(
        select(SubscriptionTariffSettings).where(
            SubscriptionTariffSettings.id == SETTINGS_ROW_ID
        )
    )
    return result.scalar_one_or_none()


async def list_purchasable_tariff_ids(session: AsyncSession) -> list[int]:
    result = await session.execute(_purchasable_tariffs_query())
    return [row[0] for row in result.all()]


async def get_default_tariff_id(session: AsyncSession) -> int | None:
    result = await session.execute(_purchasable_tariffs_query().limit(1))
    row = result.first()
    return row[0] if row else None


async def get_tariff_by_id(session: AsyncSession, tariff_id: int) -> Tariff | None:
    result = await session.execute(select(Tariff).where(Tariff.id == tariff_id))
    return result.scalar_one_or_none()


async def get_price_by_id(session: AsyncSession, price_id: int) -> TariffPrice | None:
    result = await session.execute(select(TariffPrice).where(TariffPrice.id == price_id))
    return result.scalar_one_or_none()


async def list_active_prices(
    session: AsyncSession, tariff_ids: list[int]
) -> list[tuple[Tariff, TariffPrice]]:
    if not tariff_ids:
        return []
    result = await session.execute(
        select(Tariff, TariffPrice)
        .join(TariffPrice, TariffPrice.tariff_id == Tariff.id)
        .where(Tariff.id.in_(tariff_ids))
        .where(Tariff.is_active.is_(True))
        .where(Tariff.is_archived.is_(False))
        .where(TariffPrice.is_active.is_(True))
        .order_by(Tariff.sort_order.asc(), TariffPrice.period_months.asc())
    )
    return [(tariff, price) for tariff, price in result.all()]


async def get_user_tariff_ids(session: AsyncSession, user_id: int) -> list[int]:
    result = await session.execute(
        select(UserAvailableTariff.tariff_id).where(
            UserAvailableTariff.user_id == user_id
        )
    )
    return [row[0] for row in result.all() if row[0] is not None]


async def replace_user_tariffs(
    session: AsyncSession, user_id: int, tariff_ids: list[int]
) -> None:
    await session.execute(
        delete(UserAvailableTariff).where(UserAvailableTariff.user_id == user_id)
    )
    for tariff_id in dict.fromkeys(tariff_ids):
        session.add(UserAvailableTariff(user_id=user_id, tariff_id=tariff_id))
