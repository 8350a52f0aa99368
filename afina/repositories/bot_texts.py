from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import BotText

NOTIFICATIONS_SECTION = "notifications"


async def get_text_by_key(session: AsyncSession, key: str) -> BotText | None:
    result = await session.execute(select(BotText).where(BotText.key == key))
    return result.scalar_one_or_none()


async def list_notification_texts(session: AsyncSession) -> list[BotText]:
    result = await session.execute(
        select(BotText)
        .where(BotText.section == NOTIFICATIONS_SECTION)
        .where(BotText.notification_condition.is_not(None))
        .order_by(BotText.sort_order.asc(), BotText.id.asc())
    )
    return list(result.scalars().all())


async def upsert_text(
    session: AsyncSession,
    key: str,
    value: str,
    section: str = "common",
    notification_condition: dict | None = None,
) -> BotText:
    text = await get_text_by_key(session, key)
    if text:
        text.value = value
        text.section = section
        text.notification_condition = notification_condition
        return text
    text = BotText(
        key=key,
        value=value,
        section=section,
        notification_condition=notification_condition,
    )
    session.add(text)
    return text
