import asyncio
import logging
from datetime import datetime

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from sqlalchemy import distinct, select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import Subscription, SubscriptionStatus, User


logger = logging.getLogger(__name__)

TARGET_ALL = "all"
TARGET_WITH_SUBSCRIPTION = "with_subscription"
TARGET_WITHOUT_SUBSCRIPTION = "without_subscription"

# Telegram allows about 30 messages per second.
SEND_DELAY_SECONDS = 0.035
MAX_REPORTED_ERRORS = 5


def _active_subscription_of_user(now: datetime):
    return (
        select(Subscription.id)
        .where(Subscription.user_id == User.id)
        .where(Subscription.status == SubscriptionStatus.ACTIVE)
        .where(Subscription.end_date > now)
        .exists()
    )


async def get_target_telegram_ids(
    session: AsyncSession, target: str, now: datetime
) -> list[int]:
    query = select(distinct(User.telegram_id)).where(User.telegram_id.is_not(None))
    if target == TARGET_WITH_SUBSCRIPTION:
        query = query.where(_active_subscription_of_user(now))
    elif target == TARGET_WITHOUT_SUBSCRIPTION:
        query = query.where(~_active_subscription_of_user(now))
    result = await session.execute(query.order_by(User.telegram_id))
    return [row[0] for row in result.all()]


async def _deliver(bot: Bot, chat_id: int, text: str, image_url: str | None) -> None:
    if image_url:
        await bot.send_photo(chat_id, photo=image_url, caption=text)
    else:
        await bot.send_message(chat_id, text)


async def send_broadcast(
    bot: Bot,
    telegram_ids: list[int],
    text: str,
    image_url: str | None = None,
    delay_seconds: float = SEND_DELAY_SECONDS,
) -> dict:
    sent = 0
    failed = 0
    errors: list[str] = []
    image_url = (image_url or "").strip() or None
    for chat_id in telegram_ids:
        try:
            await _deliver(bot, chat_id, text, image_url)
            sent += 1
        except TelegramAPIError as exc:
            # Errors of a single chat must not stop the broadcast.
            failed += 1
            if len(errors) < MAX_REPORTED_ERRORS:
                errors.append(f"User {chat_id}: {exc}")
        await asyncio.sleep(delay_seconds)

    logger.info(
        "Broadcast finished",
        extra={"sent": sent, "failed": failed, "total": len(telegram_ids)},
    )
    return {"sent": sent, "failed": failed, "total": len(telegram_ids), "errors": errors}
