import asyncio
import logging

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import InlineKeyboardMarkup

from afina.access_control import discord_api, google_drive_api, notion_api
from afina.db.models import Subscription, User
from config import settings

logger = logging.getLogger(__name__)


async def safe_send_message(
    bot: Bot,
    chat_id: int,
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
) -> bool:
    try:
        await bot.send_message(chat_id, text, reply_markup=reply_markup)
    except TelegramAPIError:
        logger.exception("Failed to send Telegram message", extra={"chat_id": chat_id})
        return False
    return True


async def notify_admins(bot: Bot, text: str, delay_seconds: float = 0.5) -> int:
    sent = 0
    for chat_id in settings.admin_chat_ids:
        if await safe_send_message(bot, chat_id, text):
            sent += 1
        await asyncio.sleep(delay_seconds)
    if not settings.admin_chat_ids:
        logger.warning("No admin chats configured, notification dropped")
    return sent


async def grant_access(subscription: Subscription, user: User) -> dict[str, bool]:
    if user.discord_id and not subscription.discord_role_granted:
        subscription.discord_role_granted = await discord_api.grant_role(user.discord_id)
    if user.email and not subscription.notion_access_granted:
        subscription.notion_access_granted = await notion_api.grant_access(user.email)
    if user.google_drive_email and not subscription.google_drive_access_granted:
        subscription.google_drive_access_granted = await google_drive_api.grant_access(
            user.google_drive_email
        )
    return {
        "discord": subscription.discord_role_granted,
        "notion": subscription.notion_access_granted,
        "google_drive": subscription.google_drive_access_granted,
    }


async def revoke_access(subscription: Subscription, user: User | None) -> dict[str, bool]:
    """Revoke external access and clear the flags.

    Flags are cleared whatever the remote outcome; the returned dict tells
    which revocations actually went through.
    """
    revoked = {"discord": False, "notion": False, "google_drive": False}
    if subscription.discord_role_granted:
        if user is not None and user.discord_id:
            revoked["discord"] = await discord_api.revoke_role(user.discord_id)
        subscription.discord_role_granted = False
    if subscription.notion_access_granted:
        if user is not None and user.email:
            revoked["notion"] = await notion_api.revoke_access(user.email)
        subscription.notion_access_granted = False
    if subscription.google_drive_access_granted:
        if user is not None and user.google_drive_email:
            revoked["google_drive"] = await google_drive_api.revoke_access(
                user.google_drive_email
            )
        subscription.google_drive_access_granted = False
    return revoked


def transfer_access(source: Subscription, target: Subscription) -> None:
    target.discord_role_granted = target.discord_role_granted or source.discord_role_granted
    target.notion_access_granted = (
        target.notion_access_granted or source.notion_access_granted
    )
    target.google_drive_access_granted = (
        target.google_drive_access_granted or source.google_drive_access_granted
    )
    source.discord_role_granted = False
    source.notion_access_granted = False
    source.google_drive_access_granted = False
