import logging

import httpx

from config import settings


logger = logging.getLogger(__name__)

DISCORD_API_URL = "https://discord.com/api/v10"


def _role_config_ready() -> bool:
    return bool(
        settings.discord_bot_token
        and settings.discord_guild_id
        and settings.discord_subscriber_role_id
    )


async def _request(method: str, path: str, payload: dict | None = None) -> httpx.Response:
    headers = {"Authorization": f"Bot {settings.discord_bot_token}"}
    async with httpx.AsyncClient(base_url=DISCORD_API_URL, timeout=30) as client:
        response = await client.request(method, path, headers=headers, json=payload)
        response.raise_for_status()
        return response


def _role_path(discord_id: str) -> str:
    return (
        f"/guilds/{settings.discord_guild_id}/members/{discord_id}"
        f"/roles/{settings.discord_subscriber_role_id}"
    )


async def grant_role(discord_id: str) -> bool:
    if not _role_config_ready():
        logger.warning("Discord configuration missing, role not granted")
        return False
    try:
        await _request("PUT", _role_path(discord_id))
    except httpx.HTTPError:
        logger.exception("Failed to grant Discord role", extra={"discord_id": discord_id})
        return False
    logger.info("Discord role granted", extra={"discord_id": discord_id})
    return True


async def revoke_role(discord_id: str) -> bool:
    if not _role_config_ready():
        logger.warning("Discord configuration missing, role not revoked")
        return False
    try:
        await _request("DELETE", _role_path(discord_id))
    except httpx.HTTPError:
        logger.exception("Failed to revoke Discord role", extra={"discord_id": discord_id})
        return False
    logger.info("Discord role revoked", extra={"discord_id": discord_id})
    return True


async def send_dm(discord_id: str, text: str) -> bool:
    if not settings.discord_bot_token:
        return False
    try:
        channel = await _request(
            "POST", "/users/@me/channels", {"recipient_id": discord_id}
        )
        channel_id = channel.json()["id"]
        await _request("POST", f"/channels/{channel_id}/messages", {"content": text})
    except (httpx.HTTPError, KeyError, ValueError):
        # Users can disable DMs from server members.
        logger.warning("Failed to send Discord DM", extra={"discord_id": discord_id})
        return False
    return True
