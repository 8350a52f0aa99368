import logging

import httpx

from config import settings


logger = logging.getLogger(__name__)

NOTION_SCIM_URL = "https://api.notion.com/scim/v2"


async def _find_user_id(client: httpx.AsyncClient, email: str) -> str | None:
    response = await client.get(
        "/Users", params={"filter": f'emails.value eq "{email}"', "count": 1}
    )
    if response.is_error:
        return None
    resources = response.json().get("Resources") or []
    if not resources:
        return None
    return resources[0].get("id")


async def grant_access(email: str) -> bool:
    # SCIM provisions workspace members only; guests are invited by hand.
    logger.warning(
        "Notion access must be granted manually", extra={"email": email}
    )
    return False


async def revoke_access(email: str) -> bool:
    token = settings.notion_scim_token.strip()
    normalized = email.strip().lower()
    if not token:
        logger.warning("NOTION_SCIM_TOKEN is not set, Notion access not revoked")
        return False
    if not normalized:
        return False

    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/scim+json",
    }
    try:
        async with httpx.AsyncClient(
            base_url=NOTION_SCIM_URL, headers=headers, timeout=30
        ) as client:
            user_id = await _find_user_id(client, normalized)
            if user_id is None:
                # Not in the workspace: nothing left to revoke.
                return True
            response = await client.delete(f"/Users/{user_id}")
            response.raise_for_status()
    except httpx.HTTPError:
        logger.exception("Failed to revoke Notion access", extra={"email": normalized})
        return False
    logger.info("Notion access revoked", extra={"email": normalized})
    return True
