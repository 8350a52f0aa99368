import asyncio
import json
import logging

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import settings


logger = logging.getLogger(__name__)

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]


def _config_ready() -> bool:
    return bool(
        settings.google_drive_folder_id.strip()
        and settings.google_service_account_json.strip()
    )


def _drive_service():
    info = json.loads(settings.google_service_account_json)
    credentials = service_account.Credentials.from_service_account_info(
        info, scopes=DRIVE_SCOPES
    )
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def _create_reader_permission(email: str) -> None:
    _drive_service().permissions().create(
        fileId=settings.google_drive_folder_id,
        body={"role": "reader", "type": "user", "emailAddress": email},
        sendNotificationEmail=False,
        supportsAllDrives=True,
    ).execute()


def _delete_permission(email: str) -> bool:
    """Delete the folder permission of ``email``; False if there was none."""
    permissions = _drive_service().permissions()
    page_token = None
    while True:
        response = permissions.list(
            fileId=settings.google_drive_folder_id,
            fields="nextPageToken, permissions(id,emailAddress,role)",
            pageToken=page_token,
            supportsAllDrives=True,
        ).execute()
        for permission in response.get("permissions", []):
            if (permission.get("emailAddress") or "").lower() == email:
                permissions.delete(
                    fileId=settings.google_drive_folder_id,
                    permissionId=permission["id"],
                    supportsAllDrives=True,
                ).execute()
                return True
        page_token = response.get("nextPageToken")
        if not page_token:
            return False


async def grant_access(email: str) -> bool:
    normalized = email.strip().lower()
    if not _config_ready():
        logger.warning("Google Drive configuration missing, access not granted")
        return False
    if not normalized:
        return False
    try:
        await asyncio.to_thread(_create_reader_permission, normalized)
    except HttpError as exc:
        if exc.resp.status == 409 or "already exists" in str(exc):
            logger.info("Google Drive access already exists", extra={"email": normalized})
            return True
        logger.exception("Failed to grant Google Drive access", extra={"email": normalized})
        return False
    except Exception:
        logger.exception("Failed to grant Google Drive access", extra={"email": normalized})
        return False
    logger.info("Google Drive access granted", extra={"email": normalized})
    return True


async def revoke_access(email: str) -> bool:
    normalized = email.strip().lower()
    if not _config_ready():
        logger.warning("Google Drive configuration missing, access not revoked")
        return False
    if not normalized:
        return False
    try:
        deleted = await asyncio.to_thread(_delete_permission, normalized)
    except Exception:
        logger.exception("Failed to revoke Google Drive access", extra={"email": normalized})
        return False
    if deleted:
        logger.info("Google Drive access revoked", extra={"email": normalized})
    else:
        logger.info("No Google Drive permission to revoke", extra={"email": normalized})
    return True
