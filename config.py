import os
from dataclasses import dataclass


def _get_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _parse_int_list(name: str) -> list[int]:
    raw = _get_env(name, "")
    values = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            values.append(int(item))
        except ValueError as exc:
            raise RuntimeError(
                f"{name} must be a comma-separated list of integers"
            ) from exc
    return values


@dataclass(frozen=True)
class Settings:
    # Bot
    bot_token: str = _get_env("BOT_TOKEN")
    admin_tg_ids: list[int] = None  # populated in __post_init__
    # Chats that receive service notifications (expired subscriptions etc.)
    admin_chat_ids: list[int] = None  # populated in __post_init__

    # DB
    database_url: str = _get_env("DATABASE_URL")

    # Admin HTTP API
    admin_api_token: str = _get_env("ADMIN_API_TOKEN", "")

    # Discord
    discord_bot_token: str = _get_env("DISCORD_BOT_TOKEN", "")
    discord_guild_id: str = _get_env("DISCORD_GUILD_ID", "")
    discord_subscriber_role_id: str = _get_env("DISCORD_SUBSCRIBER_ROLE_ID", "")
    discord_invite_url: str = _get_env("DISCORD_INVITE_URL", "")

    # Notion
    notion_scim_token: str = _get_env("NOTION_SCIM_TOKEN", "")

    # Google Drive
    google_drive_folder_id: str = _get_env("GOOGLE_DRIVE_FOLDER_ID", "")
    google_service_account_json: str = _get_env("GOOGLE_SERVICE_ACCOUNT_JSON", "")

    # NOWPayments
    nowpayments_api_url: str = _get_env(
        "NOWPAYMENTS_API_URL", "https://api.nowpayments.io/v1"
    )
    nowpayments_api_key: str = _get_env("NOWPAYMENTS_API_KEY", "")
    nowpayments_ipn_secret: str = _get_env("NOWPAYMENTS_IPN_SECRET", "")
    public_base_url: str = _get_env("PUBLIC_BASE_URL", "http://localhost:8000")

    # Business rules
    default_grace_days: int = int(_get_env("DEFAULT_GRACE_DAYS", "5"))

    # Scheduler
    scheduler_timezone: str = _get_env("SCHEDULER_TZ", "UTC")
    scheduler_interval_minutes: int = int(_get_env("SCHEDULER_INTERVAL_MINUTES", "60"))

    # HTTP server
    webhook_host: str = _get_env("WEBHOOK_HOST", "127.0.0.1")
    webhook_port: int = int(_get_env("WEBHOOK_PORT", "8000"))

    log_level: str = _get_env("LOG_LEVEL", "INFO")

    def __post_init__(self):
        object.__setattr__(self, "admin_tg_ids", _parse_int_list("ADMIN_TG_IDS"))
        object.__setattr__(self, "admin_chat_ids", _parse_int_list("ADMIN_CHAT_IDS"))


settings = Settings()
