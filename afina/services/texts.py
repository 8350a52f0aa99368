import json
import logging
import re
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from afina.repositories.bot_texts import get_text_by_key, list_notification_texts


logger = logging.getLogger(__name__)

DAYS_BEFORE_EXPIRY = "days_before_expiry"

DEFAULT_EXPIRING = (
    "⚠️ <b>Ваша подписка скоро истечёт!</b>\n\n"
    "📅 Дата окончания: {{endDate}}\n"
    "⏳ Осталось: {{daysLeft}} дн.\n\n"
    "Продлите подписку, чтобы не потерять доступ."
)

DEFAULT_TEXTS = {
    "welcome": (
        "👋 Добро пожаловать в <b>Afina DAO</b>!\n\n"
        "Здесь можно оформить и продлить подписку на приватное сообщество."
    ),
    "no_subscription": "У вас нет активной подписки.",
    "choose_tariff": "Выберите тариф и период:",
    "no_tariffs": "Сейчас нет доступных тарифов. Попробуйте позже.",
    "invoice_created": (
        "🧾 Счёт создан: <b>{{amount}} {{currency}}</b>\n\n"
        "Оплатите по ссылке ниже. Подписка активируется автоматически."
    ),
    "payment_error": "❌ Не удалось создать счёт. Попробуйте позже.",
}

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class ExpiryNotificationBlock:
    key: str
    value: str
    days: int

    @property
    def log_action(self) -> str:
        return f"{self.key}_sent"


def render_text(template: str, params: dict[str, str] | None = None) -> str:
    if not params:
        return template

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in params:
            return match.group(0)
        return params[name] or ""

    return _PLACEHOLDER.sub(_replace, template)


async def get_bot_text(
    session: AsyncSession, key: str, params: dict[str, str] | None = None
) -> str:
    text = await get_text_by_key(session, key)
    if text is None or text.value is None:
        return ""
    return render_text(text.value, params)


async def get_text(
    session: AsyncSession, key: str, params: dict[str, str] | None = None
) -> str:
    text = await get_bot_text(session, key, params)
    if text.strip():
        return text
    default = DEFAULT_TEXTS.get(key)
    if default:
        return render_text(default, params)
    return f"⚠️ Текст не найден: {key}"


def _parse_condition(raw) -> dict | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Malformed notification condition", extra={"raw": raw})
            return None
    return raw if isinstance(raw, dict) else None


def _condition_days(raw) -> int | None:
    condition = _parse_condition(raw)
    if not condition or condition.get("type") != DAYS_BEFORE_EXPIRY:
        return None
    days = condition.get("days")
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        return None
    return days


async def list_expiry_notification_blocks(
    session: AsyncSession,
) -> list[ExpiryNotificationBlock]:
    blocks = []
    for text in await list_notification_texts(session):
        days = _condition_days(text.notification_condition)
        if days is None:
            continue
        blocks.append(ExpiryNotificationBlock(key=text.key, value=text.value or "", days=days))
    return blocks


async def get_expiry_notification_block(
    session: AsyncSession, days: int
) -> ExpiryNotificationBlock | None:
    for block in await list_expiry_notification_blocks(session):
        if block.days == days and block.value:
            return block
    return None


async def render_expiry_text(
    session: AsyncSession, block: ExpiryNotificationBlock, end_date: str, days: int
) -> str:
    params = {"endDate": end_date, "daysLeft": str(days)}
    text = await get_bot_text(session, block.key, params)
    if text.strip():
        return text
    return render_text(block.value or DEFAULT_EXPIRING, params)
