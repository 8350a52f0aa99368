import pytest

from afina.repositories.bot_texts import NOTIFICATIONS_SECTION, upsert_text
from afina.services.texts import (
    get_bot_text,
    get_expiry_notification_block,
    get_text,
    list_expiry_notification_blocks,
    render_text,
)


def test_render_text_keeps_unknown_placeholders():
    assert render_text("{{a}} and {{b}}", {"a": "1"}) == "1 and {{b}}"
    assert render_text("plain", None) == "plain"


@pytest.mark.asyncio
async def test_bot_text_is_empty_when_missing(session):
    assert await get_bot_text(session, "missing") == ""


@pytest.mark.asyncio
async def test_get_text_prefers_database_value(session):
    assert "Afina DAO" in await get_text(session, "welcome")

    await upsert_text(session, "welcome", "Привет, {{name}}!")

    assert await get_text(session, "welcome", {"name": "Ann"}) == "Привет, Ann!"
    assert await get_text(session, "unknown_key") == "⚠️ Текст не найден: unknown_key"


@pytest.mark.asyncio
async def test_expiry_blocks_accept_json_string_conditions(session):
    await upsert_text(
        session,
        "expiring_1_day",
        "Завтра",
        section=NOTIFICATIONS_SECTION,
        notification_condition='{"type": "days_before_expiry", "days": 1}',
    )
    await upsert_text(
        session,
        "expiring_empty",
        "",
        section=NOTIFICATIONS_SECTION,
        notification_condition={"type": "days_before_expiry", "days": 2},
    )

    blocks = await list_expiry_notification_blocks(session)

    assert [(block.key, block.days) for block in blocks] == [
        ("expiring_1_day", 1),
        ("expiring_empty", 2),
    ]
    assert blocks[0].log_action == "expiring_1_day_sent"
    assert (await get_expiry_notification_block(session, 1)).value == "Завтра"
    assert await get_expiry_notification_block(session, 2) is None
