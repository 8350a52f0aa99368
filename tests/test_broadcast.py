from datetime import timedelta

import pytest

from afina.db.models import SubscriptionStatus
from afina.services.broadcast import get_target_telegram_ids, send_broadcast


@pytest.fixture
def audience(now, make_user, make_subscription):
    async def _build():
        subscriber = await make_user(telegram_id=501)
        await make_subscription(subscriber, end_date=now + timedelta(days=10))
        lapsed = await make_user(telegram_id=502)
        await make_subscription(lapsed, end_date=now - timedelta(days=3))
        expired = await make_user(telegram_id=503)
        await make_subscription(
            expired, end_date=now + timedelta(days=3), status=SubscriptionStatus.EXPIRED
        )
        await make_user(telegram_id=504)

    return _build


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "target, expected",
    [
        ("all", [501, 502, 503, 504]),
        ("with_subscription", [501]),
        ("without_subscription", [502, 503, 504]),
    ],
)
async def test_broadcast_targets(session, now, audience, target, expected):
    await audience()

    assert await get_target_telegram_ids(session, target, now) == expected


@pytest.mark.asyncio
async def test_broadcast_counts_failures_and_keeps_going(bot):
    bot.fail_for.add(602)

    report = await send_broadcast(bot, [601, 602, 603], "<b>Новости</b>")

    assert report["sent"] == 2
    assert report["failed"] == 1
    assert report["total"] == 3
    assert len(report["errors"]) == 1
    assert report["errors"][0].startswith("User 602:")
    assert bot.messages_to(603) == ["<b>Новости</b>"]


@pytest.mark.asyncio
async def test_broadcast_with_image_sends_photo(bot):
    report = await send_broadcast(
        bot, [701], "Анонс", image_url=" https://example.com/poster.png "
    )

    assert report["sent"] == 1
    assert bot.sent[0]["photo"] == "https://example.com/poster.png"
    assert bot.sent[0]["text"] == "Анонс"
