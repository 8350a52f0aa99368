import logging

from aiogram import F, Router, types
from aiogram.filters import Command
from sqlalchemy.ext.asyncio import AsyncSession

from afina.payments.adapter import PaymentAdapter
from afina.repositories import subscriptions as subscription_repo
from afina.repositories import tariffs as tariff_repo
from afina.repositories.users import get_or_create_user
from afina.services.payments import start_checkout
from afina.services.tariffs import list_purchasable_prices
from afina.services.texts import get_text
from afina.ui.keyboards import invoice_kb, prices_kb, renew_subscription_kb
from afina.utils.dates import days_left, format_date, utcnow
from config import settings


logger = logging.getLogger(__name__)

router = Router()


async def _get_user(session: AsyncSession, from_user: types.User):
    user = await get_or_create_user(
        session=session,
        telegram_id=from_user.id,
        username=from_user.username,
        first_name=from_user.first_name,
        last_name=from_user.last_name,
        is_admin=from_user.id in settings.admin_tg_ids,
    )
    await session.commit()
    return user


def _price_label(tariff, price) -> str:
    return f"{tariff.name} · {price.period_months} мес. · {price.price} {price.currency}"


@router.message(Command("status"))
async def status_handler(message: types.Message, session: AsyncSession) -> None:
    now = utcnow()
    user = await _get_user(session, message.from_user)
    subscription = await subscription_repo.get_active_subscription(session, user.id, now)
    if subscription is None:
        text = await get_text(session, "no_subscription")
        await message.answer(text, reply_markup=renew_subscription_kb())
        return

    await message.answer(
        "✅ <b>Подписка активна</b>\n\n"
        f"📅 Дата окончания: {format_date(subscription.end_date)}\n"
        f"⏳ Осталось: {days_left(subscription.end_date, now)} дн."
    )


@router.callback_query(F.data == "buy_subscription")
async def buy_subscription_handler(
    callback: types.CallbackQuery, session: AsyncSession
) -> None:
    user = await _get_user(session, callback.from_user)
    options = await list_purchasable_prices(session, user.id)
    if not options:
        await callback.message.answer(await get_text(session, "no_tariffs"))
        await callback.answer()
        return

    keyboard = prices_kb(
        [(price.id, _price_label(tariff, price)) for tariff, price in options]
    )
    await callback.message.answer(
        await get_text(session, "choose_tariff"), reply_markup=keyboard
    )
    await callback.answer()


@router.callback_query(F.data.startswith("buy:"))
async def buy_price_handler(
    callback: types.CallbackQuery,
    session: AsyncSession,
    payment_adapter: PaymentAdapter,
) -> None:
    try:
        price_id = int(callback.data.split(":", 1)[1])
    except ValueError:
        await callback.answer("Некорректный тариф", show_alert=True)
        return

    user = await _get_user(session, callback.from_user)
    invoice = await start_checkout(session, payment_adapter, user, price_id)
    await session.commit()
    if invoice is None:
        await callback.message.answer(await get_text(session, "payment_error"))
        await callback.answer()
        return

    price = await tariff_repo.get_price_by_id(session, price_id)
    text = await get_text(
        session,
        "invoice_created",
        {"amount": str(price.price), "currency": price.currency},
    )
    logger.info("Invoice sent", extra={"user_id": user.id, "price_id": price_id})
    await callback.message.answer(text, reply_markup=invoice_kb(invoice.url))
    await callback.answer()
