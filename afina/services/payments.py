import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

import httpx
from aiogram import Bot
from sqlalchemy.ext.asyncio import AsyncSession

from afina.access_control.service import safe_send_message
from afina.db.models import (
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    User,
)
from afina.payments.adapter import Invoice, PaymentAdapter
from afina.repositories import payments as payment_repo
from afina.repositories import subscriptions as subscription_repo
from afina.repositories.subscription_logs import add_subscription_log
from afina.repositories.users import get_user_by_id
from afina.services.subscriptions import activate_subscription, cancel_subscription
from afina.services.tariffs import list_purchasable_prices
from afina.utils.dates import format_date
from config import settings


logger = logging.getLogger(__name__)


class IpnStatus(str):
    WAITING = "waiting"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    SENDING = "sending"
    PARTIALLY_PAID = "partially_paid"
    FINISHED = "finished"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


PAYMENT_NOT_FOUND = "payment_not_found"
ALREADY_COMPLETED = "already_completed"


async def start_checkout(
    session: AsyncSession,
    adapter: PaymentAdapter,
    user: User,
    price_id: int,
) -> Invoice | None:
    # Важно: commit выполняется вызывающим кодом.
    options = await list_purchasable_prices(session, user.id)
    match = next(
        ((tariff, price) for tariff, price in options if price.id == price_id), None
    )
    if match is None:
        logger.warning(
            "Price is not available for user",
            extra={"user_id": user.id, "price_id": price_id},
        )
        return None
    tariff, price = match

    subscription = Subscription(
        user_id=user.id,
        tariff_id=tariff.id,
        tariff_price_id=price.id,
        period_months=price.period_months,
        amount=price.price,
        currency=price.currency,
        status=SubscriptionStatus.PENDING,
    )
    session.add(subscription)
    await session.flush()
    payment = Payment(
        user_id=user.id,
        subscription_id=subscription.id,
        status=PaymentStatus.PENDING,
        amount=price.price,
        currency=price.currency,
        provider_data={},
    )
    session.add(payment)
    await session.flush()

    try:
        invoice = await adapter.create_invoice(
            amount=price.price,
            currency=price.currency,
            order_id=f"sub_{subscription.id}_pay_{payment.id}",
            description=f"Afina DAO: {tariff.name}, {price.period_months} мес.",
        )
    except (httpx.HTTPError, KeyError, ValueError):
        # A malformed provider reply surfaces as KeyError or ValueError.
        logger.exception(
            "Failed to create invoice",
            extra={"user_id": user.id, "payment_id": payment.id},
        )
        payment.status = PaymentStatus.FAILED
        payment.error_message = "Invoice creation failed"
        subscription.status = SubscriptionStatus.CANCELLED
        return None

    payment.external_id = invoice.id
    payment.provider_data = {"invoice_id": invoice.id, "invoice_url": invoice.url}
    await add_subscription_log(
        session,
        action="checkout_started",
        details={"paymentId": payment.id, "invoiceId": invoice.id},
        user_id=user.id,
        subscription_id=subscription.id,
    )
    return invoice


def _external_ids(payload: dict) -> list[str]:
    ids = []
    for key in ("invoice_id", "payment_id"):
        value = payload.get(key)
        if value not in (None, ""):
            ids.append(str(value))
    return ids


def _merge_provider_data(payment: Payment, payload: dict, *keys: str) -> None:
    # JSON columns do not track in-place mutation.
    data = dict(payment.provider_data or {})
    for key in ("payment_id", "payment_status") + keys:
        if key in payload:
            data[key] = payload[key]
    payment.provider_data = data


def _format_currency(value) -> str:
    return str(value or "").upper()


def _success_message(subscription: Subscription, payload: dict, access: dict) -> str:
    lines = [
        "🎉 <b>Оплата прошла успешно!</b>",
        "",
        f"Ваша подписка активирована до <b>{format_date(subscription.end_date)}</b>.",
        "",
        f"Сумма: <b>{payload.get('actually_paid')} "
        f"{_format_currency(payload.get('pay_currency'))}</b>",
    ]
    if access.get("discord"):
        lines.append("✅ Роль в Discord выдана")
    if access.get("notion"):
        lines.append("✅ Доступ к Notion открыт")
    if access.get("google_drive"):
        lines.append("✅ Доступ к Google Drive открыт")
    if settings.discord_invite_url:
        lines += ["", f'🎮 <a href="{settings.discord_invite_url}">Перейти в Discord</a>']
    return "\n".join(lines)


async def _notify_user(bot: Bot, user: User | None, text: str) -> None:
    if user is not None and user.telegram_id:
        await safe_send_message(bot, user.telegram_id, text)


async def _complete_payment(
    session: AsyncSession,
    bot: Bot,
    payment: Payment,
    user: User | None,
    payload: dict,
    now: datetime,
) -> None:
    payment.status = PaymentStatus.COMPLETED
    payment.paid_at = now
    _merge_provider_data(payment, payload, "actually_paid", "pay_currency")

    subscription = await subscription_repo.get_subscription_by_id(
        session, payment.subscription_id
    )
    if subscription is None or user is None:
        logger.error(
            "Completed payment has no subscription or user",
            extra={"payment_id": payment.id},
        )
        return
    access = await activate_subscription(session, subscription, user, now)
    await add_subscription_log(
        session,
        action="payment_success",
        details={
            "payment_id": payload.get("payment_id"),
            "actually_paid": payload.get("actually_paid"),
            "pay_currency": payload.get("pay_currency"),
            "discord_granted": access["discord"],
            "notion_granted": access["notion"],
            "google_drive_granted": access["google_drive"],
            "end_date": subscription.end_date.isoformat(),
        },
        user_id=payment.user_id,
        subscription_id=subscription.id,
    )
    await _notify_user(bot, user, _success_message(subscription, payload, access))


async def _fail_payment(
    session: AsyncSession, bot: Bot, payment: Payment, user: User | None, payload: dict
) -> None:
    status = payload.get("payment_status")
    error_message = (
        "Время оплаты истекло" if status == IpnStatus.EXPIRED else "Платёж не был завершён"
    )
    payment.status = PaymentStatus.FAILED
    payment.error_message = error_message
    _merge_provider_data(payment, payload)
    await add_subscription_log(
        session,
        action="payment_failed",
        details={
            "payment_id": payload.get("payment_id"),
            "payment_status": status,
            "error_message": error_message,
        },
        user_id=payment.user_id,
        subscription_id=payment.subscription_id,
    )
    await _notify_user(
        bot,
        user,
        f"❌ <b>{error_message}</b>\n\n"
        "Вы можете попробовать оплатить снова через бота.\n\n"
        "Если возникли проблемы, обратитесь в поддержку.",
    )


async def _refund_payment(
    session: AsyncSession,
    bot: Bot,
    payment: Payment,
    user: User | None,
    payload: dict,
    now: datetime,
) -> None:
    payment.status = PaymentStatus.REFUNDED
    _merge_provider_data(payment, payload)
    subscription = await subscription_repo.get_subscription_by_id(
        session, payment.subscription_id
    )
    if subscription is not None and subscription.status != SubscriptionStatus.CANCELLED:
        await cancel_subscription(session, subscription, now)
    await add_subscription_log(
        session,
        action="payment_refunded",
        details={"payment_id": payload.get("payment_id")},
        user_id=payment.user_id,
        subscription_id=payment.subscription_id,
    )
    await _notify_user(
        bot,
        user,
        "💰 <b>Возврат средств</b>\n\nВаш платёж был возвращён. Подписка отменена.",
    )


def _remaining_amount(payload: dict) -> str:
    try:
        remaining = Decimal(str(payload.get("price_amount"))) - Decimal(
            str(payload.get("actually_paid"))
        )
    except InvalidOperation:
        return "?"
    return f"{remaining:.2f}"


async def _partial_payment(
    session: AsyncSession, bot: Bot, payment: Payment, user: User | None, payload: dict
) -> None:
    _merge_provider_data(payment, payload, "actually_paid")
    await add_subscription_log(
        session,
        action="payment_partial",
        details={
            "payment_id": payload.get("payment_id"),
            "actually_paid": payload.get("actually_paid"),
            "price_amount": payload.get("price_amount"),
        },
        user_id=payment.user_id,
        subscription_id=payment.subscription_id,
    )
    await _notify_user(
        bot,
        user,
        "⚠️ <b>Частичная оплата</b>\n\n"
        f"Получено: <b>{payload.get('actually_paid')} "
        f"{_format_currency(payload.get('pay_currency'))}</b>\n"
        f"Осталось: <b>{_remaining_amount(payload)} {payment.currency}</b>\n\n"
        "Пожалуйста, доплатите оставшуюся сумму на тот же адрес.",
    )


async def process_ipn(
    session: AsyncSession, bot: Bot, payload: dict, now: datetime
) -> str:
    """Apply a NOWPayments status update to the matching payment.

    Returns the provider status that was handled, or a marker when the payment
    is unknown or already completed. Commit is left to the caller.
    """
    payment = await payment_repo.get_payment_by_external_ids(
        session, _external_ids(payload)
    )
    if payment is None:
        logger.info(
            "IPN for unknown payment",
            extra={
                "invoice_id": payload.get("invoice_id"),
                "payment_id": payload.get("payment_id"),
            },
        )
        return PAYMENT_NOT_FOUND

    status = payload.get("payment_status")
    await add_subscription_log(
        session,
        action="nowpayments_ipn",
        details={
            "payment_id": payload.get("payment_id"),
            "payment_status": status,
            "actually_paid": payload.get("actually_paid"),
            "pay_currency": payload.get("pay_currency"),
            "price_amount": payload.get("price_amount"),
        },
        user_id=payment.user_id,
        subscription_id=payment.subscription_id,
    )
    if payment.status == PaymentStatus.COMPLETED:
        logger.info(
            "IPN ignored for completed payment",
            extra={"payment_id": payment.id, "payment_status": status},
        )
        return ALREADY_COMPLETED

    user = await get_user_by_id(session, payment.user_id)
    if status == IpnStatus.FINISHED:
        await _complete_payment(session, bot, payment, user, payload, now)
    elif status in (IpnStatus.FAILED, IpnStatus.EXPIRED):
        await _fail_payment(session, bot, payment, user, payload)
    elif status == IpnStatus.REFUNDED:
        await _refund_payment(session, bot, payment, user, payload, now)
    elif status == IpnStatus.PARTIALLY_PAID:
        await _partial_payment(session, bot, payment, user, payload)
    elif status in (
        IpnStatus.WAITING,
        IpnStatus.CONFIRMING,
        IpnStatus.CONFIRMED,
        IpnStatus.SENDING,
    ):
        _merge_provider_data(payment, payload)
        if status == IpnStatus.CONFIRMING:
            await _notify_user(
                bot,
                user,
                "⏳ <b>Платёж в обработке</b>\n\n"
                "Ваш платёж получен и находится на подтверждении в блокчейне. "
                "Это займёт несколько минут.",
            )
    else:
        _merge_provider_data(payment, payload)
        logger.warning(
            "Unknown payment status", extra={"payment_id": payment.id, "status": status}
        )
    return status


async def check_pending_payments(
    session: AsyncSession, bot: Bot, adapter: PaymentAdapter, now: datetime
) -> int:
    pending = await payment_repo.list_pending_payments(session)
    tracked = [
        (payment.id, dict(payment.provider_data or {}))
        for payment in pending
        if (payment.provider_data or {}).get("payment_id")
    ]
    updated = 0
    for payment_id, provider_data in tracked:
        remote_id = provider_data["payment_id"]
        try:
            remote = await adapter.get_payment_status(str(remote_id))
        except httpx.HTTPError:
            logger.exception(
                "Failed to fetch payment status", extra={"payment_id": payment_id}
            )
            continue
        if remote.get("payment_status") == provider_data.get("payment_status"):
            continue
        try:
            await process_ipn(session, bot, remote, now)
            await session.commit()
            updated += 1
        except Exception:
            logger.exception(
                "Failed to process payment status", extra={"payment_id": payment_id}
            )
            await session.rollback()
    return updated
