from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup


def renew_subscription_kb() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text="🔄 Продлить подписку", callback_data="buy_subscription"
                )
            ]
        ]
    )


def prices_kb(options: list[tuple[int, str]]) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(text=label, callback_data=f"buy:{price_id}")]
        for price_id, label in options
    ]
    return InlineKeyboardMarkup(inline_keyboard=rows)


def invoice_kb(invoice_url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="💳 Оплатить", url=invoice_url)]]
    )
