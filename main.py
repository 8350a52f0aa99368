import asyncio
import logging

from dotenv import load_dotenv

load_dotenv()

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
import uvicorn

from afina.handlers.start import router as start_router
from afina.handlers.subscription import router as subscription_router
from afina.payments.nowpayments_adapter import NowPaymentsAdapter
from afina.scheduler.setup import setup_scheduler
from afina.utils.db_middleware import DbSessionMiddleware
from afina.webhooks.app import create_app
from config import settings


async def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    payment_adapter = NowPaymentsAdapter()
    dp = Dispatcher(payment_adapter=payment_adapter)
    dp.message.middleware(DbSessionMiddleware())
    dp.callback_query.middleware(DbSessionMiddleware())

    dp.include_router(start_router)
    dp.include_router(subscription_router)

    scheduler = setup_scheduler(bot, payment_adapter=payment_adapter)
    scheduler.start()

    app = create_app(bot, scheduler=scheduler)
    server_config = uvicorn.Config(
        app,
        host=settings.webhook_host,
        port=settings.webhook_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(server_config)

    await asyncio.gather(dp.start_polling(bot), server.serve())


if __name__ == "__main__":
    asyncio.run(main())
