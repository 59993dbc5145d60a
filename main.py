import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from aiogram import Bot, Dispatcher
from aiogram.types import ErrorEvent
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError, TelegramServerError, TelegramRetryAfter
from config import config
from middlewares.logging_middleware import LoggingMiddleware

# Configure logging with rotating file handler
log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format=log_format,
    handlers=[
        logging.StreamHandler(sys.stdout),
        RotatingFileHandler(
            'courier_bot.log',
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5,
            encoding='utf-8'
        )
    ]
)

logger = logging.getLogger(__name__)

POLL_RESTART_SECONDS = 5.0


def setup_asyncio_exception_logging() -> None:
    """
    Ловит исключения из фоновых задач asyncio (отправка позиции, старт сессии),
    которые не проходят через aiogram handlers/errors.
    """
    loop = asyncio.get_running_loop()

    def _handler(loop: asyncio.AbstractEventLoop, context: dict):
        msg = context.get("message", "asyncio exception")
        exc = context.get("exception")
        logger.error("ASYNCIO %s", msg, exc_info=exc)

    loop.set_exception_handler(_handler)


async def create_storage():
    """Redis для FSM, если доступен, иначе MemoryStorage."""
    import redis.asyncio as redis
    redis_client = redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD,
        decode_responses=False
    )
    try:
        await redis_client.ping()
    except (redis.RedisError, OSError) as e:
        logger.warning(f"Redis not available, using MemoryStorage: {e}")
        await redis_client.aclose()
        from aiogram.fsm.storage.memory import MemoryStorage
        return MemoryStorage(), None
    from aiogram.fsm.storage.redis import RedisStorage
    logger.info("Using Redis storage for FSM")
    return RedisStorage(redis=redis_client), redis_client


async def main():
    logger.info("Starting courier bot...")
    setup_asyncio_exception_logging()
    logger.info("Delivery API: %s%s", config.DELIVERY_API_URL, config.DELIVERY_API_PATH)

    if not config.BOT_TOKEN:
        logger.error("❌ BOT_TOKEN пустой. Добавьте BOT_TOKEN в .env и перезапустите.")
        raise RuntimeError("BOT_TOKEN is not set")

    bot = Bot(token=config.BOT_TOKEN)
    storage, redis_client = await create_storage()
    dp = Dispatcher(storage=storage)

    # Логирование всех входящих событий + исключений с контекстом
    dp.message.middleware(LoggingMiddleware(log_success=True))
    dp.edited_message.middleware(LoggingMiddleware(log_success=False))
    dp.callback_query.middleware(LoggingMiddleware(log_success=True))

    @dp.errors()
    async def global_error_handler(event: ErrorEvent):
        exc = event.exception
        trace = f"update_id={getattr(event.update, 'update_id', None)}"
        logger.error(
            "UNHANDLED %s err=%s",
            trace,
            repr(exc),
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        # Мягко сообщаем курьеру, не раскрывая деталей
        try:
            if event.update and event.update.message:
                await event.update.message.answer("⚠️ Произошла внутренняя ошибка. Мы уже записали её в лог.")
            elif event.update and event.update.callback_query:
                await event.update.callback_query.answer("⚠️ Ошибка. Попробуйте ещё раз.", show_alert=True)
        except (TelegramBadRequest, TelegramNetworkError) as e:
            logger.debug("Could not notify user about error: %s", e)

    from handlers import start, courier, fallback
    from services.courier_sessions import registry

    # fallback последним: ловит необработанные обновления
    dp.include_router(start.router)
    dp.include_router(courier.router)
    dp.include_router(fallback.router)

    try:
        logger.info("Bot started successfully")
        # Автоперезапуск polling при временных сетевых сбоях
        while True:
            try:
                await dp.start_polling(
                    bot,
                    allowed_updates=["message", "edited_message", "callback_query"],
                    drop_pending_updates=True
                )
                break  # нормальная остановка polling
            except TelegramRetryAfter as e:
                wait_s = float(getattr(e, "retry_after", POLL_RESTART_SECONDS))
                logger.warning("TelegramRetryAfter: wait %.1fs then continue", wait_s, exc_info=True)
                await asyncio.sleep(wait_s)
            except (TelegramNetworkError, TelegramServerError, asyncio.TimeoutError, OSError):
                logger.error("Polling crashed (network/server). Restart in %.1fs", POLL_RESTART_SECONDS, exc_info=True)
                await asyncio.sleep(POLL_RESTART_SECONDS)
    finally:
        # Отписываемся от геолокации во всех незавершённых доставках
        registry.close_all()
        await bot.session.close()
        if redis_client is not None:
            await redis_client.aclose()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
