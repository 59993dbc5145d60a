"""
Сервер доставки: GET/POST /delivery поверх БД заказов.
"""
import asyncio
import logging
import sys
import time
from logging.handlers import RotatingFileHandler

import uvicorn

from config import config
from database.core import Base, engine, session_maker
from services.delivery_api import create_app
from services.order_repository import OrderRepository

log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format=log_format,
    handlers=[
        logging.StreamHandler(sys.stdout),
        RotatingFileHandler(
            'delivery_api.log',
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5,
            encoding='utf-8'
        )
    ]
)

logger = logging.getLogger(__name__)

DB_WAIT_SECONDS = 60
DB_RETRY_MAX_DELAY = 10.0


async def wait_for_db(max_wait: float = DB_WAIT_SECONDS, max_delay: float = DB_RETRY_MAX_DELAY) -> None:
    """Ждём БД при старте (PostgreSQL может подниматься дольше сервера)."""
    from sqlalchemy.exc import SQLAlchemyError
    from sqlalchemy import text

    deadline = time.monotonic() + max_wait
    attempt = 0

    while True:
        attempt += 1
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("✅ Database connection successful")
            return
        except (SQLAlchemyError, OSError) as e:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error("❌ Database is not reachable (DB_HOST=%s DB_NAME=%s): %s", config.DB_HOST, config.DB_NAME, e)
                raise
            delay = min(max_delay, 1.0 * (2 ** min(attempt - 1, 6)))
            delay = min(delay, max(1.0, remaining))
            logger.warning(
                "DB not ready (attempt=%s). Retry in %.1fs (remaining=%.1fs). err=%s",
                attempt,
                delay,
                remaining,
                repr(e),
            )
            await asyncio.sleep(delay)


async def main():
    logger.info("Starting delivery API...")
    await wait_for_db()

    # В режиме SQLite поднимаем таблицы автоматически
    if config.DB_DIALECT in ("sqlite", "sqlite3"):
        import database.models  # noqa: F401 (регистрирует модели в Base.metadata)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLite mode: tables are ready")

    app = create_app(OrderRepository(session_maker), path=config.DELIVERY_API_PATH)
    # log_config=None: uvicorn пишет в наши handlers из basicConfig
    server = uvicorn.Server(
        uvicorn.Config(app, host=config.API_HOST, port=config.API_PORT, log_config=None)
    )
    logger.info("Delivery API listening on %s:%s", config.API_HOST, config.API_PORT)

    try:
        await server.serve()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Delivery API stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
