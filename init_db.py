import asyncio
import logging

from database.core import engine, Base
from database.models import User, School, Order, OrderDetail, CustomOrder, CustomOrderItem  # noqa: F401
# Importing models ensures they are registered with Base.metadata

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

async def init_db():
    async with engine.begin() as conn:
        # In production, use Alembic migrations (alembic upgrade head).
        logger.info("Creating delivery tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_db())
