import asyncio
import logging

from database.core import engine, Base
# Importing models ensures they are registered with Base.metadata
from database.models import User, Restaurant, RestaurantStaff, MenuItem, Order, OrderItem, OrderStatusHistory  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

async def init_db():
    async with engine.begin() as conn:
        # In production use Alembic (alembic/versions); this script is for local setup.
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_db())
