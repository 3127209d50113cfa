"""
Create the inventory schema

Idempotent: create_all only creates tables that do not exist yet.

Usage (from backend/):
    python -m app.db_init
"""
import asyncio
import logging

from app.core.database import Base, engine
import app.models  # noqa: F401  registers tables on Base.metadata

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Schema ready: {', '.join(sorted(Base.metadata.tables))}")


async def main() -> None:
    try:
        await create_schema()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
