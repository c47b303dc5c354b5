"""
Database table creation script for Identity Reconciliation API
Creates the contacts table and checks that it is reachable.
Run this script after setting up your database to initialize the schema.
"""

import asyncio
import logging
import sys

from sqlalchemy import func, select

from config import settings
from database import db_manager
from models import Contact

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def create_tables(manager=db_manager) -> bool:
    """
    Create all database tables defined in the models
    Returns False instead of raising so the script can report a clean exit code
    """
    logger.info("Starting database table creation...")

    try:
        if not await manager.test_connection():
            logger.error("Database connection failed - cannot create tables")
            return False

        await manager.create_tables()

        async with manager.get_session() as session:
            count = await session.scalar(select(func.count()).select_from(Contact))
            logger.info(f"Contacts table accessible - current count: {count}")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        return False
    finally:
        await manager.dispose()

    return True


def main():
    logger.info("Identity Reconciliation API - Database Setup")

    if asyncio.run(create_tables()):
        logger.info("Database setup completed successfully!")
        logger.info("You can now start the API server with: python main.py")
        return 0

    logger.error("Database setup failed! Please check your database configuration and try again")
    return 1


if __name__ == "__main__":
    sys.exit(main())
