import asyncio
import logging

from ecahub.core.database import DatabaseManager, engine, Base
from ecahub.core.exceptions import DatabaseError, ConfigurationError

# Импорт моделей регистрирует таблицы в Base.metadata
from ecahub.staff import models as staff_models  # noqa: F401
from ecahub.parents import models as parent_models  # noqa: F401

logger = logging.getLogger(__name__)
db_manager = DatabaseManager()


async def init_database():
    """Initialize database tables"""
    try:
        logger.info("Starting database initialization...")

        await db_manager.check_connection()
        logger.info("Database connection verified")

        # Create all tables with retry mechanism
        await db_manager.create_tables()
        logger.info(
            "Database tables created/verified",
            extra={"tables": len(Base.metadata.tables)},
        )

        logger.info("Database initialization completed successfully")

    except DatabaseError:
        # Наши ошибки БД - просто перебрасываем
        raise
    except Exception as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def reset_database():
    """Reset database (for development/testing only)"""
    import os

    environment = os.getenv("ENVIRONMENT", "production").lower()
    if environment not in ["development", "dev", "test"]:
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    try:
        logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST!")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        logger.info("All tables dropped")

        await init_database()

        logger.info("Database reset completed")

    except Exception as e:
        logger.error(f"Database reset failed: {e}")
        raise DatabaseError(f"Database reset failed: {str(e)}")


if __name__ == "__main__":
    import sys

    async def main():
        if len(sys.argv) > 1:
            command = sys.argv[1]

            if command == "init":
                await init_database()
            elif command == "reset":
                await reset_database()
            else:
                print(f"Unknown command: {command}")
                print("Available commands: init, reset")
                sys.exit(1)
        else:
            await init_database()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
