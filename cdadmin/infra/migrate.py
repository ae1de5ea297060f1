#!/usr/bin/env python3
# cdadmin/infra/migrate.py
"""
Standalone migration runner.

Run migrations separately from application startup:
    python -m cdadmin.infra.migrate

Run it in CI/CD before deployment or as an init container; the HTTP
app never applies migrations itself.
"""
import asyncio
import sys

from cdadmin.infra.migrations_async import apply_migrations
from cdadmin.infra.db_async import init_pool, close_pool
from cdadmin.infra.logging_config import setup_logging, get_logger
from cdadmin.config import settings

logger = get_logger(__name__)


async def main() -> int:
    """Run migrations"""
    logger.info("=" * 60)
    logger.info("Database Migration Runner")
    logger.info(f"Environment: {settings.app_env}")
    logger.info("=" * 60)

    try:
        await init_pool()
        logger.info("Database connected")

        result = await apply_migrations()

        logger.info(f"Status: {'SUCCESS' if result['ok'] else 'FAILED'}")
        logger.info(f"Migrations applied: {result['count']}")
        for migration in result['applied']:
            logger.info(f"  applied {migration}")

        return 0 if result['ok'] else 1

    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1

    finally:
        await close_pool()


if __name__ == "__main__":
    setup_logging(level=settings.log_level, use_json=settings.is_production)
    sys.exit(asyncio.run(main()))
