"""
Application startup validation and initialization.

This module performs startup checks so that a misconfigured deployment is
reported in the logs before the first request is served.
"""

import logging
import sys
from typing import List, Tuple

import sqlalchemy as sa
from sqlalchemy import text

from core.config import DEFAULT_DELETE_SECRET, settings
from core.database import engine

logger = logging.getLogger(__name__)


REQUIRED_TABLES = [
    "restaurant_tables",
    "table_carts",
    "table_session_history",
    "orders",
    "order_items",
    "payments",
    "daybook_transactions",
    "restaurant_settings",
    "menu_items",
]


class StartupValidator:
    """Validates application startup requirements"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def check_database_connection(self) -> bool:
        """Check database connectivity"""
        try:
            with engine.connect() as conn:
                result = conn.execute(text("SELECT 1"))
                result.fetchone()
            logger.info("Database connection successful")
            return True
        except Exception as e:
            self.errors.append(f"Database connection failed: {str(e)}")
            return False

    def check_redis_connection(self) -> bool:
        """Check Redis connectivity (if configured)"""
        if not settings.redis_enabled:
            self.warnings.append(
                "Redis not configured - events only reach clients of this process"
            )
            return True

        try:
            import redis
            r = redis.from_url(settings.redis_url)
            r.ping()
            logger.info("Redis connection successful")
            return True
        except Exception as e:
            if settings.is_production:
                self.errors.append(f"Redis connection failed in production: {str(e)}")
                return False
            self.warnings.append(f"Redis connection failed: {str(e)} - local fan-out only")
            return True

    def check_environment_config(self) -> bool:
        """Validate environment configuration"""
        if settings.order_delete_secret == DEFAULT_DELETE_SECRET:
            self.warnings.append(
                "Using default ORDER_DELETE_SECRET - change before deploying"
            )
        if settings.database_url.startswith("sqlite") and settings.is_production:
            self.warnings.append("SQLite database configured in production")
        return True

    def check_required_tables(self) -> bool:
        """Check if required database tables exist"""
        try:
            inspector = sa.inspect(engine)
            existing_tables = inspector.get_table_names()
            missing_tables = [t for t in REQUIRED_TABLES if t not in existing_tables]

            if missing_tables:
                self.warnings.append(
                    f"Missing database tables: {', '.join(missing_tables)}. "
                    "Run migrations with: alembic upgrade head"
                )
            return True
        except Exception as e:
            self.warnings.append(f"Could not check database tables: {str(e)}")
            return True

    def validate_all(self) -> Tuple[bool, List[str], List[str]]:
        """Run all validation checks"""
        checks = [
            ("Environment Configuration", self.check_environment_config),
            ("Database Connection", self.check_database_connection),
            ("Redis Connection", self.check_redis_connection),
            ("Database Tables", self.check_required_tables),
        ]

        all_passed = True

        for check_name, check_func in checks:
            logger.info(f"Running check: {check_name}")
            try:
                if not check_func():
                    all_passed = False
            except Exception as e:
                self.errors.append(f"{check_name} check failed with error: {str(e)}")
                all_passed = False

        return all_passed, self.errors, self.warnings


def run_startup_checks():
    """Run all startup validation checks"""
    logger.info("=" * 60)
    logger.info("Starting restaurant coordination backend")
    logger.info(f"Environment: {settings.environment}")
    logger.info("=" * 60)

    validator = StartupValidator()
    passed, errors, warnings = validator.validate_all()

    if warnings:
        logger.warning("Startup Warnings:")
        for warning in warnings:
            logger.warning(f"  {warning}")

    if errors:
        logger.error("Startup Errors:")
        for error in errors:
            logger.error(f"  {error}")

    if not passed and settings.is_production:
        logger.error("Cannot start in production with errors!")
        sys.exit(1)
    elif not passed:
        logger.warning(f"Starting in {settings.environment} mode despite errors")
    else:
        logger.info("All startup checks passed")

    return passed, warnings


def configure_startup_logging():
    """Configure logging for startup"""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
