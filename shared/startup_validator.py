"""
Startup configuration validation module.

Catches misconfigurations when the API or the worker starts rather than when
the first appointment is booked.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)

Channel problems (missing Resend/ClickSend credentials) never block startup:
each channel is checked on its own and a broken one is reported as critical
while the other keeps working.
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import text

from notifications.providers.factory import (
    ChannelConfigurationError,
    build_email_sender,
    build_sms_sender,
)
from shared.config import get_settings

logger = logging.getLogger(__name__)


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(check_database: bool = True) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Args:
        check_database: Also open a database connection (TIER 1)

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Display timezone must exist, every SMS date depends on it
    try:
        ZoneInfo(settings.TIMEZONE)
        results["timezone"] = True
        logger.info(f"  [OK] Timezone: {settings.TIMEZONE}")
    except (ZoneInfoNotFoundError, ValueError):
        critical_failures.append(f"TIMEZONE '{settings.TIMEZONE}' is not a valid IANA timezone")
        results["timezone"] = False

    # 2. Database reachable
    if check_database:
        results["database_connection"] = await validate_database_connection()
        if not results["database_connection"]:
            critical_failures.append("Database connection failed - check DATABASE_URL")

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 3. Channels, independently
    for channel, builder in (("email", build_email_sender), ("sms", build_sms_sender)):
        try:
            builder(settings)
            results[f"{channel}_channel"] = True
            logger.info(f"  [OK] {channel} channel configured")
        except ChannelConfigurationError as e:
            logger.critical(f"  [FAIL] {e} - {channel} notifications will fail until fixed")
            results[f"{channel}_channel"] = False

    if settings.sms_dry_run:
        logger.warning("  [WARN] SMS_DRY_RUN is enabled - SMS are logged, not sent")
    if settings.email_dry_run:
        logger.warning("  [WARN] EMAIL_DRY_RUN is enabled - emails are logged, not sent")
    if settings.NOTIFICATIONS_DRY_RUN is not None:
        logger.warning(
            "  [WARN] NOTIFICATIONS_DRY_RUN is deprecated - use EMAIL_DRY_RUN and SMS_DRY_RUN"
        )

    # 4. Reminder ticks must not be further apart than the reminder window
    results["reminder_interval"] = (
        settings.REMINDER_JOB_INTERVAL_MINUTES <= settings.REMINDER_WINDOW_MINUTES
    )
    if not results["reminder_interval"]:
        logger.warning(
            f"  [WARN] REMINDER_JOB_INTERVAL_MINUTES ({settings.REMINDER_JOB_INTERVAL_MINUTES}) "
            f"exceeds REMINDER_WINDOW_MINUTES ({settings.REMINDER_WINDOW_MINUTES}) - "
            "some reminders will never be sent"
        )

    # 5. Deferred ticks must fit inside the deferred window
    deferred_window_minutes = (settings.DEFERRED_SMS_MAX_HOURS - settings.DEFERRED_SMS_MIN_HOURS) * 60
    results["deferred_interval"] = settings.DEFERRED_JOB_INTERVAL_MINUTES <= deferred_window_minutes
    if not results["deferred_interval"]:
        logger.warning(
            f"  [WARN] DEFERRED_JOB_INTERVAL_MINUTES ({settings.DEFERRED_JOB_INTERVAL_MINUTES}) "
            "is wider than the deferred SMS window - some fallback SMS will be missed"
        )

    # 6. Inbound webhook and job endpoints protection
    results["webhook_secret"] = bool(settings.RESEND_WEBHOOK_SECRET)
    if not results["webhook_secret"]:
        logger.warning("  [WARN] RESEND_WEBHOOK_SECRET not set - webhook signatures are not verified")

    results["cron_secret"] = bool(settings.CRON_SECRET)
    if not results["cron_secret"] and settings.is_production:
        logger.warning("  [WARN] CRON_SECRET not set - /cron endpoints are open")

    # 7. Database URL format validation
    results["database_url_format"] = settings.DATABASE_URL.startswith("postgresql+asyncpg://")
    if not results["database_url_format"]:
        logger.warning("DATABASE_URL should use asyncpg driver: postgresql+asyncpg://...")

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results


async def validate_database_connection() -> bool:
    """
    Validate database connection is working.

    Returns:
        True if database connection successful, False otherwise
    """
    try:
        from database.connection import get_async_session

        async with get_async_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

        logger.info("  [OK] Database connection successful")
        return True

    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
