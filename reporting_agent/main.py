"""Reporting agent scheduler entry point."""

import asyncio
import logging

from reporting_agent.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the scheduler and block until it is asked to stop."""
    from reporting_agent.app import run

    logger.info(
        "Starting reporting agent scheduler (db=%s, tz=%s)",
        settings.database_path,
        settings.scheduler_timezone,
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
