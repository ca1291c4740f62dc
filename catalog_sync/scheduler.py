"""Background scheduler for the nightly full product import.

Supports two modes:
  - **Standalone** (``python -m catalog_sync.scheduler``): runs a
    ``BlockingScheduler`` as a separate worker process.
  - **Embedded** (``create_background_scheduler()``): returns a
    ``BackgroundScheduler`` that the FastAPI web process starts in its
    ``lifespan`` handler when ``scheduler.enabled`` is set.
"""

import sys
import signal
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .services.reconciliation import ReconciliationService
from .utils.config import AppConfig
from .utils.logger import get_sync_logger, get_scheduler_logger

IMPORT_JOB_ID = "nightly_product_import"


# ------------------------------------------------------------------
# Shared import-job factory
# ------------------------------------------------------------------

def make_import_job(reconciliation: ReconciliationService) -> Callable[[], None]:
    """Create the job callable; it never raises into the scheduler thread."""
    logger = get_sync_logger()

    def import_job():
        logger.info("=" * 70)
        logger.info(f"Scheduled product import started at {datetime.now()}")
        logger.info("=" * 70)

        try:
            result = reconciliation.import_all_products()

            logger.info("Import job completed:")
            logger.info(f"  Total items:  {result.total_items}")
            logger.info(f"  Created:      {result.created_count}")
            logger.info(f"  Updated:      {result.updated_count}")
            logger.info(f"  Failed:       {result.failed_count}")
            logger.info(f"  Duration:     {result.duration:.2f}s")
            logger.info(f"  Success rate: {result.success_rate:.2f}%")

            if not result.success:
                logger.warning(f"Import completed with {result.failed_count} errors")

        except Exception as e:
            logger.error(f"Import job failed with exception: {str(e)}", exc_info=True)

        logger.info("=" * 70)

    return import_job


def _nightly_trigger(config: AppConfig) -> CronTrigger:
    sc = config.scheduler
    return CronTrigger(hour=sc.nightly_import_hour, minute=sc.nightly_import_minute, timezone=sc.timezone)


def _add_import_job(scheduler, config: AppConfig, job: Callable[[], None]) -> None:
    scheduler.add_job(
        func=job,
        trigger=_nightly_trigger(config),
        id=IMPORT_JOB_ID,
        name="Nightly Shopify product import",
        max_instances=config.scheduler.max_instances,
        coalesce=config.scheduler.coalesce,
        misfire_grace_time=config.scheduler.misfire_grace_time,
        replace_existing=True
    )


# ------------------------------------------------------------------
# Embedded scheduler for the web process
# ------------------------------------------------------------------

def create_background_scheduler(reconciliation: ReconciliationService, config: AppConfig) -> BackgroundScheduler:
    """Create a ``BackgroundScheduler`` for embedding inside FastAPI.

    The scheduler is returned **not started**; the caller must invoke
    ``scheduler.start()`` when ready.
    """
    get_scheduler_logger()
    logger = get_sync_logger()
    sc = config.scheduler

    scheduler = BackgroundScheduler(timezone=sc.timezone)
    _add_import_job(scheduler, config, make_import_job(reconciliation))

    logger.info(
        f"Background scheduler configured: product import daily at "
        f"{sc.nightly_import_hour:02d}:{sc.nightly_import_minute:02d} ({sc.timezone})"
    )
    return scheduler


# ------------------------------------------------------------------
# Standalone blocking scheduler
# ------------------------------------------------------------------

class ImportScheduler:
    """Blocking scheduler that runs the nightly import in its own process."""

    def __init__(self, reconciliation: ReconciliationService, config: AppConfig):
        self.config = config
        self.logger = get_sync_logger()
        self.import_job = make_import_job(reconciliation)

        get_scheduler_logger()
        self.scheduler = BlockingScheduler(timezone=self.config.scheduler.timezone)

        signal.signal(signal.SIGINT, self._shutdown_handler)
        signal.signal(signal.SIGTERM, self._shutdown_handler)

    def _shutdown_handler(self, signum, frame):
        self.logger.info(f"Received shutdown signal ({signum}). Stopping scheduler...")
        self.scheduler.shutdown(wait=True)
        sys.exit(0)

    def start(self, run_now: bool = False):
        """Start the blocking scheduler (runs forever)."""
        sc = self.config.scheduler

        self.logger.info("=" * 70)
        self.logger.info("Catalog Sync Import Scheduler Starting (standalone)")
        self.logger.info("=" * 70)
        self.logger.info(f"Environment:      {self.config.env.environment}")
        self.logger.info(f"Timezone:         {sc.timezone}")
        self.logger.info(f"Import at:        {sc.nightly_import_hour:02d}:{sc.nightly_import_minute:02d}")
        self.logger.info(f"Max instances:    {sc.max_instances}")
        self.logger.info(f"Coalesce:         {sc.coalesce}")
        self.logger.info("=" * 70)

        _add_import_job(self.scheduler, self.config, self.import_job)

        if run_now:
            self.logger.info("Running initial import job...")
            self.import_job()

        self.logger.info("Scheduler started. Press Ctrl+C to stop.")

        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            self.logger.info("Scheduler stopped.")


def main():
    """Main entry point for standalone scheduler."""
    from .bootstrap import build_services

    try:
        services = build_services()
        ImportScheduler(services.reconciliation, services.config).start()
    except Exception as e:
        logger = get_sync_logger()
        logger.error(f"Scheduler failed to start: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
