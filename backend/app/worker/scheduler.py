"""
定时任务调度器

运行方式：
    python -m app.worker.scheduler
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.db import engine
from app.services.container import build_services
from app.worker.tasks import reconcile_pending_events

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    services = build_services(settings, engine)
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        reconcile_pending_events,
        IntervalTrigger(seconds=settings.RECONCILE_INTERVAL_SECONDS),
        args=[services],
        id="reconcile_pending_webhooks",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduler started. Pending webhook sweep runs every %ss.",
        settings.RECONCILE_INTERVAL_SECONDS,
    )
    scheduler.start()


if __name__ == "__main__":
    main()
