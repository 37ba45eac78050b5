import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cache import CacheManager
from config import get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, cache: CacheManager) -> None:
        settings = get_settings()
        self.cache = cache
        self.window_minutes = settings.metrics_window_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _close_metrics_window(self, source: str = "manual") -> None:
        metrics = self.cache.reset_metrics()
        logger.info(
            f"cache_metrics_window: source={source} hits={metrics.hits} "
            f"misses={metrics.misses} sets={metrics.sets} deletes={metrics.deletes} "
            f"errors={metrics.errors} total_requests={metrics.total_requests} "
            f"hit_rate={metrics.hit_rate:.2f}"
        )

    def start(self) -> None:
        trigger = IntervalTrigger(minutes=self.window_minutes)
        self.scheduler.add_job(
            self._close_metrics_window,
            trigger,
            args=["interval"],
            id="cache_metrics_window",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with a {self.window_minutes} minute cache metrics window"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
