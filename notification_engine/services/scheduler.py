import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notification_engine.core.config import get_settings
from notification_engine.core.errors import StoreUnavailableError
from notification_engine.services import occurrences, retry_manager, task_queue

logger = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None


def start_scheduler() -> None:
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone="UTC")
        _scheduler.start()
        refresh_jobs()
        logger.info("Scheduler started")


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")


def refresh_jobs() -> None:
    global _scheduler
    if _scheduler is None:
        return
    _scheduler.remove_all_jobs()
    interval = get_settings().scheduler_interval_sec
    jobs = (
        ("schedule-tick", tick_schedules, interval),
        ("delivery-sweep", sweep_deliveries, interval),
        ("delivery-expiry", expire_deliveries, max(interval * 10, 60)),
    )
    for job_id, func, seconds in jobs:
        try:
            _scheduler.add_job(
                func,
                trigger=IntervalTrigger(seconds=seconds),
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        except Exception as exc:
            logger.error("Failed to schedule job %s: %s", job_id, exc)


def tick_schedules() -> None:
    """Fire every schedule occurrence that has come due."""
    try:
        results = occurrences.run_due_schedules()
    except StoreUnavailableError:
        logger.error("Schedule tick aborted: delivery store unavailable", exc_info=True)
        return
    if results:
        logger.info("Fired %s schedule occurrences", len(results))


def sweep_deliveries() -> None:
    """Safety net for work that never reached the queue (restarts, rq outages)."""
    try:
        count = task_queue.enqueue_ready()
    except StoreUnavailableError:
        logger.error("Delivery sweep aborted: delivery store unavailable", exc_info=True)
        return
    if count:
        logger.debug("Sweep enqueued %s deliveries", count)


def expire_deliveries() -> None:
    try:
        retry_manager.expire_stale()
    except StoreUnavailableError:
        logger.error("Expiry sweep aborted: delivery store unavailable", exc_info=True)
