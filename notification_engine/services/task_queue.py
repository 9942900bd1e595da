import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from redis import Redis
from rq import Queue
from rq.job import Job

from notification_engine.core.clock import utcnow
from notification_engine.core.config import get_settings
from notification_engine.services import retry_manager
from notification_engine.services.work_queue import DueQueue, WorkerPool

logger = logging.getLogger(__name__)


DELIVERY_QUEUE = "notification-delivery"

_local_queue: Optional[DueQueue] = None
_pool: Optional[WorkerPool] = None


def get_queue() -> Queue:
    settings = get_settings()
    redis = Redis.from_url(settings.redis_url)
    return Queue(DELIVERY_QUEUE, connection=redis, default_timeout=300)


def _use_rq() -> bool:
    return get_settings().dispatch_backend == "rq"


def start_workers() -> None:
    """Start the in-process worker pool (local backend) and load waiting work."""
    global _local_queue, _pool
    if _use_rq() or _pool is not None:
        return
    settings = get_settings()
    _local_queue = DueQueue()
    _pool = WorkerPool(_local_queue, run_delivery, size=settings.worker_count)
    _pool.start()
    enqueue_ready()
    for delivery_id, due_at in retry_manager.waiting_deliveries():
        enqueue_delivery(delivery_id, due_at)


def stop_workers() -> None:
    global _local_queue, _pool
    if _pool is not None:
        _pool.stop()
    _pool = None
    _local_queue = None


def enqueue_delivery(delivery_id: int, due_at: Optional[datetime] = None) -> Optional[str]:
    """Hand a delivery to the workers, now or at ``due_at`` (naive UTC)."""
    if _use_rq():
        q = get_queue()
        if due_at is not None and due_at > utcnow():
            job: Job = q.enqueue_at(due_at.replace(tzinfo=timezone.utc), run_delivery, delivery_id)
        else:
            job = q.enqueue(run_delivery, delivery_id)
        logger.debug("Enqueued delivery", extra={"delivery_id": delivery_id, "job_id": job.id})
        return job.id
    if _local_queue is None:
        # no workers in this process; the scheduler sweep picks it up
        return None
    _local_queue.put(delivery_id, due_at)
    return str(delivery_id)


def enqueue_many(items: Iterable[tuple]) -> int:
    count = 0
    for delivery_id, due_at in items:
        enqueue_delivery(delivery_id, due_at)
        count += 1
    return count


def enqueue_ready(now: Optional[datetime] = None) -> int:
    """Release due SCHEDULED/retry deliveries and enqueue every PENDING one."""
    retry_manager.promote_due(now)
    return enqueue_many((delivery_id, None) for delivery_id in retry_manager.pending_ids())


def run_delivery(delivery_id: int) -> Optional[str]:
    """Worker entry point (local pool and RQ)."""
    status = retry_manager.process_delivery(delivery_id)
    if status is None:
        return None
    delivery = retry_manager.get_delivery(delivery_id)
    if delivery is not None and delivery.next_retry_at is not None:
        enqueue_delivery(delivery_id, delivery.next_retry_at)
    return status


def queue_size() -> int:
    if _use_rq():
        return get_queue().count
    return len(_local_queue) if _local_queue is not None else 0


def halted_reason() -> Optional[str]:
    return _pool.halted_reason if _pool is not None else None
