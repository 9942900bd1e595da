from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from notification_engine.core.errors import StoreUnavailableError
from notification_engine.services import scheduler, task_queue
from notification_engine.services.work_queue import DueQueue


def test_enqueue_without_workers_is_a_noop():
    assert task_queue.enqueue_delivery(1) is None
    assert task_queue.queue_size() == 0
    assert task_queue.halted_reason() is None


def test_enqueue_goes_to_the_local_queue():
    queue = DueQueue()
    with patch.object(task_queue, "_local_queue", queue):
        assert task_queue.enqueue_many([(1, None), (2, datetime.utcnow() + timedelta(hours=1))]) == 2
        assert task_queue.queue_size() == 2
        assert queue.get(timeout=0.1) == 1


@patch("notification_engine.services.task_queue.get_queue")
@patch("notification_engine.services.task_queue._use_rq", return_value=True)
def test_rq_backend_schedules_future_work(_mock_use_rq, mock_get_queue):
    queue = MagicMock()
    queue.enqueue.return_value.id = "job-now"
    queue.enqueue_at.return_value.id = "job-later"
    mock_get_queue.return_value = queue

    assert task_queue.enqueue_delivery(7) == "job-now"
    due = datetime.utcnow() + timedelta(minutes=5)
    assert task_queue.enqueue_delivery(8, due) == "job-later"

    queue.enqueue.assert_called_once_with(task_queue.run_delivery, 7)
    scheduled_for = queue.enqueue_at.call_args[0][0]
    assert scheduled_for.tzinfo is not None
    assert scheduled_for.replace(tzinfo=None) == due


@patch("notification_engine.services.task_queue.enqueue_delivery")
@patch("notification_engine.services.task_queue.retry_manager")
def test_run_delivery_requeues_booked_retries(mock_retry_manager, mock_enqueue):
    retry_at = datetime(2024, 1, 15, 9, 1)
    mock_retry_manager.process_delivery.return_value = "FAILED"
    mock_retry_manager.get_delivery.return_value = MagicMock(next_retry_at=retry_at)

    assert task_queue.run_delivery(3) == "FAILED"
    mock_enqueue.assert_called_once_with(3, retry_at)


@patch("notification_engine.services.task_queue.enqueue_delivery")
@patch("notification_engine.services.task_queue.retry_manager")
def test_run_delivery_skips_unclaimed_work(mock_retry_manager, mock_enqueue):
    mock_retry_manager.process_delivery.return_value = None
    assert task_queue.run_delivery(3) is None
    mock_enqueue.assert_not_called()


@patch("notification_engine.services.scheduler.occurrences.run_due_schedules", side_effect=StoreUnavailableError("down"))
def test_tick_survives_store_outage(mock_run):
    scheduler.tick_schedules()
    mock_run.assert_called_once()


@patch("notification_engine.services.scheduler.task_queue.enqueue_ready", return_value=2)
def test_sweep_enqueues_ready_work(mock_ready):
    scheduler.sweep_deliveries()
    mock_ready.assert_called_once_with()


def test_scheduler_registers_jobs():
    scheduler.start_scheduler()
    try:
        job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
        assert job_ids == {"schedule-tick", "delivery-sweep", "delivery-expiry"}
    finally:
        scheduler.stop_scheduler()
    assert scheduler._scheduler is None
