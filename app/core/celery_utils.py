"""
Fire-and-forget dispatch of workflow runs to the Celery broker.

Queueing happens on a small thread pool so request handlers never block on
the broker, and so a rescan that schedules hundreds of runs pushes at most
DISPATCH_MAX_WORKERS of them at a time. A dispatch that fails is only logged:
the run stays QUEUED in the database and the next rescan picks it up once its
heartbeat goes stale.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, Tuple
from kombu import Connection
from app.core.config import settings

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=settings.DISPATCH_MAX_WORKERS, thread_name_prefix="run_dispatch")


def _queue_run_sync(run_id: str) -> Tuple[bool, str, str]:
    """
    Send one run to the broker on a fresh Kombu connection.

    Returns:
        Tuple[bool, str, str]: (success, task_id, error_message)
    """
    from app.tasks.workflow_tasks import run_candidate_workflow_task

    try:
        with Connection(settings.REDIS_URL) as conn:
            result = run_candidate_workflow_task.apply_async(
                args=(run_id,),
                connection=conn,
                retry=True,
                retry_policy={
                    'max_retries': 3,
                    'interval_start': 0,
                    'interval_step': 0.2,
                    'interval_max': 0.2,
                }
            )
            return (True, result.id, "")
    except Exception as e:
        return (False, "", str(e))


def _log_outcome(run_id: str, future: Future) -> None:
    try:
        success, task_id, error = future.result()
    except Exception as e:
        logger.error(f"Dispatch of run {run_id} crashed: {e}")
        return
    if success:
        logger.info(f"Run {run_id} queued as task {task_id}")
    else:
        logger.error(f"Failed to queue run {run_id}: {error}. It will be picked up by the next rescan.")


def dispatch_workflow_run(run_id: str) -> Future:
    """Queue a workflow run without waiting for the broker."""
    future = _executor.submit(_queue_run_sync, run_id)
    future.add_done_callback(lambda f: _log_outcome(run_id, f))
    return future


def dispatch_workflow_runs(run_ids: Iterable[str]) -> int:
    """Queue several runs without waiting; returns how many were handed off."""
    count = 0
    for run_id in run_ids:
        dispatch_workflow_run(run_id)
        count += 1
    return count
