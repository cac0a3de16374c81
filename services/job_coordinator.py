"""
Job Coordinator
Makes sure every committed order has exactly one live settlement job.

The lookup and the enqueue/retry are not part of the order's database
transaction. When the queue is down after the order committed, intake fails
and the caller re-submits: the order store hands back the existing order and
this coordinator then finds no job and enqueues it.
"""

import logging
from enum import Enum
from typing import Optional

from redis.exceptions import RedisError

from config import Config
from models import Order
from services.job_queue import JobState, RedisJobQueue
from utils.exception_handler import QueueUnavailableError

logger = logging.getLogger(__name__)


class JobAction(Enum):
    """What ensure_job did to the order's job"""
    ENQUEUED = "enqueued"
    UNCHANGED = "unchanged"
    RETRIED = "retried"


class JobCoordinator:
    """Enqueue-or-retry state machine over the job keyed by ``order.job_id``"""

    def __init__(
        self,
        queue: RedisJobQueue,
        job_name: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ):
        self.queue = queue
        self.job_name = job_name or Config.PAYMENT_JOB_NAME
        self.timeout_seconds = timeout_seconds or Config.PAYMENT_JOB_TIMEOUT_SECONDS

    async def ensure_job(self, order: Order) -> JobAction:
        """
        absent -> enqueue with the timeout ceiling;
        failed -> retry the same job;
        anything else -> leave it alone.

        Raises:
            QueueUnavailableError: the queue could not be reached
        """
        try:
            return await self._ensure_job(order)
        except (RedisError, OSError) as e:
            logger.error(f"❌ JOB_QUEUE_UNAVAILABLE: order_id={order.id} job_id={order.job_id}: {e}")
            raise QueueUnavailableError(
                f"Job queue unavailable while scheduling order {order.id}",
                details={"order_id": order.id, "job_id": order.job_id},
            ) from e

    async def _ensure_job(self, order: Order) -> JobAction:
        job = await self.queue.get_job(order.job_id)

        if job is None:
            # Payload stays empty: the worker re-reads the order by job id
            await self.queue.add(
                self.job_name,
                {},
                job_id=order.job_id,
                timeout_ms=self.timeout_seconds * 1000,
            )
            logger.info(f"✅ JOB_ENQUEUED: order_id={order.id} job_id={order.job_id}")
            return JobAction.ENQUEUED

        state = await job.get_state()
        if state is JobState.FAILED:
            if await job.retry():
                logger.info(f"🔁 JOB_REQUEUED: order_id={order.id} job_id={order.job_id} (was failed)")
                return JobAction.RETRIED
            # Another coordinator got there first
            return JobAction.UNCHANGED

        logger.debug(f"JOB_UNCHANGED: order_id={order.id} job_id={order.job_id} state={state.value}")
        return JobAction.UNCHANGED
