"""
Redis Job Queue
Durable job queue on Redis: one hash per job keyed by job id, a wait list the
settlement worker consumes, and a failed set.

This module only ever creates jobs (state ``waiting``) and moves ``failed``
jobs back to ``waiting``; the worker owns the ``active``/``completed``/
``failed`` transitions.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import orjson
from redis.asyncio import Redis
from redis.exceptions import WatchError

from config import Config

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Job lifecycle states as stored in the job hash"""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "JobState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class Job:
    """Snapshot of a queued job; state queries go back to Redis"""

    queue: "RedisJobQueue"
    id: str
    name: str
    timeout_ms: int
    data: Dict[str, Any] = field(default_factory=dict)
    attempts_made: int = 0
    created_at_ms: Optional[int] = None

    async def get_state(self) -> JobState:
        return await self.queue.get_state(self.id)

    async def retry(self) -> bool:
        """Move the job from ``failed`` back to ``waiting``; False if it was not failed"""
        return await self.queue.retry(self.id)


class RedisJobQueue:
    """Job queue stored under ``<prefix>:<queue name>:*`` keys"""

    def __init__(self, redis: Redis, name: Optional[str] = None, prefix: str = "queue"):
        self.redis = redis
        self.name = name or Config.QUEUE_NAME
        self.prefix = prefix

    @classmethod
    def from_config(cls) -> "RedisJobQueue":
        redis = Redis(
            host=Config.REDIS_HOST,
            port=Config.REDIS_PORT,
            password=Config.REDIS_PASSWORD,
            db=Config.REDIS_DB,
            socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=Config.REDIS_SOCKET_TIMEOUT,
            decode_responses=True,
        )
        return cls(redis, Config.QUEUE_NAME)

    # Keys

    def job_key(self, job_id: str) -> str:
        return f"{self.prefix}:{self.name}:job:{job_id}"

    @property
    def wait_key(self) -> str:
        return f"{self.prefix}:{self.name}:wait"

    @property
    def failed_key(self) -> str:
        return f"{self.prefix}:{self.name}:failed"

    # Connection lifecycle

    async def connect(self) -> None:
        await self.redis.ping()
        logger.info(f"✅ Connection to Redis has been established successfully (queue={self.name})")

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info(f"🔌 Redis connection closed (queue={self.name})")

    async def health_check(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.error(f"❌ Redis health check failed: {e}")
            return False

    # Jobs

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Job by id, or None when no job with that id exists"""
        raw = await self.redis.hgetall(self.job_key(job_id))
        if not raw:
            return None
        return self._job_from_hash(job_id, raw)

    async def get_state(self, job_id: str) -> JobState:
        state = await self.redis.hget(self.job_key(job_id), "state")
        return JobState.parse(state)

    async def add(
        self,
        name: str,
        data: Optional[Dict[str, Any]],
        job_id: str,
        timeout_ms: int,
    ) -> Job:
        """
        Enqueue a job in ``waiting`` state.

        Idempotent per job id: when the id already exists (including one
        created concurrently between our check and write) the existing job is
        returned and nothing is written.
        """
        key = self.job_key(job_id)
        now_ms = int(time.time() * 1000)
        mapping = {
            "name": name,
            "data": orjson.dumps(data or {}).decode(),
            "state": JobState.WAITING.value,
            "timeout": str(timeout_ms),
            "attempts_made": "0",
            "timestamp": str(now_ms),
        }

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    if await pipe.exists(key):
                        await pipe.unwatch()
                        existing = await self.get_job(job_id)
                        if existing is not None:
                            logger.debug(f"JOB_EXISTS: queue={self.name} job_id={job_id}")
                            return existing
                        continue
                    pipe.multi()
                    pipe.hset(key, mapping=mapping)
                    pipe.lpush(self.wait_key, job_id)
                    await pipe.execute()
                    break
                except WatchError:
                    # Another writer touched the job; re-check
                    continue

        logger.info(f"📥 JOB_ADDED: queue={self.name} name={name} job_id={job_id} timeout_ms={timeout_ms}")
        return Job(
            queue=self,
            id=job_id,
            name=name,
            timeout_ms=timeout_ms,
            data=data or {},
            created_at_ms=now_ms,
        )

    async def retry(self, job_id: str) -> bool:
        """
        Compare-and-set ``failed`` -> ``waiting`` for one job, keeping its id
        and timeout. Returns False when the job is not (or no longer) failed.
        """
        key = self.job_key(job_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    state = JobState.parse(await pipe.hget(key, "state"))
                    if state is not JobState.FAILED:
                        await pipe.unwatch()
                        logger.debug(f"JOB_RETRY_SKIPPED: queue={self.name} job_id={job_id} state={state.value}")
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={
                        "state": JobState.WAITING.value,
                        "retried_at": str(int(time.time() * 1000)),
                    })
                    pipe.hdel(key, "failed_reason", "finished_on")
                    pipe.srem(self.failed_key, job_id)
                    pipe.lpush(self.wait_key, job_id)
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        logger.info(f"🔁 JOB_RETRIED: queue={self.name} job_id={job_id}")
        return True

    def _job_from_hash(self, job_id: str, raw: Dict[str, str]) -> Job:
        data_raw = raw.get("data")
        return Job(
            queue=self,
            id=job_id,
            name=raw.get("name", ""),
            timeout_ms=int(raw.get("timeout", "0") or 0),
            data=orjson.loads(data_raw) if data_raw else {},
            attempts_made=int(raw.get("attempts_made", "0") or 0),
            created_at_ms=int(raw["timestamp"]) if raw.get("timestamp") else None,
        )
