"""Review job queue.

Jobs carry identifiers only ({review_id, listing_id, tenant_id}); the worker
re-reads listing content from the database. Delivery is at-least-once, so
handlers must tolerate seeing the same review twice.

Backends:
  - memory  asyncio.Queue, single process (local runs, tests)
  - redis   list-based, JSON payloads; a job sits in a processing list
            while its handler runs and is recovered from there on restart
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

from listing_review.core.config import Settings
from listing_review.core.errors import ConfigurationError
from listing_review.modules.pipeline.schemas import ReviewJob

logger = structlog.get_logger()

JobHandler = Callable[[ReviewJob], Awaitable[None]]

DEFAULT_QUEUE_NAME = "listing-reviews"
DEFAULT_CONCURRENCY = 3
RECENT_JOBS_LIMIT = 100


class WorkerHandle(Protocol):
    async def close(self) -> None: ...


class ReviewQueue(Protocol):
    async def enqueue(self, job: ReviewJob) -> str: ...

    def create_worker(self, handler: JobHandler) -> WorkerHandle: ...


async def _run_handler(handler: JobHandler, job: ReviewJob, job_id: str) -> None:
    """Handler failures are logged; the consumer loop keeps going."""
    log = logger.bind(job_id=job_id, review_id=job.review_id, tenant_id=job.tenant_id)
    log.info("Processing review job")
    try:
        await handler(job)
    except Exception as e:
        log.error("Review job failed", error=str(e), error_type=type(e).__name__)
    else:
        log.info("Review job done")


class _ConsumerGroup:
    """A set of consumer tasks that can be stopped together."""

    def __init__(self, name: str, tasks: list[asyncio.Task[None]]) -> None:
        self.name = name
        self._tasks = tasks

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Queue worker closed", queue=self.name)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryReviewQueue:
    def __init__(self, name: str = DEFAULT_QUEUE_NAME, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.name = name
        self.concurrency = max(1, concurrency)
        self._queue: asyncio.Queue[tuple[str, ReviewJob]] = asyncio.Queue()
        # most recent jobs only, for inspection
        self.enqueued: deque[ReviewJob] = deque(maxlen=RECENT_JOBS_LIMIT)

    async def enqueue(self, job: ReviewJob) -> str:
        job_id = uuid.uuid4().hex
        self.enqueued.append(job)
        await self._queue.put((job_id, job))
        logger.info("Review job enqueued", queue=self.name, job_id=job_id, review_id=job.review_id)
        return job_id

    def pending_count(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every enqueued job has been handled."""
        await self._queue.join()

    def create_worker(self, handler: JobHandler) -> WorkerHandle:
        async def consume() -> None:
            while True:
                job_id, job = await self._queue.get()
                try:
                    await _run_handler(handler, job, job_id)
                finally:
                    self._queue.task_done()

        tasks = [asyncio.create_task(consume()) for _ in range(self.concurrency)]
        logger.info("Queue worker started", queue=self.name, backend="memory", concurrency=self.concurrency)
        return _ConsumerGroup(self.name, tasks)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisReviewQueue:
    def __init__(
        self,
        redis_url: str = "",
        name: str = DEFAULT_QUEUE_NAME,
        concurrency: int = DEFAULT_CONCURRENCY,
        *,
        client: Any = None,
        poll_timeout_seconds: float = 1.0,
    ) -> None:
        if client is None:
            if not redis_url.strip():
                raise ConfigurationError("REDIS_URL")
            import redis.asyncio as redis

            client = redis.Redis.from_url(redis_url.strip(), decode_responses=True)
        self._client = client
        self.name = name
        self.concurrency = max(1, concurrency)
        self.poll_timeout_seconds = poll_timeout_seconds

    @property
    def pending_key(self) -> str:
        return f"{self.name}:pending"

    @property
    def processing_key(self) -> str:
        return f"{self.name}:processing"

    async def enqueue(self, job: ReviewJob) -> str:
        job_id = uuid.uuid4().hex
        payload = json.dumps({"job_id": job_id, **job.model_dump()})
        await self._client.lpush(self.pending_key, payload)
        logger.info("Review job enqueued", queue=self.name, job_id=job_id, review_id=job.review_id)
        return job_id

    async def recover_inflight(self) -> int:
        """Move jobs left in the processing list by a crashed worker back to pending."""
        moved = 0
        while await self._client.lmove(self.processing_key, self.pending_key, "RIGHT", "LEFT"):
            moved += 1
        if moved:
            logger.warning("Recovered in-flight review jobs", queue=self.name, count=moved)
        return moved

    def create_worker(self, handler: JobHandler) -> WorkerHandle:
        async def consume() -> None:
            while True:
                raw = await self._client.blmove(
                    self.pending_key,
                    self.processing_key,
                    self.poll_timeout_seconds,
                    "RIGHT",
                    "LEFT",
                )
                if raw is None:
                    continue
                try:
                    data = json.loads(raw)
                    job_id = str(data.pop("job_id", ""))
                    job = ReviewJob.model_validate(data)
                except ValueError as e:
                    logger.error("Dropping malformed review job", queue=self.name, error=str(e))
                else:
                    await _run_handler(handler, job, job_id)
                await self._client.lrem(self.processing_key, 1, raw)

        tasks = [asyncio.create_task(consume()) for _ in range(self.concurrency)]
        logger.info("Queue worker started", queue=self.name, backend="redis", concurrency=self.concurrency)
        return _ConsumerGroup(self.name, tasks)

    async def close(self) -> None:
        await self._client.aclose()


def build_review_queue(settings: Settings) -> InMemoryReviewQueue | RedisReviewQueue:
    """Factory: pick the queue backend named in settings."""
    provider = settings.queue_provider
    if provider == "memory":
        return InMemoryReviewQueue(settings.review_queue_name, settings.worker_concurrency)
    if provider == "redis":
        return RedisReviewQueue(
            settings.redis_url, settings.review_queue_name, settings.worker_concurrency
        )
    raise ValueError(f"Unsupported queue provider: {provider}")
