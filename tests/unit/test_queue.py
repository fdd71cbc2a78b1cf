"""Unit tests for the review job queues.

The Redis backend runs against a small in-memory stand-in for the list
commands it uses.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque

import pytest

from listing_review.core.config import Settings
from listing_review.core.errors import ConfigurationError
from listing_review.modules.pipeline.queue import (
    RECENT_JOBS_LIMIT,
    InMemoryReviewQueue,
    RedisReviewQueue,
    build_review_queue,
)
from listing_review.modules.pipeline.schemas import ReviewJob

JOB = ReviewJob(review_id="r-1", listing_id="l-1", tenant_id="t-1")


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


async def test_in_memory_delivers_jobs_to_handler() -> None:
    queue = InMemoryReviewQueue(concurrency=2)
    seen: list[ReviewJob] = []

    async def handler(job: ReviewJob) -> None:
        seen.append(job)

    worker = queue.create_worker(handler)
    job_id = await queue.enqueue(JOB)
    await queue.enqueue(JOB.model_copy(update={"review_id": "r-2"}))
    await queue.join()
    await worker.close()

    assert job_id
    assert sorted(j.review_id for j in seen) == ["r-1", "r-2"]


async def test_in_memory_handler_failure_does_not_stop_consumer() -> None:
    queue = InMemoryReviewQueue(concurrency=1)
    seen: list[str] = []

    async def handler(job: ReviewJob) -> None:
        seen.append(job.review_id)
        if job.review_id == "r-1":
            raise RuntimeError("pipeline failed")

    worker = queue.create_worker(handler)
    await queue.enqueue(JOB)
    await queue.enqueue(JOB.model_copy(update={"review_id": "r-2"}))
    await queue.join()
    await worker.close()

    assert seen == ["r-1", "r-2"]


async def test_in_memory_keeps_only_recent_jobs() -> None:
    queue = InMemoryReviewQueue(concurrency=1)
    for i in range(RECENT_JOBS_LIMIT + 5):
        await queue.enqueue(JOB.model_copy(update={"review_id": f"r-{i}"}))

    assert len(queue.enqueued) == RECENT_JOBS_LIMIT
    assert queue.enqueued[0].review_id == "r-5"
    assert queue.pending_count() == RECENT_JOBS_LIMIT + 5


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class FakeRedis:
    """Just the list commands used by RedisReviewQueue."""

    def __init__(self) -> None:
        self.lists: dict[str, deque[str]] = {}

    def _list(self, key: str) -> deque[str]:
        return self.lists.setdefault(key, deque())

    async def lpush(self, key: str, value: str) -> int:
        self._list(key).appendleft(value)
        return len(self._list(key))

    async def lmove(self, src: str, dst: str, wherefrom: str, whereto: str) -> str | None:
        source = self._list(src)
        if not source:
            return None
        value = source.pop() if wherefrom == "RIGHT" else source.popleft()
        target = self._list(dst)
        if whereto == "LEFT":
            target.appendleft(value)
        else:
            target.append(value)
        return value

    async def blmove(
        self, src: str, dst: str, timeout: float, wherefrom: str, whereto: str
    ) -> str | None:
        value = await self.lmove(src, dst, wherefrom, whereto)
        if value is None:
            await asyncio.sleep(0.01)
        return value

    async def lrem(self, key: str, count: int, value: str) -> int:
        try:
            self._list(key).remove(value)
        except ValueError:
            return 0
        return 1

    async def aclose(self) -> None:
        pass


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def test_redis_enqueue_pushes_json_payload() -> None:
    redis = FakeRedis()
    queue = RedisReviewQueue(client=redis, name="reviews")

    job_id = await queue.enqueue(JOB)

    payload = json.loads(redis.lists["reviews:pending"][0])
    assert payload == {"job_id": job_id, "review_id": "r-1", "listing_id": "l-1", "tenant_id": "t-1"}


async def test_redis_worker_processes_and_acks() -> None:
    redis = FakeRedis()
    queue = RedisReviewQueue(client=redis, name="reviews", concurrency=1)
    seen: list[ReviewJob] = []

    async def handler(job: ReviewJob) -> None:
        seen.append(job)

    await queue.enqueue(JOB)
    worker = queue.create_worker(handler)
    await _wait_for(lambda: len(seen) == 1 and not redis.lists.get("reviews:processing"))
    await worker.close()

    assert seen == [JOB]
    assert not redis.lists["reviews:pending"]


async def test_redis_malformed_payload_is_dropped() -> None:
    redis = FakeRedis()
    redis.lists["reviews:pending"] = deque(["not json"])
    queue = RedisReviewQueue(client=redis, name="reviews", concurrency=1)
    seen: list[ReviewJob] = []

    async def handler(job: ReviewJob) -> None:
        seen.append(job)

    worker = queue.create_worker(handler)
    await _wait_for(lambda: not redis.lists["reviews:pending"] and not redis.lists.get("reviews:processing"))
    await worker.close()
    assert seen == []


async def test_redis_recovers_inflight_jobs() -> None:
    redis = FakeRedis()
    redis.lists["reviews:processing"] = deque(["a", "b"])
    queue = RedisReviewQueue(client=redis, name="reviews")

    assert await queue.recover_inflight() == 2
    assert list(redis.lists["reviews:pending"]) == ["a", "b"]
    assert not redis.lists["reviews:processing"]


def test_redis_requires_url() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        RedisReviewQueue("")
    assert exc_info.value.variable == "REDIS_URL"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_build_memory_queue_from_settings() -> None:
    queue = build_review_queue(Settings(queue_provider="memory", worker_concurrency=5))
    assert isinstance(queue, InMemoryReviewQueue)
    assert queue.concurrency == 5


def test_unknown_queue_provider_rejected() -> None:
    with pytest.raises(ValueError):
        build_review_queue(Settings(queue_provider="sqs"))
