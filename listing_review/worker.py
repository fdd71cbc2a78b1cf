"""Queue worker: runs the review pipeline for every queued job.

Usage:
    python -m listing_review.worker
"""
from __future__ import annotations

import asyncio
import signal

import structlog

from listing_review.container import build_container
from listing_review.core.config import Settings, settings as default_settings
from listing_review.modules.pipeline.orchestrator import ReviewPipeline
from listing_review.modules.pipeline.queue import JobHandler, RedisReviewQueue
from listing_review.modules.pipeline.schemas import ReviewJob

logger = structlog.get_logger()


def make_job_handler(pipeline: ReviewPipeline) -> JobHandler:
    async def handle(job: ReviewJob) -> None:
        await pipeline.process_review(job.review_id, job.tenant_id)

    return handle


async def run_worker(settings: Settings) -> None:
    container = build_container(settings, with_pipeline=True)
    if isinstance(container.queue, RedisReviewQueue):
        await container.queue.recover_inflight()

    handle = container.queue.create_worker(make_job_handler(container.pipeline))
    logger.info(
        "Worker listening",
        queue=settings.review_queue_name,
        backend=settings.queue_provider,
        concurrency=settings.worker_concurrency,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Worker shutting down")
        await handle.close()
        await container.close()
        logger.info("Worker closed")


def main() -> None:
    asyncio.run(run_worker(default_settings))


if __name__ == "__main__":
    main()
