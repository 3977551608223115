"""
DLQ Worker - Periodic Retry of Failed CLCA Deliveries

Runs DeadLetterQueue.process_dlq() on an APScheduler interval job. The job
is registered with max_instances=1 and coalesce=True so batches never
overlap: process_dlq has no cross-run locking and relies on being invoked
serially.

Usage:
    # Run as a worker (polls every DLQ_POLL_INTERVAL_SECONDS)
    python -m clca_bridge.workers.dlq_worker

    # Process one batch and exit
    python -m clca_bridge.workers.dlq_worker --once
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
from datetime import datetime, timezone
from typing import Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..bootstrap import open_pipeline
from ..core.config import get_settings, load_environment
from ..core.logging import configure_structured_logging
from ..models.dlq import DLQProcessResult
from .dead_letter_queue import DeadLetterQueue

logger = logging.getLogger(__name__)

JOB_ID = "process_dlq"


async def process_dlq_job(dlq: DeadLetterQueue) -> Optional[DLQProcessResult]:
    """Scheduler wrapper; never lets an error reach APScheduler."""
    try:
        result = await dlq.process_dlq()
    except Exception as e:
        logger.exception("DLQ processing job failed: %s", e)
        return None

    if result.processed:
        logger.info(
            "DLQ job processed %d items (%d succeeded, %d failed, %d exhausted)",
            result.processed,
            result.succeeded,
            result.failed,
            result.exhausted,
        )
    return result


def create_scheduler(dlq: DeadLetterQueue, interval_seconds: float) -> AsyncIOScheduler:
    """Scheduler with a single serial process_dlq job; not started."""
    scheduler = AsyncIOScheduler(
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Never run two batches at once
            "misfire_grace_time": 60,
        },
        timezone="UTC",
    )
    scheduler.add_job(
        process_dlq_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[dlq],
        id=JOB_ID,
        name="Process CLCA DLQ",
        replace_existing=True,
        next_run_time=datetime.now(timezone.utc),
    )
    return scheduler


async def run_forever(dlq: DeadLetterQueue, interval_seconds: float) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    scheduler = create_scheduler(dlq, interval_seconds)
    scheduler.start()
    logger.info("DLQ worker started (interval=%ss, batch=%d)", interval_seconds, dlq.batch_size)

    try:
        await stop.wait()
    finally:
        logger.info("Stopping DLQ worker...")
        scheduler.shutdown(wait=False)


async def _run(once: bool, interval: Optional[float]) -> None:
    settings = get_settings()
    async with open_pipeline(settings) as pipeline:
        if once:
            result = await pipeline.dlq.process_dlq()
            print(json.dumps(result.to_dict()))
            return
        await run_forever(pipeline.dlq, interval or settings.DLQ_POLL_INTERVAL_SECONDS)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Retry failed CLCA deliveries from the DLQ")
    parser.add_argument("--once", action="store_true", help="Process one batch and exit")
    parser.add_argument("--interval", type=float, default=None, help="Poll interval in seconds")
    parser.add_argument("--env-file", default=None, help="Load variables from this dotenv file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    load_environment(args.env_file)
    settings = get_settings()
    configure_structured_logging(
        level="DEBUG" if args.verbose else settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
        service_name="clca-dlq-worker",
    )

    asyncio.run(_run(args.once, args.interval))


if __name__ == "__main__":
    main()
