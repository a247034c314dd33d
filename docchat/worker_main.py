"""
Worker process entry point.

Run any number of these against the same database; the claim transaction
is the only coordination between them.
"""

import asyncio
import signal

from docchat.config.logging import get_logger, setup_logging
from docchat.config.settings import settings
from docchat.infra.database import Database
from docchat.v1.core.registries import job_registry, pipeline_registry
from docchat.v1.infra.jobs.registry_init import register_job_handlers
from docchat.v1.infra.jobs.worker import JobWorker

logger = get_logger(__name__)


async def run_worker() -> None:
    database = Database(settings)
    register_job_handlers(settings)

    if settings.environment != "development":
        job_registry.freeze()
        pipeline_registry.freeze()

    worker = JobWorker(settings, database)

    loop = asyncio.get_running_loop()
    stop_tasks: set[asyncio.Task] = set()

    def request_stop() -> None:
        task = loop.create_task(worker.stop())
        stop_tasks.add(task)
        task.add_done_callback(stop_tasks.discard)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop)

    try:
        await worker.start()
    finally:
        await database.close()
        logger.info("Worker shut down", worker_id=worker.worker_id)


def main() -> None:
    """Entry point for the docchat-worker script."""
    setup_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
