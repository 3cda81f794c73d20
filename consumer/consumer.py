"""Main consumer entry point."""
import asyncio
import signal
import os
import logging
from api.services.queue_service import TaskQueue
from consumer.runner import ImportTaskRunner
from consumer.worker import WorkerPool
from database.connection import DatabaseConnection
from database.repositories.import_log_repo import ImportLogRepository
from database.repositories.job_repo import JobRepository
from shared.config import settings

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def main():
    """Main entry point for the import worker service."""
    # Generate worker ID from environment or hostname
    worker_id = os.getenv("WORKER_ID", f"worker-{os.getpid()}")

    logger.info(f"Starting consumer with worker ID: {worker_id}")

    connection = await DatabaseConnection(settings).connect()

    queue = TaskQueue(connection.redis)
    runner = ImportTaskRunner(
        JobRepository(connection.db),
        ImportLogRepository(connection.db)
    )
    pool = WorkerPool(queue, runner, name=worker_id)

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(pool.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await queue.requeue_stalled()
        await pool.start()
        await pool.wait()
    except Exception as e:
        logger.error(f"Worker error: {e}")
    finally:
        await pool.stop()
        await connection.close()
        logger.info("Consumer shutdown complete")


def run():
    configure_logging()
    asyncio.run(main())


if __name__ == "__main__":
    run()
