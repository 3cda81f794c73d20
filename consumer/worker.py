"""Worker pool for consuming and processing import tasks."""
import asyncio
import logging
from typing import List, Optional
from api.services.queue_service import ImportTask, TaskQueue
from consumer.runner import ImportTaskRunner
from shared.config import settings

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs ``concurrency`` consumers that pull tasks from the queue."""

    def __init__(
        self,
        queue: TaskQueue,
        runner: ImportTaskRunner,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        name: str = "worker"
    ):
        self.queue = queue
        self.runner = runner
        self.concurrency = concurrency or settings.worker_concurrency
        self.poll_interval = settings.worker_poll_interval if poll_interval is None else poll_interval
        self.name = name
        self.running = False
        self._consumers: List[asyncio.Task] = []

    async def start(self):
        """Start the consumer loops."""
        if self.running:
            return
        self.running = True
        logger.info(f"Starting {self.concurrency} consumers for {self.name}")
        self._consumers = [
            asyncio.create_task(self._consume(f"{self.name}-{index + 1}"))
            for index in range(self.concurrency)
        ]

    async def stop(self):
        """Stop taking new tasks and wait for in-flight tasks to finish."""
        if not self.running:
            return
        logger.info(f"{self.name} stopping...")
        self.running = False
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers = []
        logger.info(f"{self.name} stopped")

    async def wait(self):
        """Block until every consumer has exited."""
        await asyncio.gather(*self._consumers, return_exceptions=True)

    async def _consume(self, consumer_id: str):
        logger.info(f"Consumer {consumer_id} starting...")

        while self.running:
            try:
                await self.queue.promote_delayed()
                task = await self.queue.dequeue()
            except Exception as e:
                logger.error(f"Consumer {consumer_id} could not poll the queue: {e}")
                task = None

            if task:
                try:
                    await self.process_task(task, consumer_id)
                except Exception as e:
                    # Left in the active list; requeue_stalled() recovers it
                    logger.error(f"Consumer {consumer_id} lost the outcome of task {task.task_id}: {e}")
            else:
                # No tasks available, wait before polling again
                await asyncio.sleep(self.poll_interval)

        logger.info(f"Consumer {consumer_id} exited")

    async def process_task(self, task: ImportTask, consumer_id: str = "worker"):
        """Run one task and report the outcome to the queue."""
        logger.info(f"Consumer {consumer_id} processing: {task.source_url}")

        try:
            result = await self.runner.run(task)
        except Exception as e:
            logger.error(f"Task {task.task_id} failed: {e}")
            await self.queue.fail(task, str(e))
            return

        await self.queue.complete(task, result)
        logger.info(f"Task {task.task_id} completed successfully")
