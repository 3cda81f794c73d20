"""Redis-backed task queue for import tasks.

Layout under ``<prefix>``:

- ``priority:{high,medium,low}``: lists of waiting task ids (LPUSH in, pop from the right)
- ``active``: ids currently held by a worker
- ``delayed``: sorted set of ids waiting out a retry backoff, scored by ready time
- ``completed`` / ``failed``: most recent finished ids, newest first, capped
- ``task:<id>``: hash holding the payload and bookkeeping for one task
- ``paused``: present while dispatch is paused
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import redis.asyncio as redis
from redis.exceptions import RedisError
from shared.config import settings
from shared.utils import calculate_exponential_backoff, generate_task_id

logger = logging.getLogger(__name__)

PRIORITY_LEVELS = ("high", "medium", "low")


class TaskState:
    """Task state constants."""
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ImportTask:
    """An import of one feed into one import log."""
    task_id: str
    source_url: str
    import_log_id: str
    priority: int = 0
    attempts_made: int = 0

    def payload(self) -> Dict[str, Any]:
        return {
            "source_url": self.source_url,
            "import_log_id": self.import_log_id,
            "priority": self.priority,
        }


class TaskQueue:
    """Priority work queue with retries, retention and admin operations."""

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        keep_completed: Optional[int] = None,
        keep_failed: Optional[int] = None
    ):
        self.redis = redis_client
        self.prefix = prefix or settings.queue_key_prefix
        self.max_attempts = max_attempts or settings.max_attempts
        self.backoff_base = backoff_base or settings.retry_base_delay
        self.keep_completed = keep_completed or settings.keep_completed_tasks
        self.keep_failed = keep_failed or settings.keep_failed_tasks

        self.priority_queues = [f"{self.prefix}:priority:{level}" for level in PRIORITY_LEVELS]
        self.active_key = f"{self.prefix}:active"
        self.delayed_key = f"{self.prefix}:delayed"
        self.completed_key = f"{self.prefix}:completed"
        self.failed_key = f"{self.prefix}:failed"
        self.paused_key = f"{self.prefix}:paused"

    def _task_key(self, task_id: str) -> str:
        return f"{self.prefix}:task:{task_id}"

    def _get_priority_queue_name(self, priority: int) -> str:
        """Get queue name for a specific priority level."""
        # Lower number = higher priority
        # Priority <=3: high, 4-7: medium, 8+: low
        if priority <= 3:
            return self.priority_queues[0]
        elif priority <= 7:
            return self.priority_queues[1]
        else:
            return self.priority_queues[2]

    # --- producer side ----------------------------------------------------

    async def enqueue(self, task: Dict[str, Any], priority: int = 0) -> str:
        """Queue an import task and return its id."""
        task_id = generate_task_id()
        payload = {
            "source_url": task["source_url"],
            "import_log_id": task["import_log_id"],
            "priority": priority,
        }

        await self.redis.hset(self._task_key(task_id), mapping={
            "data": json.dumps(payload),
            "priority": priority,
            "attempts_made": 0,
            "state": TaskState.WAITING,
            "failed_reason": "",
            "created_at": time.time(),
        })
        await self.redis.lpush(self._get_priority_queue_name(priority), task_id)

        logger.info(f"Queued task {task_id} for {payload['source_url']} (priority {priority})")
        return task_id

    # --- consumer side ----------------------------------------------------

    async def dequeue(self) -> Optional[ImportTask]:
        """Claim the next waiting task, highest priority first."""
        if await self.is_paused():
            return None

        for queue in self.priority_queues:
            task_id = await self.redis.lmove(queue, self.active_key, "RIGHT", "LEFT")
            if not task_id:
                continue

            task = await self._load_task(task_id)
            if task is None:
                logger.error(f"Dropping task {task_id}: its record no longer exists")
                await self.redis.lrem(self.active_key, 1, task_id)
                continue

            await self.redis.hset(self._task_key(task_id), mapping={
                "state": TaskState.ACTIVE,
                "started_at": time.time(),
            })
            return task
        return None

    async def complete(self, task: ImportTask, result: Optional[Dict[str, Any]] = None):
        """Record a task as finished successfully."""
        await self.redis.lrem(self.active_key, 1, task.task_id)
        await self.redis.hset(self._task_key(task.task_id), mapping={
            "state": TaskState.COMPLETED,
            "attempts_made": task.attempts_made + 1,
            "finished_at": time.time(),
            "result": json.dumps(result or {}, default=str),
        })
        await self.redis.lpush(self.completed_key, task.task_id)
        await self._trim(self.completed_key, self.keep_completed)

    async def fail(self, task: ImportTask, error: str) -> bool:
        """Record a failed attempt. Returns True if another attempt was scheduled."""
        attempts = task.attempts_made + 1
        await self.redis.lrem(self.active_key, 1, task.task_id)

        if attempts < self.max_attempts:
            delay = calculate_exponential_backoff(attempts - 1, self.backoff_base, settings.retry_max_delay)
            await self.redis.hset(self._task_key(task.task_id), mapping={
                "state": TaskState.DELAYED,
                "attempts_made": attempts,
                "failed_reason": error,
            })
            await self.redis.zadd(self.delayed_key, {task.task_id: time.time() + delay})
            logger.info(f"Retrying task {task.task_id} in {delay}s (attempt {attempts + 1}/{self.max_attempts})")
            return True

        await self.redis.hset(self._task_key(task.task_id), mapping={
            "state": TaskState.FAILED,
            "attempts_made": attempts,
            "failed_reason": error,
            "finished_at": time.time(),
        })
        await self.redis.lpush(self.failed_key, task.task_id)
        await self._trim(self.failed_key, self.keep_failed)
        logger.error(f"Task {task.task_id} failed after {attempts} attempts: {error}")
        return False

    async def promote_delayed(self) -> int:
        """Move retries whose backoff has elapsed back to their waiting list."""
        due = await self.redis.zrangebyscore(self.delayed_key, "-inf", time.time())
        promoted = 0
        for task_id in due:
            # Only the caller that removes the entry requeues it
            if not await self.redis.zrem(self.delayed_key, task_id):
                continue
            if await self._requeue(task_id):
                promoted += 1
        return promoted

    async def requeue_stalled(self, older_than: Optional[float] = None) -> int:
        """Return tasks abandoned in the active list by a dead worker."""
        older_than = settings.stalled_task_timeout if older_than is None else older_than
        now = time.time()
        requeued = 0

        for task_id in await self.redis.lrange(self.active_key, 0, -1):
            started_at = await self.redis.hget(self._task_key(task_id), "started_at")
            if started_at and now - float(started_at) < older_than:
                continue
            if await self.redis.lrem(self.active_key, 1, task_id) and await self._requeue(task_id):
                requeued += 1

        if requeued:
            logger.warning(f"Requeued {requeued} stalled tasks")
        return requeued

    async def _requeue(self, task_id: str) -> bool:
        priority = await self.redis.hget(self._task_key(task_id), "priority")
        if priority is None:
            return False
        await self.redis.hset(self._task_key(task_id), "state", TaskState.WAITING)
        # Retries go to the head of their list
        await self.redis.rpush(self._get_priority_queue_name(int(priority)), task_id)
        return True

    async def _load_task(self, task_id: str) -> Optional[ImportTask]:
        record = await self.redis.hgetall(self._task_key(task_id))
        if not record or "data" not in record:
            return None
        try:
            data = json.loads(record["data"])
        except json.JSONDecodeError:
            logger.error(f"Failed to parse task: {record['data']}")
            return None
        return ImportTask(
            task_id=task_id,
            source_url=data["source_url"],
            import_log_id=data["import_log_id"],
            priority=int(record.get("priority", 0)),
            attempts_made=int(record.get("attempts_made", 0)),
        )

    async def _trim(self, key: str, keep: int):
        evicted = await self.redis.lrange(key, keep, -1)
        if not evicted:
            return
        await self.redis.ltrim(key, 0, keep - 1)
        await self.redis.delete(*[self._task_key(task_id) for task_id in evicted])

    # --- introspection ----------------------------------------------------

    async def get_stats(self) -> Dict[str, int]:
        """Count tasks in each state."""
        waiting = 0
        for queue in self.priority_queues:
            waiting += await self.redis.llen(queue)

        return {
            "waiting": waiting,
            "active": await self.redis.llen(self.active_key),
            "completed": await self.redis.llen(self.completed_key),
            "failed": await self.redis.llen(self.failed_key),
            "delayed": await self.redis.zcard(self.delayed_key),
        }

    async def get_health(self) -> Dict[str, Any]:
        """Summarize broker reachability, dispatch state and failure rate."""
        try:
            await self.redis.ping()
            stats = await self.get_stats()
            paused = await self.is_paused()
        except RedisError as e:
            logger.error(f"Queue health check failed: {e}")
            return {"status": "unhealthy", "redis": "disconnected", "error": str(e)}

        finished = stats["completed"] + stats["failed"]
        failure_rate = stats["failed"] / finished if finished else 0.0

        if paused:
            status = "paused"
        elif failure_rate > 0.5:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "redis": "connected",
            "paused": paused,
            "failure_rate": round(failure_rate, 3),
            "stats": stats,
        }

    async def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Full record of one task, or None once it has aged out."""
        record = await self.redis.hgetall(self._task_key(task_id))
        if not record:
            return None
        return self._describe(task_id, record)

    async def list_failed(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recently failed tasks, newest first."""
        task_ids = await self.redis.lrange(self.failed_key, 0, limit - 1)
        tasks = []
        for task_id in task_ids:
            task = await self.get_task(task_id)
            if task:
                tasks.append(task)
        return tasks

    @staticmethod
    def _describe(task_id: str, record: Dict[str, str]) -> Dict[str, Any]:
        def timestamp(name: str) -> Optional[float]:
            value = record.get(name)
            return float(value) if value else None

        return {
            "task_id": task_id,
            "data": json.loads(record.get("data") or "{}"),
            "state": record.get("state"),
            "priority": int(record.get("priority", 0)),
            "attempts_made": int(record.get("attempts_made", 0)),
            "failed_reason": record.get("failed_reason") or None,
            "result": json.loads(record["result"]) if record.get("result") else None,
            "created_at": timestamp("created_at"),
            "started_at": timestamp("started_at"),
            "finished_at": timestamp("finished_at"),
        }

    # --- administration ---------------------------------------------------

    async def is_paused(self) -> bool:
        return bool(await self.redis.exists(self.paused_key))

    async def pause(self):
        """Stop handing out tasks; tasks already running finish normally."""
        await self.redis.set(self.paused_key, "1")
        logger.info("Queue paused")

    async def resume(self):
        await self.redis.delete(self.paused_key)
        logger.info("Queue resumed")

    async def clear(self) -> int:
        """Delete every key of this queue, including retry history."""
        keys = [key async for key in self.redis.scan_iter(match=f"{self.prefix}:*")]
        if keys:
            await self.redis.delete(*keys)
        logger.warning(f"Queue cleared ({len(keys)} keys removed)")
        return len(keys)

    async def retry_failed(self) -> int:
        """Put every terminally failed task back in its waiting list."""
        retried = 0
        for task_id in await self.redis.lrange(self.failed_key, 0, -1):
            await self.redis.lrem(self.failed_key, 1, task_id)
            priority = await self.redis.hget(self._task_key(task_id), "priority")
            if priority is None:
                continue
            await self.redis.hset(self._task_key(task_id), mapping={
                "state": TaskState.WAITING,
                "attempts_made": 0,
                "failed_reason": "",
            })
            await self.redis.lpush(self._get_priority_queue_name(int(priority)), task_id)
            retried += 1

        logger.info(f"Retried {retried} failed tasks")
        return retried
