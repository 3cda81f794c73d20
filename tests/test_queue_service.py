"""Task queue unit tests."""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from api.services.queue_service import ImportTask, TaskQueue, TaskState


class TestTaskQueue:
    """Tests for TaskQueue class."""

    @pytest.fixture
    def queue(self, mock_redis_client):
        """Create queue with mock Redis client."""
        return TaskQueue(
            mock_redis_client,
            prefix="test_import",
            max_attempts=3,
            backoff_base=2.0,
            keep_completed=100,
            keep_failed=50
        )

    def test_priority_queue_names(self, queue):
        """Test priorities map onto high, medium and low lists."""
        assert queue._get_priority_queue_name(0) == "test_import:priority:high"
        assert queue._get_priority_queue_name(3) == "test_import:priority:high"
        assert queue._get_priority_queue_name(5) == "test_import:priority:medium"
        assert queue._get_priority_queue_name(9) == "test_import:priority:low"

    @pytest.mark.asyncio
    async def test_enqueue_stores_task_and_pushes_id(self, queue, mock_redis_client):
        """Test enqueue writes the task record and queues its id."""
        task_id = await queue.enqueue(
            {"source_url": "https://jobicy.com/?feed=job_feed", "import_log_id": "log_test123"},
            priority=5
        )

        assert task_id.startswith("task_")
        key, = mock_redis_client.hset.await_args.args
        mapping = mock_redis_client.hset.await_args.kwargs["mapping"]
        assert key == f"test_import:task:{task_id}"
        assert json.loads(mapping["data"])["import_log_id"] == "log_test123"
        assert mapping["state"] == TaskState.WAITING
        mock_redis_client.lpush.assert_awaited_once_with("test_import:priority:medium", task_id)

    @pytest.mark.asyncio
    async def test_dequeue_highest_priority_first(self, queue, mock_redis_client):
        """Test dequeue claims from the high list before the others."""
        mock_redis_client.lmove = AsyncMock(return_value="task_abc")
        mock_redis_client.hgetall = AsyncMock(return_value={
            "data": json.dumps({"source_url": "https://jobicy.com/?feed=job_feed", "import_log_id": "log_1"}),
            "priority": "1",
            "attempts_made": "1",
        })

        task = await queue.dequeue()

        assert task == ImportTask(
            task_id="task_abc",
            source_url="https://jobicy.com/?feed=job_feed",
            import_log_id="log_1",
            priority=1,
            attempts_made=1
        )
        mock_redis_client.lmove.assert_awaited_once_with(
            "test_import:priority:high", "test_import:active", "RIGHT", "LEFT"
        )

    @pytest.mark.asyncio
    async def test_dequeue_empty(self, queue, mock_redis_client):
        """Test dequeue returns None when all lists are empty."""
        assert await queue.dequeue() is None
        assert mock_redis_client.lmove.await_count == 3

    @pytest.mark.asyncio
    async def test_dequeue_when_paused(self, queue, mock_redis_client):
        """Test a paused queue hands out nothing."""
        mock_redis_client.exists = AsyncMock(return_value=1)

        assert await queue.dequeue() is None
        mock_redis_client.lmove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_complete_moves_to_completed(self, queue, mock_redis_client, sample_task):
        """Test completion records the result and trims history."""
        mock_redis_client.lrange = AsyncMock(return_value=["task_old"])

        await queue.complete(sample_task, {"success": True})

        mock_redis_client.lrem.assert_awaited_once_with("test_import:active", 1, "task_test001")
        mock_redis_client.lpush.assert_awaited_once_with("test_import:completed", "task_test001")
        mock_redis_client.ltrim.assert_awaited_once_with("test_import:completed", 0, 99)
        mock_redis_client.delete.assert_awaited_once_with("test_import:task:task_old")

    @pytest.mark.asyncio
    async def test_fail_schedules_retry_with_backoff(self, queue, mock_redis_client, sample_task, monkeypatch):
        """Test an early failure is delayed by the exponential backoff."""
        monkeypatch.setattr("api.services.queue_service.time.time", lambda: 1000.0)

        retried = await queue.fail(sample_task, "HTTP Error 503")

        assert retried is True
        mock_redis_client.zadd.assert_awaited_once_with("test_import:delayed", {"task_test001": 1002.0})
        mapping = mock_redis_client.hset.await_args.kwargs["mapping"]
        assert mapping["state"] == TaskState.DELAYED
        assert mapping["attempts_made"] == 1

        sample_task.attempts_made = 1
        await queue.fail(sample_task, "HTTP Error 503")
        assert mock_redis_client.zadd.await_args.args == ("test_import:delayed", {"task_test001": 1004.0})

    @pytest.mark.asyncio
    async def test_fail_is_terminal_after_max_attempts(self, queue, mock_redis_client, sample_task):
        """Test the third failure moves the task to the failed list."""
        sample_task.attempts_made = 2

        retried = await queue.fail(sample_task, "HTTP Error 503")

        assert retried is False
        mock_redis_client.zadd.assert_not_awaited()
        mock_redis_client.lpush.assert_awaited_once_with("test_import:failed", "task_test001")
        mapping = mock_redis_client.hset.await_args.kwargs["mapping"]
        assert mapping["state"] == TaskState.FAILED
        assert mapping["attempts_made"] == 3
        assert mapping["failed_reason"] == "HTTP Error 503"

    @pytest.mark.asyncio
    async def test_promote_delayed(self, queue, mock_redis_client):
        """Test due retries go back to the head of their list."""
        mock_redis_client.zrangebyscore = AsyncMock(return_value=["task_a"])
        mock_redis_client.hget = AsyncMock(return_value="8")

        promoted = await queue.promote_delayed()

        assert promoted == 1
        mock_redis_client.rpush.assert_awaited_once_with("test_import:priority:low", "task_a")

    @pytest.mark.asyncio
    async def test_promote_delayed_skips_claimed_entries(self, queue, mock_redis_client):
        """Test an entry removed by another worker is not requeued twice."""
        mock_redis_client.zrangebyscore = AsyncMock(return_value=["task_a"])
        mock_redis_client.zrem = AsyncMock(return_value=0)

        assert await queue.promote_delayed() == 0
        mock_redis_client.rpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requeue_stalled(self, queue, mock_redis_client, monkeypatch):
        """Test only tasks active for too long are requeued."""
        monkeypatch.setattr("api.services.queue_service.time.time", lambda: 5000.0)
        mock_redis_client.lrange = AsyncMock(return_value=["task_old", "task_new"])
        started = {"test_import:task:task_old": "1000", "test_import:task:task_new": "4900"}

        async def hget(key, field):
            return started[key] if field == "started_at" else "1"

        mock_redis_client.hget = AsyncMock(side_effect=hget)

        requeued = await queue.requeue_stalled(older_than=600)

        assert requeued == 1
        mock_redis_client.lrem.assert_awaited_once_with("test_import:active", 1, "task_old")
        mock_redis_client.rpush.assert_awaited_once_with("test_import:priority:high", "task_old")

    @pytest.mark.asyncio
    async def test_get_stats(self, queue, mock_redis_client):
        """Test stats count every list and the delayed set."""
        lengths = {
            "test_import:priority:high": 2,
            "test_import:priority:medium": 1,
            "test_import:priority:low": 0,
            "test_import:active": 1,
            "test_import:completed": 7,
            "test_import:failed": 3,
        }
        mock_redis_client.llen = AsyncMock(side_effect=lambda key: lengths[key])
        mock_redis_client.zcard = AsyncMock(return_value=2)

        stats = await queue.get_stats()

        assert stats == {"waiting": 3, "active": 1, "completed": 7, "failed": 3, "delayed": 2}

    @pytest.mark.asyncio
    async def test_health_degraded_on_high_failure_rate(self, queue, mock_redis_client):
        """Test more failures than successes reports degraded."""
        mock_redis_client.llen = AsyncMock(
            side_effect=lambda key: {"test_import:completed": 1, "test_import:failed": 3}.get(key, 0)
        )

        health = await queue.get_health()

        assert health["status"] == "degraded"
        assert health["failure_rate"] == 0.75

    @pytest.mark.asyncio
    async def test_health_paused(self, queue, mock_redis_client):
        """Test a paused queue reports paused."""
        mock_redis_client.exists = AsyncMock(return_value=1)

        health = await queue.get_health()

        assert health["status"] == "paused"
        assert health["paused"] is True

    @pytest.mark.asyncio
    async def test_health_unhealthy_when_redis_down(self, queue, mock_redis_client):
        """Test an unreachable broker reports unhealthy."""
        mock_redis_client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))

        health = await queue.get_health()

        assert health["status"] == "unhealthy"
        assert health["redis"] == "disconnected"

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, queue, mock_redis_client):
        """Test pause sets and resume clears the paused flag."""
        await queue.pause()
        mock_redis_client.set.assert_awaited_once_with("test_import:paused", "1")

        await queue.resume()
        mock_redis_client.delete.assert_awaited_once_with("test_import:paused")

    @pytest.mark.asyncio
    async def test_retry_failed(self, queue, mock_redis_client):
        """Test failed tasks are reset and queued again."""
        mock_redis_client.lrange = AsyncMock(return_value=["task_a", "task_gone"])
        mock_redis_client.hget = AsyncMock(side_effect=["2", None])

        retried = await queue.retry_failed()

        assert retried == 1
        mock_redis_client.lpush.assert_awaited_once_with("test_import:priority:high", "task_a")
        mapping = mock_redis_client.hset.await_args.kwargs["mapping"]
        assert mapping["attempts_made"] == 0

    @pytest.mark.asyncio
    async def test_clear(self, queue, mock_redis_client):
        """Test clear deletes every key under the prefix."""
        async def scan_iter(match):
            for key in ("test_import:priority:high", "test_import:task:task_a"):
                yield key

        mock_redis_client.scan_iter = MagicMock(side_effect=scan_iter)

        removed = await queue.clear()

        assert removed == 2
        mock_redis_client.delete.assert_awaited_once_with("test_import:priority:high", "test_import:task:task_a")

    @pytest.mark.asyncio
    async def test_get_task_and_list_failed(self, queue, mock_redis_client):
        """Test task records are described for inspection."""
        mock_redis_client.lrange = AsyncMock(return_value=["task_a"])
        mock_redis_client.hgetall = AsyncMock(return_value={
            "data": json.dumps({"source_url": "https://jobicy.com/?feed=job_feed", "import_log_id": "log_1"}),
            "state": TaskState.FAILED,
            "priority": "1",
            "attempts_made": "3",
            "failed_reason": "HTTP Error 503",
            "created_at": "1000.5",
        })

        failed = await queue.list_failed()

        assert len(failed) == 1
        assert failed[0]["task_id"] == "task_a"
        assert failed[0]["attempts_made"] == 3
        assert failed[0]["failed_reason"] == "HTTP Error 503"
        assert failed[0]["created_at"] == 1000.5
        assert failed[0]["finished_at"] is None
