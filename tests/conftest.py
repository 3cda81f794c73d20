"""Pytest configuration and fixtures."""
import pytest
from unittest.mock import MagicMock, AsyncMock
from api.services.queue_service import ImportTask


@pytest.fixture
def mock_mongo_db():
    """Create mock MongoDB database."""
    db = MagicMock()

    # Mock collections
    db.jobs = MagicMock()
    db.import_logs = MagicMock()

    # Mock common operations
    db.jobs.find_one = AsyncMock(return_value=None)
    db.jobs.insert_one = AsyncMock()
    db.jobs.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    db.jobs.count_documents = AsyncMock(return_value=0)

    db.import_logs.find_one = AsyncMock(return_value=None)
    db.import_logs.insert_one = AsyncMock()
    db.import_logs.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))
    db.import_logs.find_one_and_update = AsyncMock()
    db.import_logs.count_documents = AsyncMock(return_value=0)

    return db


@pytest.fixture
def mock_redis_client():
    """Create mock Redis client."""
    redis = AsyncMock()

    redis.hset = AsyncMock(return_value=1)
    redis.hget = AsyncMock(return_value=None)
    redis.hgetall = AsyncMock(return_value={})
    redis.lpush = AsyncMock(return_value=1)
    redis.rpush = AsyncMock(return_value=1)
    redis.lmove = AsyncMock(return_value=None)
    redis.llen = AsyncMock(return_value=0)
    redis.lrange = AsyncMock(return_value=[])
    redis.lrem = AsyncMock(return_value=1)
    redis.ltrim = AsyncMock(return_value=True)
    redis.zadd = AsyncMock(return_value=1)
    redis.zrem = AsyncMock(return_value=1)
    redis.zcard = AsyncMock(return_value=0)
    redis.zrangebyscore = AsyncMock(return_value=[])
    redis.exists = AsyncMock(return_value=0)
    redis.delete = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)

    return redis


@pytest.fixture
def sample_rss_feed():
    """Create a well-formed RSS feed with vendor fields."""
    return b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:job="https://jobicy.com/job" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Remote Jobs</title>
    <item>
      <title>Senior Designer</title>
      <guid isPermaLink="false">123</guid>
      <link>https://jobicy.com/jobs/123-senior-designer</link>
      <job:company>Acme</job:company>
      <job:location>Berlin</job:location>
      <job:jobType>Full Time</job:jobType>
      <description><![CDATA[<p>Design <b>great</b> things.</p>]]></description>
      <pubDate>Mon, 05 Feb 2024 10:30:00 +0000</pubDate>
    </item>
    <item>
      <title>Backend Engineer</title>
      <link>https://jobicy.com/jobs/456</link>
      <dc:creator>Globex</dc:creator>
      <category>Engineering</category>
    </item>
  </channel>
</rss>
"""


@pytest.fixture
def sample_import_log():
    """Create sample import log data."""
    return {
        "_id": "log_test123",
        "file_name": "https://jobicy.com/?feed=job_feed",
        "source": "jobicy.com",
        "status": "in_progress",
        "import_date_time": "2024-02-04T10:30:00Z",
        "total_fetched": 0,
        "total_imported": 0,
        "new_jobs": 0,
        "updated_jobs": 0,
        "failed_jobs": 0,
        "error_details": [],
        "processing_time": None,
        "created_at": "2024-02-04T10:30:00Z",
        "updated_at": "2024-02-04T10:30:00Z"
    }


@pytest.fixture
def sample_task():
    """Create sample import task."""
    return ImportTask(
        task_id="task_test001",
        source_url="https://jobicy.com/?feed=job_feed",
        import_log_id="log_test123",
        priority=1,
        attempts_made=0
    )
