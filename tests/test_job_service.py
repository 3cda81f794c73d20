"""Job statistics service tests."""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from api.services.job_service import JobService


class TestJobService:
    """Tests for JobService class."""

    @pytest.fixture
    def job_service(self, mock_mongo_db):
        """Create job service with mock db."""
        return JobService(mock_mongo_db)

    @pytest.mark.asyncio
    async def test_get_job_stats(self, job_service):
        """Test totals and breakdowns are combined into one response."""
        latest = datetime(2024, 2, 4, 10, 30, tzinfo=timezone.utc)
        job_service.job_repo.count_jobs = AsyncMock(side_effect=[120, 15])
        job_service.job_repo.source_stats = AsyncMock(return_value=[
            {
                "_id": "jobicy.com",
                "count": 100,
                "categories": ["smm", None, "design"],
                "job_types": ["full-time"],
                "latest_job": latest
            }
        ])
        job_service.job_repo.field_counts = AsyncMock(side_effect=[
            [{"_id": "design", "count": 60}, {"_id": "smm", "count": 40}],
            [{"_id": "full-time", "count": 110}, {"_id": "contract", "count": 10}]
        ])

        stats = await job_service.get_job_stats()

        assert stats.total_jobs == 120
        assert stats.recent_jobs == 15
        assert stats.source_stats[0].categories == ["design", "smm"]
        assert stats.source_stats[0].latest_job == latest
        assert [c.name for c in stats.category_stats] == ["design", "smm"]
        assert stats.job_type_stats[1].count == 10
        job_service.job_repo.field_counts.assert_any_await("category", limit=10)
