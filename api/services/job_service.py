"""Job statistics service."""
from datetime import timedelta
from motor.motor_asyncio import AsyncIOMotorDatabase
from api.schemas.responses import JobStatsResponse, NamedCount, SourceJobStats
from database.repositories.job_repo import JobRepository
from shared.utils import get_utc_now


class JobService:
    """Read-side aggregates over imported jobs."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.job_repo = JobRepository(db)

    async def get_job_stats(self) -> JobStatsResponse:
        total_jobs = await self.job_repo.count_jobs()
        recent_jobs = await self.job_repo.count_jobs(since=get_utc_now() - timedelta(days=1))
        sources = await self.job_repo.source_stats()
        categories = await self.job_repo.field_counts("category", limit=10)
        job_types = await self.job_repo.field_counts("job_type")

        return JobStatsResponse(
            total_jobs=total_jobs,
            recent_jobs=recent_jobs,
            source_stats=[
                SourceJobStats(
                    source=row["_id"] or "unknown",
                    count=row["count"],
                    categories=sorted(value for value in row.get("categories", []) if value),
                    job_types=sorted(value for value in row.get("job_types", []) if value),
                    latest_job=row.get("latest_job")
                )
                for row in sources
            ],
            category_stats=[NamedCount(name=row["_id"], count=row["count"]) for row in categories],
            job_type_stats=[NamedCount(name=row["_id"], count=row["count"]) for row in job_types]
        )
