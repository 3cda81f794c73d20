"""Import service: creating, queuing and reporting on import runs."""
import logging
import math
from datetime import timedelta
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from api.models.import_log import ImportLogModel
from api.schemas.responses import (
    DailyImportActivity,
    ImportLogPage,
    ImportLogSummary,
    ImportStatsResponse,
    ImportTotals,
    Pagination,
    QueuedImports,
    SourceImportStats
)
from api.services.queue_service import TaskQueue
from database.repositories.import_log_repo import ImportLogRepository, ImportLogStatus
from shared.config import settings
from shared.utils import extract_source_name, get_utc_now, validate_url

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"created_at", "updated_at", "import_date_time", "total_imported"}

MANUAL_PRIORITY = 1


class ImportService:
    """Operations on import logs and import tasks."""

    def __init__(self, db: AsyncIOMotorDatabase, queue: TaskQueue):
        self.import_log_repo = ImportLogRepository(db)
        self.queue = queue

    async def create_import_log(self, source_url: str) -> dict:
        """Create the in-progress log for one import of ``source_url``."""
        logger.info(f"Creating import log for: {source_url}")
        return await self.import_log_repo.create_import_log(source_url, extract_source_name(source_url))

    async def enqueue_import_task(self, source_url: str, import_log_id: str, priority: int = 0) -> str:
        return await self.queue.enqueue(
            {"source_url": source_url, "import_log_id": import_log_id},
            priority=priority
        )

    async def queue_imports(
        self,
        urls: Optional[List[str]] = None,
        priority: int = MANUAL_PRIORITY
    ) -> QueuedImports:
        """Create a log and a task for each URL (default: configured feeds)."""
        urls = urls or settings.feed_sources
        valid_urls = [url for url in urls if validate_url(url)]
        if not valid_urls:
            raise ValueError("No valid URLs provided")

        task_ids = []
        import_log_ids = []
        for url in valid_urls:
            try:
                import_log = await self.create_import_log(url)
                task_id = await self.enqueue_import_task(url, import_log["_id"], priority)
            except Exception as e:
                logger.error(f"Failed to queue import for {url}: {e}")
                continue
            import_log_ids.append(import_log["_id"])
            task_ids.append(task_id)

        return QueuedImports(
            message=f"Queued {len(task_ids)} import jobs",
            task_ids=task_ids,
            import_log_ids=import_log_ids,
            urls=valid_urls
        )

    async def list_import_logs(
        self,
        status: Optional[str] = None,
        source: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 10
    ) -> ImportLogPage:
        """Paginated import history, newest first by default."""
        if status and status not in ImportLogStatus.ALL:
            raise ValueError(f"Invalid status value: {status}")
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Invalid sort field: {sort_by}")
        page = max(page, 1)
        limit = max(limit, 1)

        logs = await self.import_log_repo.list_import_logs(
            status=status,
            source=source,
            sort_by=sort_by,
            sort_order=sort_order,
            skip=(page - 1) * limit,
            limit=limit
        )
        total = await self.import_log_repo.count_import_logs(status=status, source=source)
        total_pages = math.ceil(total / limit)

        return ImportLogPage(
            logs=[self._summarize(log) for log in logs],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_items=total,
                items_per_page=limit,
                has_next=page < total_pages,
                has_prev=page > 1
            )
        )

    async def get_import_log(self, log_id: str) -> Optional[ImportLogModel]:
        log = await self.import_log_repo.get_import_log(log_id)
        return ImportLogModel(**log) if log else None

    async def delete_import_log(self, log_id: str) -> Optional[ImportLogModel]:
        log = await self.import_log_repo.delete_import_log(log_id)
        if log:
            logger.info(f"Deleted import log {log_id}")
        return ImportLogModel(**log) if log else None

    async def purge_old_import_logs(self, days: Optional[int] = None) -> int:
        """Delete finished logs older than ``days``."""
        days = days or settings.import_log_retention_days
        cutoff = get_utc_now() - timedelta(days=days)
        deleted = await self.import_log_repo.delete_finished_before(cutoff)
        logger.info(f"Cleanup completed: removed {deleted} old import logs")
        return deleted

    async def get_import_stats(self) -> ImportStatsResponse:
        overall = await self.import_log_repo.overall_stats()
        by_source = await self.import_log_repo.source_stats()
        recent = await self.import_log_repo.daily_activity(get_utc_now() - timedelta(days=7))

        if overall:
            overall.pop("_id", None)

        return ImportStatsResponse(
            overall=ImportTotals(**overall) if overall else ImportTotals(),
            recent_activity=[
                DailyImportActivity(date=row["_id"], count=row["count"], total_jobs=row["total_jobs"])
                for row in recent
            ],
            source_stats=[
                SourceImportStats(
                    source=row["_id"] or "unknown",
                    import_count=row["import_count"],
                    total_jobs=row["total_jobs"],
                    success_rate=row["success_rate"] or 0.0,
                    avg_processing_time=row.get("avg_processing_time")
                )
                for row in by_source
            ]
        )

    @staticmethod
    def _summarize(log: dict) -> ImportLogSummary:
        return ImportLogSummary(
            import_log_id=log["_id"],
            file_name=log["file_name"],
            source=log["source"],
            status=log["status"],
            total_fetched=log.get("total_fetched", 0),
            total_imported=log.get("total_imported", 0),
            new_jobs=log.get("new_jobs", 0),
            updated_jobs=log.get("updated_jobs", 0),
            failed_jobs=log.get("failed_jobs", 0),
            error_count=len(log.get("error_details") or []),
            processing_time=log.get("processing_time"),
            import_date_time=log["import_date_time"],
            updated_at=log["updated_at"]
        )
