"""Import log repository for the audit trail of import runs."""
from typing import Optional, List, Dict, Any
from datetime import datetime
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from shared.utils import generate_import_log_id, get_utc_now


class ImportLogStatus:
    """Import log status constants."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (IN_PROGRESS, COMPLETED, FAILED)


COUNTER_FIELDS = ("total_fetched", "total_imported", "new_jobs", "updated_jobs", "failed_jobs")


class ImportLogRepository:
    """Repository for Import Log CRUD operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.import_logs

    async def create_import_log(self, source_url: str, source: str) -> Dict[str, Any]:
        """Create a new in-progress import log."""
        now = get_utc_now()

        import_log = {
            "_id": generate_import_log_id(),
            "file_name": source_url,
            "source": source,
            "status": ImportLogStatus.IN_PROGRESS,
            "import_date_time": now,
            "total_fetched": 0,
            "total_imported": 0,
            "new_jobs": 0,
            "updated_jobs": 0,
            "failed_jobs": 0,
            "error_details": [],
            "processing_time": None,
            "created_at": now,
            "updated_at": now
        }

        await self.collection.insert_one(import_log)
        return import_log

    async def get_import_log(self, log_id: str) -> Optional[Dict[str, Any]]:
        """Get an import log by ID."""
        return await self.collection.find_one({"_id": log_id})

    async def checkpoint(self, log_id: str, counters: Dict[str, int]) -> bool:
        """Write running counters of an in-progress run."""
        update = {key: counters[key] for key in COUNTER_FIELDS if key in counters}
        update["updated_at"] = get_utc_now()

        result = await self.collection.update_one(
            {"_id": log_id},
            {"$set": update}
        )
        return result.matched_count > 0

    async def reopen(self, log_id: str) -> bool:
        """Move a log back to in_progress before a retry attempt."""
        result = await self.collection.update_one(
            {"_id": log_id, "status": {"$ne": ImportLogStatus.IN_PROGRESS}},
            {
                "$set": {
                    "status": ImportLogStatus.IN_PROGRESS,
                    "updated_at": get_utc_now()
                }
            }
        )
        return result.modified_count > 0

    async def complete_import_log(
        self,
        log_id: str,
        counters: Dict[str, int],
        error_details: List[Dict[str, Any]],
        processing_time: int
    ) -> Optional[Dict[str, Any]]:
        """Mark an import log as completed with final statistics."""
        update = {key: counters.get(key, 0) for key in COUNTER_FIELDS}
        update.update({
            "status": ImportLogStatus.COMPLETED,
            "error_details": error_details,
            "processing_time": processing_time,
            "updated_at": get_utc_now()
        })

        return await self.collection.find_one_and_update(
            {"_id": log_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )

    async def fail_import_log(
        self,
        log_id: str,
        message: str,
        processing_time: int
    ) -> Optional[Dict[str, Any]]:
        """Mark an import log as failed with the error that stopped it."""
        now = get_utc_now()
        return await self.collection.find_one_and_update(
            {"_id": log_id},
            {
                "$set": {
                    "status": ImportLogStatus.FAILED,
                    "error_details": [{"message": message, "data": None, "timestamp": now}],
                    "processing_time": processing_time,
                    "updated_at": now
                }
            },
            return_document=ReturnDocument.AFTER
        )

    async def list_import_logs(
        self,
        status: Optional[str] = None,
        source: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """List import logs with optional status/source filters."""
        query = self._build_filter(status, source)
        direction = 1 if sort_order == "asc" else -1

        cursor = self.collection.find(query).sort(sort_by, direction).skip(skip).limit(limit)
        return await cursor.to_list(length=limit)

    async def count_import_logs(self, status: Optional[str] = None, source: Optional[str] = None) -> int:
        return await self.collection.count_documents(self._build_filter(status, source))

    async def delete_import_log(self, log_id: str) -> Optional[Dict[str, Any]]:
        """Delete an import log, returning the removed document."""
        return await self.collection.find_one_and_delete({"_id": log_id})

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete completed/failed logs created before ``cutoff``."""
        result = await self.collection.delete_many({
            "created_at": {"$lt": cutoff},
            "status": {"$ne": ImportLogStatus.IN_PROGRESS}
        })
        return result.deleted_count

    async def overall_stats(self) -> Optional[Dict[str, Any]]:
        """Totals across every import log."""
        cursor = self.collection.aggregate([
            {
                "$group": {
                    "_id": None,
                    "total_imports": {"$sum": 1},
                    "successful_imports": {
                        "$sum": {"$cond": [{"$eq": ["$status", ImportLogStatus.COMPLETED]}, 1, 0]}
                    },
                    "failed_imports": {
                        "$sum": {"$cond": [{"$eq": ["$status", ImportLogStatus.FAILED]}, 1, 0]}
                    },
                    "total_jobs_imported": {"$sum": "$total_imported"},
                    "total_new_jobs": {"$sum": "$new_jobs"},
                    "total_updated_jobs": {"$sum": "$updated_jobs"},
                    "total_failed_jobs": {"$sum": "$failed_jobs"},
                    "avg_processing_time": {"$avg": "$processing_time"}
                }
            }
        ])
        results = await cursor.to_list(length=1)
        return results[0] if results else None

    async def source_stats(self) -> List[Dict[str, Any]]:
        """Per-source import counts and success rate."""
        cursor = self.collection.aggregate([
            {
                "$group": {
                    "_id": "$source",
                    "import_count": {"$sum": 1},
                    "total_jobs": {"$sum": "$total_imported"},
                    "success_rate": {
                        "$avg": {"$cond": [{"$eq": ["$status", ImportLogStatus.COMPLETED]}, 1, 0]}
                    },
                    "avg_processing_time": {"$avg": "$processing_time"}
                }
            },
            {"$sort": {"total_jobs": -1}}
        ])
        return await cursor.to_list(length=None)

    async def daily_activity(self, since: datetime) -> List[Dict[str, Any]]:
        """Imports and imported jobs per day since ``since``."""
        cursor = self.collection.aggregate([
            {"$match": {"created_at": {"$gte": since}}},
            {
                "$group": {
                    "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
                    "count": {"$sum": 1},
                    "total_jobs": {"$sum": "$total_imported"}
                }
            },
            {"$sort": {"_id": 1}}
        ])
        return await cursor.to_list(length=None)

    @staticmethod
    def _build_filter(status: Optional[str], source: Optional[str]) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if source:
            query["source"] = source
        return query
