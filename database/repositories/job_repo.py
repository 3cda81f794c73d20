"""Job repository for upserts and aggregates on the Jobs collection."""
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError
from shared.exceptions import PersistenceError
from shared.utils import get_utc_now


# Fields a re-import is allowed to overwrite; identity and created_at are not.
MUTABLE_JOB_FIELDS = (
    "title",
    "company",
    "location",
    "description",
    "job_type",
    "category",
    "salary",
    "url",
    "published_date",
    "source_url",
)


class JobRepository:
    """Repository for job postings keyed by (external_id, source)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.jobs

    async def find_by_identity(self, external_id: str, source: str) -> Optional[Dict[str, Any]]:
        """Get a job by its identity key."""
        return await self.collection.find_one({
            "external_id": external_id,
            "source": source
        })

    async def create_job(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new job document. Raises DuplicateKeyError on identity clash."""
        now = get_utc_now()
        job = {
            "external_id": fields["external_id"],
            "source": fields["source"],
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        job.update({key: fields.get(key) for key in MUTABLE_JOB_FIELDS})

        result = await self.collection.insert_one(job)
        job["_id"] = result.inserted_id
        return job

    async def update_job(self, job_id: Any, fields: Dict[str, Any]) -> bool:
        """Overwrite the mutable fields of an existing job."""
        update = {key: fields.get(key) for key in MUTABLE_JOB_FIELDS}
        update["updated_at"] = get_utc_now()

        result = await self.collection.update_one(
            {"_id": job_id},
            {"$set": update}
        )
        return result.matched_count > 0

    async def upsert_job(self, fields: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """Create or update a job by identity. Returns (job, is_new)."""
        try:
            existing = await self.find_by_identity(fields["external_id"], fields["source"])
            if existing:
                await self.update_job(existing["_id"], fields)
                return existing, False

            try:
                job = await self.create_job(fields)
                return job, True
            except DuplicateKeyError:
                # Another worker inserted the same identity first
                existing = await self.find_by_identity(fields["external_id"], fields["source"])
                if existing is None:
                    raise
                await self.update_job(existing["_id"], fields)
                return existing, False
        except PyMongoError as e:
            raise PersistenceError(f"Failed to save job {fields.get('external_id')!r}: {e}") from e

    async def count_jobs(self, since: Optional[datetime] = None) -> int:
        """Count active jobs, optionally only those created after ``since``."""
        query: Dict[str, Any] = {"is_active": True}
        if since is not None:
            query["created_at"] = {"$gte": since}
        return await self.collection.count_documents(query)

    async def source_stats(self) -> List[Dict[str, Any]]:
        """Per-source job counts with the categories and job types seen."""
        cursor = self.collection.aggregate([
            {"$match": {"is_active": True}},
            {
                "$group": {
                    "_id": "$source",
                    "count": {"$sum": 1},
                    "categories": {"$addToSet": "$category"},
                    "job_types": {"$addToSet": "$job_type"},
                    "latest_job": {"$max": "$created_at"}
                }
            },
            {"$sort": {"count": -1}}
        ])
        return await cursor.to_list(length=None)

    async def field_counts(self, field: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Count active jobs grouped by a single field, skipping empty values."""
        pipeline: List[Dict[str, Any]] = [
            {"$match": {"is_active": True, field: {"$nin": [None, ""]}}},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}}
        ]
        if limit:
            pipeline.append({"$limit": limit})
        cursor = self.collection.aggregate(pipeline)
        return await cursor.to_list(length=None)
