"""Response schemas for the import core's operations."""
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class ImportLogSummary(BaseModel):
    """Schema for one row of the import history."""
    import_log_id: str = Field(..., description="Unique import log identifier")
    file_name: str = Field(..., description="Feed URL that was imported")
    source: str = Field(..., description="Source host name")
    status: str = Field(..., description="Current import status")
    total_fetched: int = Field(..., description="Items found in the feed")
    total_imported: int = Field(..., description="Jobs created or updated")
    new_jobs: int = Field(..., description="Jobs created")
    updated_jobs: int = Field(..., description="Jobs updated")
    failed_jobs: int = Field(..., description="Jobs that could not be saved")
    error_count: int = Field(..., description="Number of recorded error entries")
    processing_time: Optional[int] = Field(None, description="Run duration in milliseconds")
    import_date_time: datetime = Field(..., description="When the import was triggered")
    updated_at: datetime = Field(..., description="Last update timestamp")


class Pagination(BaseModel):
    """Pagination metadata for list responses."""
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next: bool
    has_prev: bool


class ImportLogPage(BaseModel):
    """Response schema for the import history."""
    logs: List[ImportLogSummary] = Field(default_factory=list)
    pagination: Pagination


class QueuedImports(BaseModel):
    """Response schema for queuing imports."""
    message: str
    task_ids: List[str] = Field(default_factory=list)
    import_log_ids: List[str] = Field(default_factory=list)
    urls: List[str] = Field(default_factory=list)


class SourceJobStats(BaseModel):
    """Job counts for one source."""
    source: str
    count: int
    categories: List[str] = Field(default_factory=list)
    job_types: List[str] = Field(default_factory=list)
    latest_job: Optional[datetime] = None


class NamedCount(BaseModel):
    name: str
    count: int


class JobStatsResponse(BaseModel):
    """Response schema for job statistics."""
    total_jobs: int
    recent_jobs: int = Field(..., description="Jobs created in the last 24 hours")
    source_stats: List[SourceJobStats] = Field(default_factory=list)
    category_stats: List[NamedCount] = Field(default_factory=list)
    job_type_stats: List[NamedCount] = Field(default_factory=list)


class ImportTotals(BaseModel):
    total_imports: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    total_jobs_imported: int = 0
    total_new_jobs: int = 0
    total_updated_jobs: int = 0
    total_failed_jobs: int = 0
    avg_processing_time: Optional[float] = None


class SourceImportStats(BaseModel):
    source: str
    import_count: int
    total_jobs: int
    success_rate: float
    avg_processing_time: Optional[float] = None


class DailyImportActivity(BaseModel):
    date: str
    count: int
    total_jobs: int


class ImportStatsResponse(BaseModel):
    """Response schema for import statistics."""
    overall: ImportTotals
    recent_activity: List[DailyImportActivity] = Field(default_factory=list)
    source_stats: List[SourceImportStats] = Field(default_factory=list)
