"""Import log model definitions."""
from enum import Enum
from typing import Any, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class ImportLogStatusEnum(str, Enum):
    """Import log status enumeration."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorDetail(BaseModel):
    """One recorded problem of an import run."""
    message: Optional[str] = None
    data: Optional[Any] = None
    timestamp: Optional[datetime] = None


class ImportLogModel(BaseModel):
    """Import log model for database representation."""
    id: str = Field(alias="_id")
    file_name: str
    source: str
    status: ImportLogStatusEnum
    import_date_time: datetime
    total_fetched: int = 0
    total_imported: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    failed_jobs: int = 0
    error_details: List[ErrorDetail] = Field(default_factory=list)
    processing_time: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
