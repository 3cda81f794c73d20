# Schemas module
from .responses import (
    ImportLogSummary,
    Pagination,
    ImportLogPage,
    QueuedImports,
    SourceJobStats,
    NamedCount,
    JobStatsResponse,
    ImportTotals,
    SourceImportStats,
    DailyImportActivity,
    ImportStatsResponse
)

__all__ = [
    "ImportLogSummary",
    "Pagination",
    "ImportLogPage",
    "QueuedImports",
    "SourceJobStats",
    "NamedCount",
    "JobStatsResponse",
    "ImportTotals",
    "SourceImportStats",
    "DailyImportActivity",
    "ImportStatsResponse"
]
